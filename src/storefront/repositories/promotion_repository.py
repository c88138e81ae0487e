import logging
from typing import List

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import PromotionNotFoundError
from storefront.models.coupon import Promotion, PromotionStatus, promotion_products
from storefront.repositories.base import BaseRepository
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class PromotionRepository(BaseRepository[Promotion]):
    model = Promotion
    not_found_error = PromotionNotFoundError

    def _promotion_query(self):
        return select(Promotion).options(
            selectinload(Promotion.categories),
            selectinload(Promotion.products),
        )

    def _running(self):
        now = DateUtils.now_utc()
        return (
            Promotion.status == PromotionStatus.ACTIVE.value,
            Promotion.starts_at <= now,
            Promotion.ends_at > now,
        )

    def create(self, promotion: Promotion) -> Promotion:
        return self._add(promotion)

    def get_by_id(self, promotion_id: int) -> Promotion:
        return self._first(self._promotion_query().where(Promotion.id == promotion_id), promotion_id)

    def update(self, promotion: Promotion) -> Promotion:
        return self._save(promotion)

    def delete(self, promotion_id: int) -> None:
        self._delete_by_id(promotion_id)

    def get_active_promotions(self) -> List[Promotion]:
        stmt = self._promotion_query().where(*self._running()).order_by(Promotion.starts_at)
        return self._all(stmt)

    def get_featured_promotions(self, limit: int = 5) -> List[Promotion]:
        stmt = (
            self._promotion_query()
            .where(*self._running(), Promotion.is_featured.is_(True))
            .order_by(Promotion.created_at.desc(), Promotion.id.desc())
        )
        return self._all(self._paginate(stmt, limit))

    def get_promotions_for_product(self, product_id: int) -> List[Promotion]:
        """Running promotions that are storewide or list this product"""
        restricted = exists().where(promotion_products.c.promotion_id == Promotion.id)
        targets_product = exists().where(
            promotion_products.c.promotion_id == Promotion.id,
            promotion_products.c.product_id == product_id,
        )
        stmt = (
            self._promotion_query()
            .where(*self._running(), or_(~restricted, targets_product))
            .order_by(Promotion.starts_at)
        )
        return self._all(stmt)
