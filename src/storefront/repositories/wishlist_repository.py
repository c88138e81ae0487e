import logging
from typing import List, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from storefront.core.exceptions import DuplicateWishlistItemError, WishlistItemNotFoundError
from storefront.models.product import Product
from storefront.models.wishlist import WishlistItem
from storefront.repositories.base import BaseRepository
from storefront.schemas.filters import WishlistFilter

logger = logging.getLogger(__name__)


class WishlistRepository(BaseRepository[WishlistItem]):
    """Saved-for-later products; one row per (user, product)"""

    model = WishlistItem
    not_found_error = WishlistItemNotFoundError

    def _item_query(self):
        return select(WishlistItem).options(joinedload(WishlistItem.product))

    def create(self, item: WishlistItem) -> WishlistItem:
        with self.get_db_session("INSERT") as session:
            session.add(item)
            try:
                session.flush()
            except IntegrityError as e:
                logger.error(
                    f"Product {item.product_id} already in wishlist of user {item.user_id}"
                )
                raise DuplicateWishlistItemError() from e
        logger.info(f"User {item.user_id} saved product {item.product_id}")
        return item

    def add_to_wishlist(self, user_id: int, product_id: int) -> WishlistItem:
        return self.create(WishlistItem(user_id=user_id, product_id=product_id))

    def get_by_id(self, item_id: int) -> WishlistItem:
        return self._first(self._item_query().where(WishlistItem.id == item_id), item_id)

    def get_by_user_and_product(self, user_id: int, product_id: int) -> WishlistItem:
        stmt = self._item_query().where(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        )
        return self._first(stmt, f"user={user_id} product={product_id}")

    def get_by_user(self, user_id: int, limit: int = 20, offset: int = 0) -> List[WishlistItem]:
        stmt = (
            self._item_query()
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def count_by_user(self, user_id: int) -> int:
        return self._count(select(WishlistItem).where(WishlistItem.user_id == user_id))

    def update(self, item: WishlistItem) -> WishlistItem:
        return self._save(item)

    def delete(self, item_id: int) -> None:
        self._delete_by_id(item_id)

    def delete_by_user_and_product(self, user_id: int, product_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            result = session.execute(
                delete(WishlistItem).where(
                    WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
                )
            )
            if result.rowcount == 0:
                raise WishlistItemNotFoundError(resource_id=f"user={user_id} product={product_id}")
        logger.info(f"User {user_id} removed product {product_id} from wishlist")

    def clear_by_user(self, user_id: int) -> int:
        with self.get_db_session("DELETE") as session:
            result = session.execute(delete(WishlistItem).where(WishlistItem.user_id == user_id))
        logger.info(f"Cleared {result.rowcount} wishlist items for user {user_id}")
        return result.rowcount

    def is_in_wishlist(self, user_id: int, product_id: int) -> bool:
        stmt = select(WishlistItem.id).where(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        )
        with self.get_db_session() as session:
            return session.execute(stmt).first() is not None

    def get_popular_products(self, limit: int = 10) -> List[Tuple[Product, int]]:
        """(product, times wishlisted), most wishlisted first"""
        saves = func.count(WishlistItem.id).label("saves")
        stmt = (
            select(Product, saves)
            .join(WishlistItem, WishlistItem.product_id == Product.id)
            .group_by(Product.id)
            .order_by(saves.desc(), Product.id)
        )
        with self.get_db_session() as session:
            return [(product, count) for product, count in session.execute(self._paginate(stmt, limit))]

    def get_wishlist_product_ids(self, user_id: int) -> List[int]:
        stmt = (
            select(WishlistItem.product_id)
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        )
        with self.get_db_session() as session:
            return list(session.scalars(stmt))

    def get_wishlist_products(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Product]:
        stmt = (
            select(Product)
            .join(WishlistItem, WishlistItem.product_id == Product.id)
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def _filter_criteria(self, filters: WishlistFilter) -> list:
        criteria = []
        if filters.user_id is not None:
            criteria.append(WishlistItem.user_id == filters.user_id)
        if filters.product_id is not None:
            criteria.append(WishlistItem.product_id == filters.product_id)
        if filters.created_from is not None:
            criteria.append(WishlistItem.created_at >= filters.created_from)
        if filters.created_to is not None:
            criteria.append(WishlistItem.created_at <= filters.created_to)
        return criteria

    def list(self, filters: WishlistFilter) -> List[WishlistItem]:
        stmt = self._item_query().where(*self._filter_criteria(filters))
        if filters.order_column == "product_name":
            # the joinedload alias can't be ordered on, so join products explicitly
            stmt = stmt.join(Product, Product.id == WishlistItem.product_id)
            stmt = self._order(stmt, Product.name, filters.descending)
        else:
            stmt = self._order(stmt, WishlistItem.created_at, filters.descending)
        stmt = stmt.order_by(WishlistItem.id.desc())
        return self._all(self._paginate(stmt, filters.limit, filters.offset))

    def count(self, filters: WishlistFilter) -> int:
        return self._count(select(WishlistItem).where(*self._filter_criteria(filters)))
