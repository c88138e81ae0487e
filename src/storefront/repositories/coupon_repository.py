import logging
from typing import List

from sqlalchemy import and_, case, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import (
    CouponCodeExistsError,
    CouponInvalidError,
    CouponNotApplicableError,
    CouponNotFoundError,
    CouponUsageLimitExceededError,
)
from storefront.models.coupon import (
    Coupon,
    CouponApplicability,
    CouponStatus,
    CouponUsage,
    coupon_users,
)
from storefront.repositories.base import BaseRepository
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class CouponRepository(BaseRepository[Coupon]):
    """Repository for coupon codes and their redemptions"""

    model = Coupon
    not_found_error = CouponNotFoundError

    def _coupon_query(self):
        return select(Coupon).options(
            selectinload(Coupon.categories),
            selectinload(Coupon.products),
            selectinload(Coupon.users),
        )

    def create(self, coupon: Coupon) -> Coupon:
        coupon.code = coupon.code.strip().upper()
        with self.get_db_session("INSERT") as session:
            session.add(coupon)
            try:
                session.flush()
            except IntegrityError as e:
                logger.error(f"Coupon code already exists: {coupon.code}")
                raise CouponCodeExistsError(coupon.code) from e
        logger.info(f"Created coupon {coupon.code} id={coupon.id}")
        return coupon

    def get_by_id(self, coupon_id: int) -> Coupon:
        return self._first(self._coupon_query().where(Coupon.id == coupon_id), coupon_id)

    def get_by_code(self, code: str) -> Coupon:
        code = code.strip().upper()
        return self._first(self._coupon_query().where(Coupon.code == code), code)

    def update(self, coupon: Coupon) -> Coupon:
        return self._save(coupon)

    def delete(self, coupon_id: int) -> None:
        self._delete_by_id(coupon_id)

    def list(self, limit: int = 20, offset: int = 0) -> List[Coupon]:
        stmt = self._coupon_query().order_by(Coupon.created_at.desc(), Coupon.id.desc())
        return self._all(self._paginate(stmt, limit, offset))

    def _active_clause(self, now):
        return and_(
            Coupon.status == CouponStatus.ACTIVE.value,
            or_(Coupon.starts_at.is_(None), Coupon.starts_at <= now),
            or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
        )

    def get_active_coupons(self) -> List[Coupon]:
        stmt = (
            self._coupon_query()
            .where(self._active_clause(DateUtils.now_utc()))
            .order_by(Coupon.created_at.desc())
        )
        return self._all(stmt)

    def get_user_coupons(self, user_id: int) -> List[Coupon]:
        """Active coupons open to everyone plus those assigned to the user"""
        assigned = exists().where(
            coupon_users.c.coupon_id == Coupon.id,
            coupon_users.c.user_id == user_id,
        )
        stmt = (
            self._coupon_query()
            .where(
                self._active_clause(DateUtils.now_utc()),
                or_(Coupon.applicability != CouponApplicability.USERS.value, assigned),
            )
            .order_by(Coupon.created_at.desc())
        )
        return self._all(stmt)

    def validate_coupon(self, code: str, user_id: int) -> Coupon:
        """
        Look up a code and check it can be redeemed by ``user_id``.

        Raises, in this order: CouponNotFoundError, CouponInvalidError,
        CouponNotApplicableError, CouponUsageLimitExceededError.
        """
        coupon = self.get_by_code(code)

        if not coupon.is_valid():
            raise CouponInvalidError(f"Coupon {coupon.code} is not valid")

        if not coupon.can_be_used_by(user_id):
            raise CouponNotApplicableError(f"Coupon {coupon.code} is not available to this user")

        if coupon.usage_limit_per_user is not None:
            used = self.get_user_usage_count(coupon.id, user_id)
            if used >= coupon.usage_limit_per_user:
                raise CouponUsageLimitExceededError(
                    f"Coupon {coupon.code} already used {used} times by this user"
                )

        return coupon

    def increment_usage(self, coupon_id: int) -> None:
        """used_count + 1; flips status to used_up once the limit is hit"""
        new_count = Coupon.used_count + 1
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Coupon)
                .where(Coupon.id == coupon_id)
                .values(
                    used_count=new_count,
                    status=case(
                        (
                            and_(Coupon.usage_limit.isnot(None), new_count >= Coupon.usage_limit),
                            CouponStatus.USED_UP.value,
                        ),
                        else_=Coupon.status,
                    ),
                    updated_at=DateUtils.now_utc(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CouponNotFoundError(resource_id=coupon_id)

    def record_usage(self, usage: CouponUsage) -> CouponUsage:
        """Insert the usage row and bump used_count atomically"""
        with self.transaction() as tx:
            with tx.get_db_session("INSERT") as session:
                session.add(usage)
                session.flush()
            tx.increment_usage(usage.coupon_id)
        logger.info(f"Coupon {usage.coupon_id} redeemed by user {usage.user_id}")
        return usage

    def get_usage_history(self, coupon_id: int, limit: int = 20, offset: int = 0) -> List[CouponUsage]:
        stmt = (
            select(CouponUsage)
            .where(CouponUsage.coupon_id == coupon_id)
            .order_by(CouponUsage.created_at.desc(), CouponUsage.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_user_usage_count(self, coupon_id: int, user_id: int) -> int:
        stmt = select(func.count(CouponUsage.id)).where(
            CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id
        )
        with self.get_db_session() as session:
            return session.execute(stmt).scalar() or 0

    def expire_coupons(self) -> int:
        now = DateUtils.now_utc()
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Coupon)
                .where(
                    Coupon.status == CouponStatus.ACTIVE.value,
                    Coupon.expires_at.isnot(None),
                    Coupon.expires_at < now,
                )
                .values(status=CouponStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} coupons")
        return result.rowcount
