import logging
from typing import List

from sqlalchemy import func, select, update

from storefront.core.config import config
from storefront.core.exceptions import StockReservationNotFoundError, ValidationError
from storefront.models.stock_reservation import ReservationStatus, StockReservation
from storefront.repositories.base import BaseRepository
from storefront.schemas.filters import ReservationFilter
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class StockReservationRepository(BaseRepository[StockReservation]):
    """
    Short-lived holds on product stock.

    Status changes are bulk UPDATEs keyed on the current status, so a
    reservation that was already confirmed or released by a concurrent
    request is simply not matched.
    """

    model = StockReservation
    not_found_error = StockReservationNotFoundError

    SORT_COLUMNS = {
        "created_at": StockReservation.created_at,
        "expires_at": StockReservation.expires_at,
        "quantity": StockReservation.quantity,
        "status": StockReservation.status,
    }

    @staticmethod
    def _prepare(reservation: StockReservation) -> StockReservation:
        if reservation.quantity is None or reservation.quantity <= 0:
            raise ValidationError(
                "Reservation quantity must be positive",
                [{"field": "quantity", "message": "must be greater than 0"}],
            )
        if reservation.expires_at is None:
            reservation.expires_at = DateUtils.create_expiry_time(
                minutes=config.reservations.default_minutes
            )
        if reservation.status is None:
            reservation.status = ReservationStatus.ACTIVE.value
        return reservation

    def create(self, reservation: StockReservation) -> StockReservation:
        return self._add(self._prepare(reservation))

    def create_batch(self, reservations: List[StockReservation]) -> int:
        for reservation in reservations:
            self._prepare(reservation)
        return self._add_all(reservations, config.reservations.batch_size)

    def update(self, reservation: StockReservation) -> StockReservation:
        return self._save(reservation)

    def delete(self, reservation_id: int) -> None:
        self._delete_by_id(reservation_id)

    def _newest(self, *criteria) -> List[StockReservation]:
        stmt = (
            select(StockReservation)
            .where(*criteria)
            .order_by(StockReservation.created_at.desc(), StockReservation.id.desc())
        )
        return self._all(stmt)

    def get_by_order_id(self, order_id: int) -> List[StockReservation]:
        return self._newest(StockReservation.order_id == order_id)

    def get_by_product_id(self, product_id: int) -> List[StockReservation]:
        return self._newest(StockReservation.product_id == product_id)

    def get_by_user_id(self, user_id: int) -> List[StockReservation]:
        return self._newest(StockReservation.user_id == user_id)

    def _live(self, now=None):
        return (
            StockReservation.status == ReservationStatus.ACTIVE.value,
            StockReservation.expires_at > (now or DateUtils.now_utc()),
        )

    def get_active_reservations(self, product_id: int) -> List[StockReservation]:
        return self._newest(StockReservation.product_id == product_id, *self._live())

    def get_expired_reservations(self) -> List[StockReservation]:
        stmt = (
            select(StockReservation)
            .where(
                StockReservation.status == ReservationStatus.ACTIVE.value,
                StockReservation.expires_at <= DateUtils.now_utc(),
            )
            .order_by(StockReservation.expires_at)
        )
        return self._all(stmt)

    def _sum_quantity(self, *criteria) -> int:
        stmt = select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(*criteria)
        with self.get_db_session() as session:
            return int(session.execute(stmt).scalar())

    def get_total_reserved_stock(self, product_id: int) -> int:
        return self._sum_quantity(StockReservation.product_id == product_id, *self._live())

    def get_user_reserved_stock(self, user_id: int, product_id: int) -> int:
        return self._sum_quantity(
            StockReservation.user_id == user_id,
            StockReservation.product_id == product_id,
            *self._live(),
        )

    def _transition(self, criteria, **values) -> int:
        values.setdefault("updated_at", DateUtils.now_utc())
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(StockReservation)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def release_by_order_id(self, order_id: int) -> int:
        now = DateUtils.now_utc()
        count = self._transition(
            (
                StockReservation.order_id == order_id,
                StockReservation.status.in_(
                    (ReservationStatus.ACTIVE.value, ReservationStatus.CONFIRMED.value)
                ),
            ),
            status=ReservationStatus.RELEASED.value,
            released_at=now,
            updated_at=now,
        )
        logger.info(f"Released {count} reservations for order {order_id}")
        return count

    def release_expired_reservations(self) -> int:
        """Sweep: active reservations past expires_at become expired"""
        now = DateUtils.now_utc()
        count = self._transition(
            (
                StockReservation.status == ReservationStatus.ACTIVE.value,
                StockReservation.expires_at <= now,
            ),
            status=ReservationStatus.EXPIRED.value,
            released_at=now,
            updated_at=now,
        )
        if count:
            logger.info(f"Expired {count} stock reservations")
        return count

    def confirm_by_order_id(self, order_id: int) -> int:
        now = DateUtils.now_utc()
        count = self._transition(
            (
                StockReservation.order_id == order_id,
                StockReservation.status == ReservationStatus.ACTIVE.value,
            ),
            status=ReservationStatus.CONFIRMED.value,
            confirmed_at=now,
            updated_at=now,
        )
        logger.info(f"Confirmed {count} reservations for order {order_id}")
        return count

    def _filter_criteria(self, filters: ReservationFilter) -> list:
        criteria = []
        if filters.product_id is not None:
            criteria.append(StockReservation.product_id == filters.product_id)
        if filters.order_id is not None:
            criteria.append(StockReservation.order_id == filters.order_id)
        if filters.user_id is not None:
            criteria.append(StockReservation.user_id == filters.user_id)
        if filters.type:
            criteria.append(StockReservation.type == filters.type)
        if filters.status:
            criteria.append(StockReservation.status == filters.status)
        if filters.expires_before is not None:
            criteria.append(StockReservation.expires_at < filters.expires_before)
        if filters.created_after is not None:
            criteria.append(StockReservation.created_at > filters.created_after)
        return criteria

    def list(self, filters: ReservationFilter) -> List[StockReservation]:
        column = self.SORT_COLUMNS.get(filters.order_column, StockReservation.created_at)
        stmt = self._order(
            select(StockReservation).where(*self._filter_criteria(filters)),
            column,
            filters.descending,
        ).order_by(StockReservation.id.desc())
        return self._all(self._paginate(stmt, filters.limit, filters.offset))

    def count(self, filters: ReservationFilter) -> int:
        return self._count(select(StockReservation).where(*self._filter_criteria(filters)))
