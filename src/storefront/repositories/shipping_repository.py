import logging
import secrets
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import (
    ReturnNotFoundError,
    ShipmentNotFoundError,
    ShippingMethodNotFoundError,
    ValidationError,
)
from storefront.models.shipping import (
    OPEN_SHIPMENT_STATUSES,
    Return,
    ReturnStatus,
    Shipment,
    ShipmentStatus,
    ShipmentTracking,
    ShippingMethod,
)
from storefront.repositories.base import BaseRepository
from storefront.schemas.filters import ShipmentFilter
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)

OVERDUE_AFTER_DAYS = 7


def generate_return_number(now=None) -> str:
    """RMA-20260105-3F9A1C"""
    now = now or DateUtils.now_utc()
    return f"RMA-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class ShippingRepository(BaseRepository[Shipment]):
    """
    Shipments, the shipping methods they use, carrier tracking events and
    customer returns.

    Shipment is the primary model; methods and returns have their own
    not-found sentinels.
    """

    model = Shipment
    not_found_error = ShipmentNotFoundError

    SORT_COLUMNS = {
        "created_at": Shipment.created_at,
        "status": Shipment.status,
        "carrier": Shipment.carrier,
    }

    # ------------------------------------------------------------------
    # Shipments
    # ------------------------------------------------------------------

    def create_shipment(self, shipment: Shipment) -> Shipment:
        if shipment.status is None:
            shipment.status = ShipmentStatus.PENDING.value
        return self._add(shipment)

    def get_shipment_by_id(self, shipment_id: int) -> Shipment:
        stmt = (
            select(Shipment)
            .options(selectinload(Shipment.tracking_events))
            .where(Shipment.id == shipment_id)
        )
        return self._first(stmt, shipment_id)

    def get_shipment_by_tracking_number(self, tracking_number: str) -> Shipment:
        stmt = (
            select(Shipment)
            .options(selectinload(Shipment.tracking_events))
            .where(Shipment.tracking_number == tracking_number)
        )
        return self._first(stmt, tracking_number)

    def get_shipments_by_order(self, order_id: int) -> List[Shipment]:
        stmt = (
            select(Shipment)
            .where(Shipment.order_id == order_id)
            .order_by(Shipment.created_at.desc(), Shipment.id.desc())
        )
        return self._all(stmt)

    def update_shipment(self, shipment: Shipment) -> Shipment:
        return self._save(shipment)

    def delete_shipment(self, shipment_id: int) -> None:
        self._delete_by_id(shipment_id)

    def update_shipment_status(self, shipment_id: int, status: str) -> None:
        """
        Move a shipment to ``status``.

        Entering shipped stamps shipped_at, entering delivered stamps
        actual_delivery; other statuses only touch updated_at.
        """
        if status not in {member.value for member in ShipmentStatus}:
            raise ValidationError(f"Invalid shipment status: {status}")

        now = DateUtils.now_utc()
        values = {"status": status, "updated_at": now}
        if status == ShipmentStatus.SHIPPED.value:
            values["shipped_at"] = now
        elif status == ShipmentStatus.DELIVERED.value:
            values["actual_delivery"] = now

        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Shipment)
                .where(Shipment.id == shipment_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ShipmentNotFoundError(resource_id=shipment_id)
        logger.info(f"Shipment {shipment_id} is now {status}")

    # ------------------------------------------------------------------
    # Shipping methods
    # ------------------------------------------------------------------

    def create_shipping_method(self, method: ShippingMethod) -> ShippingMethod:
        with self.get_db_session("INSERT") as session:
            session.add(method)
            session.flush()
        logger.info(f"Created shipping method {method.name!r} id={method.id}")
        return method

    def get_shipping_method_by_id(self, method_id: int) -> ShippingMethod:
        with self.get_db_session() as session:
            method = session.get(ShippingMethod, method_id)
            if method is None:
                raise ShippingMethodNotFoundError(resource_id=method_id)
            return method

    def update_shipping_method(self, method: ShippingMethod) -> ShippingMethod:
        with self.get_db_session("WRITE") as session:
            if method.id is None or session.get(ShippingMethod, method.id) is None:
                raise ShippingMethodNotFoundError(resource_id=method.id)
            merged = session.merge(method)
            session.flush()
            return merged

    def delete_shipping_method(self, method_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            method = session.get(ShippingMethod, method_id)
            if method is None:
                raise ShippingMethodNotFoundError(resource_id=method_id)
            session.delete(method)
        logger.info(f"Deleted shipping method {method_id}")

    def get_active_shipping_methods(self) -> List[ShippingMethod]:
        stmt = (
            select(ShippingMethod)
            .where(ShippingMethod.is_active.is_(True))
            .order_by(ShippingMethod.sort_order, ShippingMethod.name)
        )
        return self._all(stmt)

    def get_shipping_methods(self, weight: Optional[float] = None) -> List[ShippingMethod]:
        """Active methods able to carry ``weight`` kg (any weight when None)"""
        stmt = select(ShippingMethod).where(ShippingMethod.is_active.is_(True))
        if weight is not None:
            stmt = stmt.where(
                or_(ShippingMethod.max_weight.is_(None), ShippingMethod.max_weight >= weight)
            )
        return self._all(stmt.order_by(ShippingMethod.sort_order, ShippingMethod.name))

    # ------------------------------------------------------------------
    # Tracking events
    # ------------------------------------------------------------------

    def create_tracking_event(self, event: ShipmentTracking) -> ShipmentTracking:
        with self.get_db_session("INSERT") as session:
            if session.get(Shipment, event.shipment_id) is None:
                raise ShipmentNotFoundError(resource_id=event.shipment_id)
            if event.event_time is None:
                event.event_time = DateUtils.now_utc()
            session.add(event)
            session.flush()
        logger.info(f"Tracking event {event.status!r} for shipment {event.shipment_id}")
        return event

    def get_tracking_events(self, shipment_id: int) -> List[ShipmentTracking]:
        stmt = (
            select(ShipmentTracking)
            .where(ShipmentTracking.shipment_id == shipment_id)
            .order_by(ShipmentTracking.event_time.asc(), ShipmentTracking.id.asc())
        )
        return self._all(stmt)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _filter_criteria(self, filters: ShipmentFilter) -> list:
        criteria = []
        if filters.order_id is not None:
            criteria.append(Shipment.order_id == filters.order_id)
        if filters.status:
            criteria.append(Shipment.status == filters.status)
        if filters.carrier:
            criteria.append(Shipment.carrier == filters.carrier)
        if filters.tracking_number:
            criteria.append(Shipment.tracking_number.contains(filters.tracking_number))
        if filters.created_from is not None:
            criteria.append(Shipment.created_at >= filters.created_from)
        if filters.created_to is not None:
            criteria.append(Shipment.created_at <= filters.created_to)
        return criteria

    def list_shipments(self, filters: ShipmentFilter) -> List[Shipment]:
        column = self.SORT_COLUMNS.get(filters.order_column, Shipment.created_at)
        stmt = self._order(
            select(Shipment).where(*self._filter_criteria(filters)),
            column,
            filters.descending,
        ).order_by(Shipment.id.desc())
        return self._all(self._paginate(stmt, filters.limit, filters.offset))

    def count_shipments(self, filters: ShipmentFilter) -> int:
        return self._count(select(Shipment).where(*self._filter_criteria(filters)))

    def get_shipments_by_status(self, status: str, limit: int = 20, offset: int = 0) -> List[Shipment]:
        stmt = (
            select(Shipment)
            .where(Shipment.status == status)
            .order_by(Shipment.created_at.desc(), Shipment.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_pending_shipments(self) -> List[Shipment]:
        """Shipments not yet in the carrier's hands or still on the way, oldest first"""
        stmt = (
            select(Shipment)
            .where(Shipment.status.in_(OPEN_SHIPMENT_STATUSES))
            .order_by(Shipment.created_at.asc(), Shipment.id.asc())
        )
        return self._all(stmt)

    def get_overdue_shipments(self, days: int = OVERDUE_AFTER_DAYS) -> List[Shipment]:
        cutoff = DateUtils.now_utc() - timedelta(days=days)
        stmt = (
            select(Shipment)
            .where(Shipment.status.in_(OPEN_SHIPMENT_STATUSES), Shipment.created_at < cutoff)
            .order_by(Shipment.created_at.asc(), Shipment.id.asc())
        )
        return self._all(stmt)

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def create_return(self, return_request: Return) -> Return:
        return_request.status = ReturnStatus.REQUESTED.value
        if not return_request.return_number:
            return_request.return_number = generate_return_number()
        with self.get_db_session("INSERT") as session:
            session.add(return_request)
            session.flush()
        logger.info(
            f"Created return {return_request.return_number} for order {return_request.order_id}"
        )
        return return_request

    def get_return_by_id(self, return_id: int) -> Return:
        with self.get_db_session() as session:
            return_request = session.get(Return, return_id)
            if return_request is None:
                raise ReturnNotFoundError(resource_id=return_id)
            return return_request

    def update_return(self, return_request: Return) -> Return:
        with self.get_db_session("WRITE") as session:
            if return_request.id is None or session.get(Return, return_request.id) is None:
                raise ReturnNotFoundError(resource_id=return_request.id)
            merged = session.merge(return_request)
            session.flush()
        logger.info(f"Updated return {merged.return_number} status={merged.status}")
        return merged
