from datetime import timedelta
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from storefront.core.config import config
from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column
from storefront.utils.date_utils import DateUtils


class ReservationType(str, Enum):
    ORDER = "order"
    CART = "cart"
    PROMOTION = "promotion"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


def default_reservation_expiry():
    return DateUtils.create_expiry_time(minutes=config.reservations.default_minutes)


class StockReservation(Base):
    """
    Stock held for an order or cart until expires_at.

    Lifecycle: active -> confirmed (order paid), active/confirmed -> released
    (order cancelled), active -> expired (release_expired_reservations sweep).
    """

    __tablename__ = "stock_reservations"

    id = Column(BigId, primary_key=True, autoincrement=True)
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    order_id = Column(BigInteger, ForeignKey("orders.id"), nullable=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)
    session_id = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    type = Column(Text, nullable=False, default=ReservationType.ORDER.value)
    status = Column(Text, nullable=False, default=ReservationStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=False, default=default_reservation_expiry)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity"),
        enum_check("type", ReservationType, "ck_reservation_type"),
        enum_check("status", ReservationStatus, "ck_reservation_status"),
    )

    product = relationship("Product")

    def is_expired(self, now=None) -> bool:
        return DateUtils.is_expired(self.expires_at, now)

    def is_active(self, now=None) -> bool:
        return self.status == ReservationStatus.ACTIVE.value and not self.is_expired(now)

    def extend(self, minutes: int):
        self.expires_at = DateUtils.ensure_utc(self.expires_at) + timedelta(minutes=minutes)

    def __repr__(self) -> str:
        return (
            f"<StockReservation id={self.id} product_id={self.product_id} "
            f"qty={self.quantity} status={self.status!r}>"
        )
