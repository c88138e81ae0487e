from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, Float
from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId, JSONType
from storefront.models.common import created_at_column, enum_check, updated_at_column
from storefront.utils.date_utils import DateUtils


class ShippingMethodType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"
    SAME_DAY = "same_day"
    PICKUP = "pickup"


class ShipmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


OPEN_SHIPMENT_STATUSES = (
    ShipmentStatus.PENDING.value,
    ShipmentStatus.PROCESSING.value,
    ShipmentStatus.SHIPPED.value,
)


class ReturnReason(str, Enum):
    DEFECTIVE = "defective"
    WRONG_ITEM = "wrong_item"
    NOT_AS_DESCRIBED = "not_as_described"
    DAMAGED = "damaged"
    CHANGED_MIND = "changed_mind"
    SIZE_ISSUE = "size_issue"
    OTHER = "other"


class ReturnStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    SHIPPED = "shipped"
    RECEIVED = "received"
    PROCESSED = "processed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ShippingMethod(Base):
    """
    A delivery option.

    max_weight is in kilograms; NULL means the method takes any weight.
    """

    __tablename__ = "shipping_methods"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    type = Column(Text, nullable=False, default=ShippingMethodType.STANDARD.value)
    carrier = Column(Text, nullable=True)
    base_cost_cents = Column(BigInteger, nullable=False, default=0)
    cost_per_kg_cents = Column(BigInteger, nullable=False, default=0)
    free_shipping_min_cents = Column(BigInteger, nullable=True)
    min_delivery_days = Column(Integer, nullable=False, default=1)
    max_delivery_days = Column(Integer, nullable=False, default=7)
    max_weight = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("type", ShippingMethodType, "ck_shipping_method_type"),
        CheckConstraint("base_cost_cents >= 0", name="ck_shipping_method_cost"),
        CheckConstraint("max_delivery_days >= min_delivery_days", name="ck_shipping_method_days"),
    )

    def calculate_cost_cents(self, weight: float, order_total_cents: int = 0) -> int:
        if self.free_shipping_min_cents is not None and order_total_cents >= self.free_shipping_min_cents:
            return 0
        return self.base_cost_cents + int(round((weight or 0) * self.cost_per_kg_cents))

    def __repr__(self) -> str:
        return f"<ShippingMethod id={self.id} name={self.name!r}>"


class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(BigId, primary_key=True, autoincrement=True)
    order_id = Column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    shipping_method_id = Column(BigInteger, ForeignKey("shipping_methods.id"), nullable=True)
    tracking_number = Column(Text, nullable=True, unique=True)
    carrier = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=ShipmentStatus.PENDING.value)
    weight = Column(Float, nullable=True)
    package_count = Column(Integer, nullable=False, default=1)
    from_address = Column(JSONType, nullable=True)
    to_address = Column(JSONType, nullable=True)
    shipping_cost_cents = Column(BigInteger, nullable=False, default=0)
    insurance_cost_cents = Column(BigInteger, nullable=False, default=0)
    total_cost_cents = Column(BigInteger, nullable=False, default=0)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    signature_required = Column(Boolean, nullable=False, default=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("status", ShipmentStatus, "ck_shipment_status"),
        CheckConstraint("package_count > 0", name="ck_shipment_packages"),
    )

    shipping_method = relationship("ShippingMethod")
    tracking_events = relationship(
        "ShipmentTracking",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentTracking.event_time",
    )

    @property
    def is_delivered(self) -> bool:
        return self.status == ShipmentStatus.DELIVERED.value

    def __repr__(self) -> str:
        return (
            f"<Shipment id={self.id} order_id={self.order_id} "
            f"tracking={self.tracking_number!r} status={self.status!r}>"
        )


class ShipmentTracking(Base):
    """Carrier scan event."""

    __tablename__ = "shipment_tracking"

    id = Column(BigId, primary_key=True, autoincrement=True)
    shipment_id = Column(
        BigInteger, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(Text, nullable=False)
    location = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    event_time = Column(DateTime(timezone=True), nullable=False, default=DateUtils.now_utc)
    created_at = created_at_column()

    shipment = relationship("Shipment", back_populates="tracking_events")


class Return(Base):
    """
    A return / RMA request.

    return_number is generated by ShippingRepository.create_return() when
    the caller does not supply one.
    """

    __tablename__ = "returns"

    id = Column(BigId, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey("orders.id"), nullable=False)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    return_number = Column(Text, nullable=False, unique=True)
    reason = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=ReturnStatus.REQUESTED.value)
    description = Column(Text, nullable=True)
    refund_cents = Column(BigInteger, nullable=False, default=0)
    restocking_fee_cents = Column(BigInteger, nullable=False, default=0)
    shipping_refund_cents = Column(BigInteger, nullable=False, default=0)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("reason", ReturnReason, "ck_return_reason"),
        enum_check("status", ReturnStatus, "ck_return_status"),
    )

    def __repr__(self) -> str:
        return f"<Return id={self.id} number={self.return_number!r} status={self.status!r}>"
