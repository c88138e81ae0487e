from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey
from sqlalchemy import Integer, Text
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUST = "adjust"
    RESERVE = "reserve"
    RELEASE = "release"
    RETURN = "return"
    DAMAGED = "damaged"
    EXPIRED = "expired"


INBOUND_MOVEMENTS = (MovementType.IN.value, MovementType.RETURN.value)
OUTBOUND_MOVEMENTS = (
    MovementType.OUT.value,
    MovementType.DAMAGED.value,
    MovementType.EXPIRED.value,
)


class MovementReason(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    ADJUSTMENT = "adjustment"
    RESERVATION = "reservation"
    CANCELLATION = "cancellation"
    TRANSFER = "transfer"


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    OVERSTOCK = "overstock"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(BigId, primary_key=True, autoincrement=True)
    code = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = created_at_column()

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"


class Inventory(Base):
    """
    Stock position of a product.

    quantity_available is denormalised as on_hand - reserved and is kept in
    step by the arithmetic UPDATEs in InventoryRepository. The CHECK
    constraints are the last line against a negative balance.
    """

    __tablename__ = "inventories"

    id = Column(BigId, primary_key=True, autoincrement=True)
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    warehouse_id = Column(BigInteger, ForeignKey("warehouses.id"), nullable=True)
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    quantity_available = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=10)
    max_stock_level = Column(Integer, nullable=False, default=1000)
    min_stock_level = Column(Integer, nullable=False, default=5)
    average_cost_cents = Column(BigInteger, nullable=False, default=0)
    last_cost_cents = Column(BigInteger, nullable=False, default=0)
    last_movement_at = Column(DateTime(timezone=True), nullable=True)
    last_count_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved"),
        CheckConstraint("quantity_available >= 0", name="ck_inventory_available"),
    )

    product = relationship("Product")
    warehouse = relationship("Warehouse")

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.quantity_available <= self.reorder_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_available == 0

    @property
    def stock_status(self) -> str:
        if self.is_out_of_stock:
            return "out_of_stock"
        if self.is_low_stock:
            return "low_stock"
        return "in_stock"

    def __repr__(self) -> str:
        return (
            f"<Inventory id={self.id} product_id={self.product_id} "
            f"on_hand={self.quantity_on_hand} reserved={self.quantity_reserved}>"
        )


class InventoryMovement(Base):
    """Append-only ledger of stock changes."""

    __tablename__ = "inventory_movements"

    id = Column(BigId, primary_key=True, autoincrement=True)
    inventory_id = Column(
        BigInteger, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost_cents = Column(BigInteger, nullable=True)
    total_cost_cents = Column(BigInteger, nullable=True)
    quantity_before = Column(Integer, nullable=False, default=0)
    quantity_after = Column(Integer, nullable=False, default=0)
    reference_type = Column(Text, nullable=True)
    reference_id = Column(BigInteger, nullable=True)
    notes = Column(Text, nullable=True)
    batch_number = Column(Text, nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = created_at_column()

    __table_args__ = (
        enum_check("type", MovementType, "ck_movement_type"),
        enum_check("reason", MovementReason, "ck_movement_reason"),
    )

    inventory = relationship("Inventory")

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement inventory_id={self.inventory_id} "
            f"type={self.type!r} qty={self.quantity}>"
        )


class StockAlert(Base):
    __tablename__ = "stock_alerts"

    id = Column(BigId, primary_key=True, autoincrement=True)
    inventory_id = Column(
        BigInteger, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=AlertStatus.ACTIVE.value)
    message = Column(Text, nullable=True)
    threshold = Column(Integer, nullable=True)
    current_quantity = Column(Integer, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(BigInteger, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("type", AlertType, "ck_alert_type"),
        enum_check("status", AlertStatus, "ck_alert_status"),
    )

    inventory = relationship("Inventory")

    def __repr__(self) -> str:
        return f"<StockAlert id={self.id} type={self.type!r} status={self.status!r}>"
