from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey
from sqlalchemy import Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column
from storefront.utils.date_utils import DateUtils


class CartStatus(str, Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    CONVERTED = "converted"
    EXPIRED = "expired"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    VND = "VND"


class Cart(Base):
    """
    A shopping cart owned either by a registered user or by a guest session.

    Exactly one of user_id / session_id is set; the CHECK constraint makes the
    database enforce it even if a caller skips CartRepository.create().

    subtotal_cents, total_cents and item_count are calculated fields. They are
    never written by callers directly: every item write is followed, in the
    same transaction, by CartRepository.recalculate_totals(), which derives
    them from cart_items with a single aggregate query.

    The reminder timestamps back the abandoned-cart email sequence.
    """

    __tablename__ = "carts"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    session_id = Column(Text, nullable=True)
    subtotal_cents = Column(BigInteger, nullable=False, default=0)
    tax_cents = Column(BigInteger, nullable=False, default=0)
    shipping_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False, default=0)
    item_count = Column(Integer, nullable=False, default=0)
    status = Column(Text, nullable=False, default=CartStatus.ACTIVE.value)
    currency = Column(Text, nullable=False, default=Currency.USD.value)
    notes = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    is_abandoned = Column(Boolean, nullable=False, default=False)
    abandoned_at = Column(DateTime(timezone=True), nullable=True)
    first_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    second_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    final_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    recovered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)", name="ck_cart_owner"
        ),
        CheckConstraint("subtotal_cents >= 0", name="ck_cart_subtotal"),
        CheckConstraint("total_cents >= 0", name="ck_cart_total"),
        CheckConstraint("item_count >= 0", name="ck_cart_item_count"),
        enum_check("status", CartStatus, "ck_cart_status"),
        enum_check("currency", Currency, "ck_cart_currency"),
    )

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def is_expired(self, now=None) -> bool:
        return DateUtils.is_expired(self.expires_at, now)

    def __repr__(self) -> str:
        owner = f"user_id={self.user_id}" if self.user_id else f"session_id={self.session_id!r}"
        return f"<Cart id={self.id} {owner} status={self.status!r}>"


class CartItem(Base):
    """
    A product + quantity pair inside a cart.

    price_cents is the unit price captured when the item was added;
    total_cents = price_cents * quantity. quantity must be > 0 -- removing an
    item means deleting the row, not setting quantity to 0.
    """

    __tablename__ = "cart_items"

    id = Column(BigId, primary_key=True, autoincrement=True)
    cart_id = Column(
        BigInteger, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(BigInteger, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_cents = Column(BigInteger, nullable=False)
    total_cents = Column(BigInteger, nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_cart_item_quantity"),
        CheckConstraint("price_cents >= 0", name="ck_cart_item_price"),
        UniqueConstraint("cart_id", "product_id", name="uq_cart_item_product"),
    )

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<CartItem id={self.id} product_id={self.product_id} "
            f"qty={self.quantity}>"
        )
