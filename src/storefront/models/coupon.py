from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey
from sqlalchemy import Integer, Table, Text
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column
from storefront.utils.date_utils import DateUtils


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"
    BUY_X_GET_Y = "buy_x_get_y"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USED_UP = "used_up"


class CouponApplicability(str, Enum):
    ALL = "all"
    CATEGORIES = "categories"
    PRODUCTS = "products"
    USERS = "users"


class PromotionType(str, Enum):
    FLASH_SALE = "flash_sale"
    SEASONAL = "seasonal"
    CLEARANCE = "clearance"
    BUNDLE = "bundle"


class PromotionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


def compute_discount(
    discount_type: str,
    value: int,
    amount_cents: int,
    min_order_cents: int = 0,
    max_discount_cents: Optional[int] = None,
) -> int:
    """
    Discount in cents for an order amount.

    For percentage discounts ``value`` is a whole percentage (15 -> 15%);
    for fixed discounts it is an amount in cents. The result never exceeds
    the order amount.
    """
    if amount_cents <= 0 or amount_cents < (min_order_cents or 0):
        return 0

    if discount_type == DiscountType.PERCENTAGE.value:
        discount = amount_cents * value // 100
        if max_discount_cents:
            discount = min(discount, max_discount_cents)
    elif discount_type == DiscountType.FIXED.value:
        discount = value
    else:
        return 0

    return max(0, min(discount, amount_cents))


coupon_categories = Table(
    "coupon_categories",
    Base.metadata,
    Column("coupon_id", BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", BigInteger, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

coupon_products = Table(
    "coupon_products",
    Base.metadata,
    Column("coupon_id", BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", BigInteger, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)

coupon_users = Table(
    "coupon_users",
    Base.metadata,
    Column("coupon_id", BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Coupon(Base):
    """
    A redeemable discount code.

    used_count is only ever changed by CouponRepository.increment_usage(),
    which bumps it in SQL (used_count = used_count + 1) so two concurrent
    redemptions cannot both read the same value.
    """

    __tablename__ = "coupons"

    id = Column(BigId, primary_key=True, autoincrement=True)
    code = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Text, nullable=False, default=DiscountType.PERCENTAGE.value)
    value = Column(BigInteger, nullable=False, default=0)
    max_discount_cents = Column(BigInteger, nullable=True)
    min_order_cents = Column(BigInteger, nullable=False, default=0)
    usage_limit = Column(Integer, nullable=True)
    usage_limit_per_user = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    applicability = Column(Text, nullable=False, default=CouponApplicability.ALL.value)
    buy_quantity = Column(Integer, nullable=True)
    get_quantity = Column(Integer, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, nullable=False, default=CouponStatus.ACTIVE.value)
    is_first_time_user = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("type", DiscountType, "ck_coupon_type"),
        enum_check("status", CouponStatus, "ck_coupon_status"),
        enum_check("applicability", CouponApplicability, "ck_coupon_applicability"),
        CheckConstraint("value >= 0", name="ck_coupon_value"),
        CheckConstraint("used_count >= 0", name="ck_coupon_used_count"),
    )

    categories = relationship("Category", secondary=coupon_categories)
    products = relationship("Product", secondary=coupon_products)
    users = relationship("User", secondary=coupon_users)

    def is_valid(self, now=None) -> bool:
        now = now or DateUtils.now_utc()
        if self.status != CouponStatus.ACTIVE.value:
            return False
        if self.starts_at is not None and now < DateUtils.ensure_utc(self.starts_at):
            return False
        if self.expires_at is not None and now > DateUtils.ensure_utc(self.expires_at):
            return False
        if self.usage_limit is not None and (self.used_count or 0) >= self.usage_limit:
            return False
        return True

    def can_be_used_by(self, user_id: int) -> bool:
        if self.applicability != CouponApplicability.USERS.value:
            return True
        return any(user.id == user_id for user in self.users)

    def calculate_discount(self, order_total_cents: int) -> int:
        return compute_discount(
            self.type,
            self.value or 0,
            order_total_cents,
            self.min_order_cents or 0,
            self.max_discount_cents,
        )

    def __repr__(self) -> str:
        return f"<Coupon id={self.id} code={self.code!r} status={self.status!r}>"


class CouponUsage(Base):
    """One redemption of a coupon against an order."""

    __tablename__ = "coupon_usage"

    id = Column(BigId, primary_key=True, autoincrement=True)
    coupon_id = Column(
        BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    order_id = Column(BigInteger, ForeignKey("orders.id"), nullable=True)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    created_at = created_at_column()

    coupon = relationship("Coupon")

    def __repr__(self) -> str:
        return f"<CouponUsage coupon_id={self.coupon_id} user_id={self.user_id}>"


promotion_categories = Table(
    "promotion_categories",
    Base.metadata,
    Column("promotion_id", BigInteger, ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", BigInteger, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

promotion_products = Table(
    "promotion_products",
    Base.metadata,
    Column("promotion_id", BigInteger, ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", BigInteger, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Promotion(Base):
    """
    A time-boxed storewide or targeted sale.

    Unlike coupons, promotions need no code: every order inside
    [starts_at, ends_at) that matches the product/category restriction gets
    the discount.
    """

    __tablename__ = "promotions"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Text, nullable=False, default=PromotionType.SEASONAL.value)
    discount_type = Column(Text, nullable=False, default=DiscountType.PERCENTAGE.value)
    discount_value = Column(BigInteger, nullable=False, default=0)
    max_discount_cents = Column(BigInteger, nullable=True)
    min_order_cents = Column(BigInteger, nullable=False, default=0)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default=PromotionStatus.DRAFT.value)
    banner_image = Column(Text, nullable=True)
    banner_text = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("type", PromotionType, "ck_promotion_type"),
        enum_check("discount_type", DiscountType, "ck_promotion_discount_type"),
        enum_check("status", PromotionStatus, "ck_promotion_status"),
        CheckConstraint("ends_at > starts_at", name="ck_promotion_window"),
    )

    categories = relationship("Category", secondary=promotion_categories)
    products = relationship("Product", secondary=promotion_products)

    def is_running(self, now=None) -> bool:
        now = now or DateUtils.now_utc()
        return (
            self.status == PromotionStatus.ACTIVE.value
            and DateUtils.ensure_utc(self.starts_at) <= now < DateUtils.ensure_utc(self.ends_at)
        )

    def calculate_discount(self, amount_cents: int) -> int:
        return compute_discount(
            self.discount_type,
            self.discount_value or 0,
            amount_cents,
            self.min_order_cents or 0,
            self.max_discount_cents,
        )

    def __repr__(self) -> str:
        return f"<Promotion id={self.id} name={self.name!r} status={self.status!r}>"
