# Re-export all models from a single entry point so the rest of the package
# can import cleanly:
#   from storefront.models import Cart, Coupon, Inventory
#
# Importing all models here also registers them with Base.metadata before
# any call to Base.metadata.create_all().

from storefront.models.cart import Cart, CartItem, CartStatus, Currency
from storefront.models.coupon import (
    Coupon,
    CouponApplicability,
    CouponStatus,
    CouponUsage,
    DiscountType,
    Promotion,
    PromotionStatus,
    PromotionType,
)
from storefront.models.email import (
    Email,
    EmailPriority,
    EmailStatus,
    EmailSubscription,
    EmailTemplate,
    EmailType,
)
from storefront.models.file_upload import FileUpload, UploadType
from storefront.models.inventory import (
    AlertStatus,
    AlertType,
    Inventory,
    InventoryMovement,
    MovementReason,
    MovementType,
    StockAlert,
    Warehouse,
)
from storefront.models.loyalty import LoyaltyProgram, TierLevel, UserLoyaltyPoints
from storefront.models.migration import SchemaMigration
from storefront.models.order import Order
from storefront.models.product import Category, Product, Tag, product_tags
from storefront.models.review import (
    ProductRating,
    Review,
    ReviewImage,
    ReviewStatus,
    ReviewVote,
    VoteType,
)
from storefront.models.shipping import (
    Return,
    ReturnReason,
    ReturnStatus,
    Shipment,
    ShipmentStatus,
    ShipmentTracking,
    ShippingMethod,
    ShippingMethodType,
)
from storefront.models.stock_reservation import (
    ReservationStatus,
    ReservationType,
    StockReservation,
)
from storefront.models.user import User
from storefront.models.wishlist import WishlistItem

__all__ = [
    "User",
    "Category",
    "Product",
    "Tag",
    "product_tags",
    "Order",
    "Cart",
    "CartItem",
    "CartStatus",
    "Currency",
    "Coupon",
    "CouponUsage",
    "CouponStatus",
    "CouponApplicability",
    "DiscountType",
    "Promotion",
    "PromotionStatus",
    "PromotionType",
    "LoyaltyProgram",
    "UserLoyaltyPoints",
    "TierLevel",
    "Email",
    "EmailTemplate",
    "EmailSubscription",
    "EmailType",
    "EmailStatus",
    "EmailPriority",
    "Warehouse",
    "Inventory",
    "InventoryMovement",
    "StockAlert",
    "MovementType",
    "MovementReason",
    "AlertType",
    "AlertStatus",
    "StockReservation",
    "ReservationStatus",
    "ReservationType",
    "Review",
    "ReviewImage",
    "ReviewVote",
    "ProductRating",
    "ReviewStatus",
    "VoteType",
    "ShippingMethod",
    "Shipment",
    "ShipmentTracking",
    "Return",
    "ShippingMethodType",
    "ShipmentStatus",
    "ReturnReason",
    "ReturnStatus",
    "WishlistItem",
    "FileUpload",
    "UploadType",
    "SchemaMigration",
]
