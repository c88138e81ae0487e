from storefront.repositories.base import BaseRepository
from storefront.repositories.cart_repository import CartRepository
from storefront.repositories.coupon_repository import CouponRepository
from storefront.repositories.email_repository import (
    EmailRepository,
    EmailSubscriptionRepository,
    EmailTemplateRepository,
)
from storefront.repositories.file_repository import FileRepository
from storefront.repositories.inventory_repository import InventoryRepository
from storefront.repositories.loyalty_repository import LoyaltyRepository
from storefront.repositories.product_rating_repository import ProductRatingRepository
from storefront.repositories.promotion_repository import PromotionRepository
from storefront.repositories.review_repository import ReviewRepository
from storefront.repositories.review_vote_repository import ReviewVoteRepository
from storefront.repositories.shipping_repository import ShippingRepository
from storefront.repositories.stock_reservation_repository import StockReservationRepository
from storefront.repositories.tag_repository import TagRepository
from storefront.repositories.wishlist_repository import WishlistRepository

__all__ = [
    "BaseRepository",
    "CartRepository",
    "CouponRepository",
    "PromotionRepository",
    "LoyaltyRepository",
    "EmailRepository",
    "EmailTemplateRepository",
    "EmailSubscriptionRepository",
    "InventoryRepository",
    "StockReservationRepository",
    "ReviewRepository",
    "ReviewVoteRepository",
    "ProductRatingRepository",
    "ShippingRepository",
    "TagRepository",
    "WishlistRepository",
    "FileRepository",
]
