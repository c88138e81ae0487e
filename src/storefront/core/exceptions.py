from typing import Optional, Dict, Any, List
import traceback
import sys


class BaseAPIException(Exception):
    def __init__(self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None):
        self.message = message  # User-facing message
        self.internal_message = internal_message or message  # Internal/debug message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__.replace('Error', '').upper()
        self.details = details or {}

        # Capture stack trace for debugging
        self.traceback = traceback.format_exc() if sys.exc_info()[0] else None

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(BaseAPIException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str = "Validation failed",
        field_errors: Optional[List[Dict[str, str]]] = None
    ):
        details = {"field_errors": field_errors} if field_errors else {}
        super().__init__(message, 400, "VALIDATION_ERROR", details)


class NotFoundError(BaseAPIException):
    """Raised when a requested resource is not found"""

    resource = "Resource"

    def __init__(self, resource: Optional[str] = None, resource_id: Optional[Any] = None):
        resource = resource or self.resource
        message = f"{resource} not found"
        if resource_id is not None:
            message += f" with ID: {resource_id}"
        self.resource_id = resource_id
        super().__init__(message, 404, "NOT_FOUND")


class ConflictError(BaseAPIException):
    """Raised when there's a conflict with the current state"""

    def __init__(self, message: str = "Resource conflict", conflict_field: Optional[str] = None):
        details = {"conflict_field": conflict_field} if conflict_field else {}
        super().__init__(message, 409, "CONFLICT", details)


class BusinessLogicError(BaseAPIException):
    """Raised when business rules are violated"""

    def __init__(self, message: str, rule: Optional[str] = None):
        details = {"violated_rule": rule} if rule else {}
        super().__init__(message, 422, "BUSINESS_LOGIC_ERROR", details)


class DatabaseError(BaseAPIException):
    """Raised when database operations fail"""

    def __init__(self, message: str = "Database operation failed", operation: Optional[str] = None):
        # Don't expose internal database details to users
        user_message = "An internal error occurred. Please try again later."
        details = {"operation": operation} if operation else {}
        super().__init__(
            user_message,
            500,
            "DATABASE_ERROR",
            details,
            internal_message=message  # Keep original message for logging
        )


class InternalServerError(BaseAPIException):
    """Raised for unexpected internal errors"""

    def __init__(self, message: str = "An unexpected error occurred", context: Optional[Dict[str, Any]] = None):
        user_message = "An internal server error occurred. Please try again later."
        super().__init__(
            user_message,
            500,
            "INTERNAL_ERROR",
            context or {},
            internal_message=message
        )


# ---------------------------------------------------------------------------
# Domain sentinels. Repositories raise these instead of returning None so
# callers can branch on type.
# ---------------------------------------------------------------------------

class CartNotFoundError(NotFoundError):
    resource = "Cart"


class CartItemNotFoundError(NotFoundError):
    resource = "Cart item"


class CouponNotFoundError(NotFoundError):
    resource = "Coupon"


class PromotionNotFoundError(NotFoundError):
    resource = "Promotion"


class LoyaltyProgramNotFoundError(NotFoundError):
    resource = "Loyalty program"


class LoyaltyAccountNotFoundError(NotFoundError):
    resource = "Loyalty account"


class EmailNotFoundError(NotFoundError):
    resource = "Email"


class EmailTemplateNotFoundError(NotFoundError):
    resource = "Email template"


class EmailSubscriptionNotFoundError(NotFoundError):
    resource = "Email subscription"


class InventoryNotFoundError(NotFoundError):
    resource = "Inventory"


class StockAlertNotFoundError(NotFoundError):
    resource = "Stock alert"


class StockReservationNotFoundError(NotFoundError):
    resource = "Stock reservation"


class ReviewNotFoundError(NotFoundError):
    resource = "Review"


class ReviewVoteNotFoundError(NotFoundError):
    resource = "Review vote"


class ProductRatingNotFoundError(NotFoundError):
    resource = "Product rating"


class ShipmentNotFoundError(NotFoundError):
    resource = "Shipment"


class ShippingMethodNotFoundError(NotFoundError):
    resource = "Shipping method"


class ReturnNotFoundError(NotFoundError):
    resource = "Return"


class TagNotFoundError(NotFoundError):
    resource = "Tag"


class WishlistItemNotFoundError(NotFoundError):
    resource = "Wishlist item"


class FileNotFoundInStoreError(NotFoundError):
    resource = "File"


class CouponInvalidError(BusinessLogicError):
    def __init__(self, message: str = "Coupon is invalid"):
        super().__init__(message, "coupon_invalid")


class CouponNotApplicableError(BusinessLogicError):
    def __init__(self, message: str = "Coupon is not applicable"):
        super().__init__(message, "coupon_not_applicable")


class CouponUsageLimitExceededError(BusinessLogicError):
    def __init__(self, message: str = "Coupon usage limit exceeded"):
        super().__init__(message, "coupon_usage_limit")


class InsufficientStockError(BusinessLogicError):
    def __init__(self, message: str = "Insufficient stock"):
        super().__init__(message, "insufficient_stock")


class InsufficientPointsError(BusinessLogicError):
    def __init__(self, message: str = "Insufficient loyalty points"):
        super().__init__(message, "insufficient_points")


class CouponCodeExistsError(ConflictError):
    def __init__(self, code: Optional[str] = None):
        message = "Coupon code already exists"
        if code:
            message += f": {code}"
        super().__init__(message, "code")


class DuplicateWishlistItemError(ConflictError):
    def __init__(self, message: str = "Product is already in the wishlist"):
        super().__init__(message, "product_id")
