from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SortOrder(str, Enum):
    """Standard sort order options"""
    ASC = "asc"
    DESC = "desc"


class ListFilter(BaseModel):
    """
    Pagination and sorting shared by every list filter.

    limit/offset of 0 mean "no limit" / "from the start". sort_by is checked
    against the subclass' SORT_FIELDS whitelist so it can be turned into an
    ORDER BY without ever reaching SQL as free text.
    """

    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at",)
    DEFAULT_SORT: ClassVar[str] = "created_at"

    limit: int = Field(default=20, ge=0, le=1000, description="Max rows to return, 0 for no limit")
    offset: int = Field(default=0, ge=0, description="Rows to skip")
    sort_by: Optional[str] = Field(default=None, description="Column to sort by")
    sort_order: SortOrder = Field(default=SortOrder.DESC, description="Sort direction")

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("sort_by")
    @classmethod
    def validate_sort_by(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if v not in cls.SORT_FIELDS:
            raise ValueError(f"sort_by must be one of: {', '.join(cls.SORT_FIELDS)}")
        return v

    @property
    def order_column(self) -> str:
        return self.sort_by or self.DEFAULT_SORT

    @property
    def descending(self) -> bool:
        return self.sort_order == SortOrder.DESC.value


class InventoryFilter(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "updated_at", "quantity_available", "quantity_on_hand")

    product_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    low_stock: Optional[bool] = None
    out_of_stock: Optional[bool] = None
    is_active: Optional[bool] = None


class ReservationFilter(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "expires_at", "quantity", "status")

    product_id: Optional[int] = None
    order_id: Optional[int] = None
    user_id: Optional[int] = None
    type: Optional[str] = None
    status: Optional[str] = None
    expires_before: Optional[datetime] = None
    created_after: Optional[datetime] = None


class ReviewFilter(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "rating", "helpful_count")

    product_id: Optional[int] = None
    user_id: Optional[int] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    status: Optional[str] = None
    is_verified: Optional[bool] = None
    min_rating: Optional[int] = Field(default=None, ge=1, le=5)
    max_rating: Optional[int] = Field(default=None, ge=1, le=5)

    model_config = ConfigDict(
        use_enum_values=True,
        json_schema_extra={
            "example": {"product_id": 12, "min_rating": 4, "sort_by": "helpful_count", "limit": 10}
        },
    )


class ShipmentFilter(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "status", "carrier")

    order_id: Optional[int] = None
    status: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, description="Substring match")
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class WishlistFilter(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "product_name")

    user_id: Optional[int] = None
    product_id: Optional[int] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class EmailSearchQuery(ListFilter):
    SORT_FIELDS: ClassVar[Tuple[str, ...]] = ("created_at", "sent_at", "status", "type", "priority", "to_email")

    user_id: Optional[int] = None
    order_id: Optional[int] = None
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    to_email: Optional[str] = Field(default=None, description="Substring match")
    subject: Optional[str] = Field(default=None, description="Substring match")
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    sent_from: Optional[datetime] = None
    sent_to: Optional[datetime] = None
    is_delivered: Optional[bool] = None
    is_opened: Optional[bool] = None
    is_clicked: Optional[bool] = None
    is_bounced: Optional[bool] = None
    is_failed: Optional[bool] = None
    can_retry: Optional[bool] = None
