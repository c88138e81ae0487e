"""
Computed read models returned by the reporting queries.

These are not mapped to tables; repositories build them from aggregate
SELECTs and hand them back as plain dataclasses.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


def _rate(part: int, whole: int) -> float:
    """Percentage rounded to two places; 0 when whole is 0"""
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, 2)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class AbandonedCartStats:
    total_abandoned: int = 0
    total_recovered: int = 0
    recovery_rate: float = 0.0
    average_cart_value_cents: int = 0
    total_lost_revenue_cents: int = 0
    recovered_revenue_cents: int = 0
    first_reminders_sent: int = 0
    second_reminders_sent: int = 0
    final_reminders_sent: int = 0

    @property
    def total_lost_revenue_dollars(self) -> Decimal:
        return Decimal(self.total_lost_revenue_cents) / 100

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_lost_revenue_dollars"] = str(self.total_lost_revenue_dollars)
        return data


@dataclass
class EmailStats:
    total_sent: int = 0
    total_delivered: int = 0
    total_opened: int = 0
    total_clicked: int = 0
    total_bounced: int = 0
    total_failed: int = 0

    # delivery/bounce/failure are measured against sent,
    # open/click against delivered
    @property
    def delivery_rate(self) -> float:
        return _rate(self.total_delivered, self.total_sent)

    @property
    def bounce_rate(self) -> float:
        return _rate(self.total_bounced, self.total_sent)

    @property
    def failure_rate(self) -> float:
        return _rate(self.total_failed, self.total_sent)

    @property
    def open_rate(self) -> float:
        return _rate(self.total_opened, self.total_delivered)

    @property
    def click_rate(self) -> float:
        return _rate(self.total_clicked, self.total_delivered)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update({
            "delivery_rate": self.delivery_rate,
            "open_rate": self.open_rate,
            "click_rate": self.click_rate,
            "bounce_rate": self.bounce_rate,
            "failure_rate": self.failure_rate,
        })
        return data


@dataclass
class MovementReportRow:
    movement_id: int
    inventory_id: int
    product_id: int
    product_name: str
    product_sku: str
    type: str
    reason: str
    quantity: int
    quantity_before: int
    quantity_after: int
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data


@dataclass
class MovementReport:
    rows: List[MovementReportRow] = field(default_factory=list)
    total_inbound: int = 0
    total_outbound: int = 0

    @property
    def net_movement(self) -> int:
        return self.total_inbound - self.total_outbound

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "total_inbound": self.total_inbound,
            "total_outbound": self.total_outbound,
            "net_movement": self.net_movement,
        }


@dataclass
class StockReportRow:
    inventory_id: int
    product_id: int
    product_name: str
    product_sku: str
    warehouse_id: Optional[int]
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    reorder_level: int
    average_cost_cents: int
    value_cents: int
    stock_status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StockReport:
    rows: List[StockReportRow] = field(default_factory=list)
    total_items: int = 0
    low_stock_count: int = 0
    out_of_stock_count: int = 0
    total_value_cents: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "total_items": self.total_items,
            "low_stock_count": self.low_stock_count,
            "out_of_stock_count": self.out_of_stock_count,
            "total_value_cents": self.total_value_cents,
        }


@dataclass
class ReviewSummary:
    product_id: int
    average_rating: float = 0.0
    total_reviews: int = 0
    rating_counts: Dict[int, int] = field(default_factory=lambda: {star: 0 for star in range(1, 6)})
    rating_percentages: Dict[int, float] = field(default_factory=lambda: {star: 0.0 for star in range(1, 6)})
    recent_reviews: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "average_rating": self.average_rating,
            "total_reviews": self.total_reviews,
            "rating_counts": dict(self.rating_counts),
            "rating_percentages": dict(self.rating_percentages),
            "recent_review_ids": [review.id for review in self.recent_reviews],
        }


@dataclass
class RatingDistribution:
    """Star counts summed over every rated product"""
    rating_counts: Dict[int, int] = field(default_factory=lambda: {star: 0 for star in range(1, 6)})
    total_reviews: int = 0
    average_rating: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rating_counts": dict(self.rating_counts),
            "total_reviews": self.total_reviews,
            "average_rating": self.average_rating,
        }


@dataclass
class MigrationStatus:
    version: str
    name: str
    applied: bool = False
    applied_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "name": self.name,
            "applied": self.applied,
            "applied_at": _iso(self.applied_at),
        }
