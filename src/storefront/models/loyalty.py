from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column


class TierLevel(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


# Lifetime points needed for each tier, highest first
TIER_THRESHOLDS = (
    (10000, TierLevel.PLATINUM),
    (5000, TierLevel.GOLD),
    (1000, TierLevel.SILVER),
    (0, TierLevel.BRONZE),
)


def tier_for_points(total_points: int) -> TierLevel:
    for threshold, tier in TIER_THRESHOLDS:
        if total_points >= threshold:
            return tier
    return TierLevel.BRONZE


class LoyaltyProgram(Base):
    """
    Earning and redemption rules.

    Only one program is expected to be active at a time.
    """

    __tablename__ = "loyalty_programs"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    points_per_dollar = Column(Integer, nullable=False, default=1)
    cents_per_point = Column(Integer, nullable=False, default=1)
    min_points_to_redeem = Column(Integer, nullable=False, default=100)
    max_points_per_order = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("points_per_dollar >= 0", name="ck_loyalty_points_per_dollar"),
        CheckConstraint("cents_per_point >= 0", name="ck_loyalty_cents_per_point"),
    )

    def can_redeem(self, points: int) -> bool:
        if points < self.min_points_to_redeem:
            return False
        if self.max_points_per_order and points > self.max_points_per_order:
            return False
        return True

    def calculate_redemption_value_cents(self, points: int) -> int:
        return points * self.cents_per_point

    def points_for_amount(self, amount_cents: int) -> int:
        return (amount_cents // 100) * self.points_per_dollar

    def __repr__(self) -> str:
        return f"<LoyaltyProgram id={self.id} name={self.name!r}>"


class UserLoyaltyPoints(Base):
    """
    Point balance for one user.

    total_points only grows; available + used + expired == total.
    """

    __tablename__ = "user_loyalty_points"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_points = Column(BigInteger, nullable=False, default=0)
    available_points = Column(BigInteger, nullable=False, default=0)
    used_points = Column(BigInteger, nullable=False, default=0)
    expired_points = Column(BigInteger, nullable=False, default=0)
    tier_level = Column(Text, nullable=False, default=TierLevel.BRONZE.value)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("available_points >= 0", name="ck_loyalty_available"),
        CheckConstraint("used_points >= 0", name="ck_loyalty_used"),
        CheckConstraint("expired_points >= 0", name="ck_loyalty_expired"),
        enum_check("tier_level", TierLevel, "ck_loyalty_tier"),
    )

    user = relationship("User")

    def __repr__(self) -> str:
        return (
            f"<UserLoyaltyPoints user_id={self.user_id} "
            f"available={self.available_points} tier={self.tier_level!r}>"
        )
