import logging
from typing import Optional

from sqlalchemy import select, update

from storefront.core.exceptions import (
    InsufficientPointsError,
    LoyaltyAccountNotFoundError,
    LoyaltyProgramNotFoundError,
    ValidationError,
)
from storefront.models.loyalty import LoyaltyProgram, TierLevel, UserLoyaltyPoints, tier_for_points
from storefront.repositories.base import BaseRepository
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class LoyaltyRepository(BaseRepository[UserLoyaltyPoints]):
    """
    Loyalty balances.

    Balances are only ever moved with guarded arithmetic UPDATEs
    (available_points >= :p), so two concurrent redemptions can never take
    a balance below zero.
    """

    model = UserLoyaltyPoints
    not_found_error = LoyaltyAccountNotFoundError

    @staticmethod
    def _check_points(points: int) -> None:
        if points is None or points <= 0:
            raise ValidationError(
                "Points must be positive",
                [{"field": "points", "message": "must be greater than 0"}],
            )

    def get_user_points(self, user_id: int) -> UserLoyaltyPoints:
        """Balance of a user; a bronze, zero-point row is created on first access"""
        with self.get_db_session("WRITE") as session:
            points = session.scalars(
                select(UserLoyaltyPoints)
                .where(UserLoyaltyPoints.user_id == user_id)
                .execution_options(populate_existing=True)
            ).first()
            if points is None:
                points = UserLoyaltyPoints(
                    user_id=user_id,
                    total_points=0,
                    available_points=0,
                    used_points=0,
                    expired_points=0,
                    tier_level=TierLevel.BRONZE.value,
                )
                session.add(points)
                session.flush()
                logger.info(f"Created loyalty account for user {user_id}")
            return points

    def add_points(self, user_id: int, points: int, reason: Optional[str] = None) -> UserLoyaltyPoints:
        self._check_points(points)
        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                result = session.execute(
                    update(UserLoyaltyPoints)
                    .where(UserLoyaltyPoints.user_id == user_id)
                    .values(
                        total_points=UserLoyaltyPoints.total_points + points,
                        available_points=UserLoyaltyPoints.available_points + points,
                        updated_at=DateUtils.now_utc(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    session.add(UserLoyaltyPoints(
                        user_id=user_id,
                        total_points=points,
                        available_points=points,
                        used_points=0,
                        expired_points=0,
                        tier_level=TierLevel.BRONZE.value,
                    ))
                    session.flush()

                balance = tx.get_user_points(user_id)
                tier = tier_for_points(balance.total_points).value
                if tier != balance.tier_level:
                    balance.tier_level = tier
                    session.flush()
                    logger.info(f"User {user_id} moved to {tier} tier")

        logger.info(f"Added {points} points to user {user_id} ({reason or 'no reason'})")
        return balance

    def redeem_points(self, user_id: int, points: int) -> UserLoyaltyPoints:
        self._check_points(points)
        self._guarded_move(user_id, points, "used_points")
        logger.info(f"User {user_id} redeemed {points} points")
        return self.get_user_points(user_id)

    def expire_points(self, user_id: int, points: int) -> UserLoyaltyPoints:
        self._check_points(points)
        self._guarded_move(user_id, points, "expired_points")
        logger.info(f"Expired {points} points for user {user_id}")
        return self.get_user_points(user_id)

    def _guarded_move(self, user_id: int, points: int, target: str) -> None:
        """available -> target column, only if the balance covers it"""
        target_column = getattr(UserLoyaltyPoints, target)
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(UserLoyaltyPoints)
                .where(
                    UserLoyaltyPoints.user_id == user_id,
                    UserLoyaltyPoints.available_points >= points,
                )
                .values({
                    UserLoyaltyPoints.available_points: UserLoyaltyPoints.available_points - points,
                    target_column: target_column + points,
                    UserLoyaltyPoints.updated_at: DateUtils.now_utc(),
                })
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InsufficientPointsError(
                    f"User {user_id} does not have {points} available points"
                )

    def get_loyalty_program(self) -> LoyaltyProgram:
        stmt = (
            select(LoyaltyProgram)
            .where(LoyaltyProgram.is_active.is_(True))
            .order_by(LoyaltyProgram.id)
        )
        with self.get_db_session() as session:
            program = session.scalars(stmt).first()
            if program is None:
                raise LoyaltyProgramNotFoundError()
            return program
