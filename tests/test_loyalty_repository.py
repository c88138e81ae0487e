"""
LoyaltyRepository tests

- balances are created on first access
- add / redeem / expire move points with guarded SQL arithmetic
- tier follows lifetime points
"""

import pytest

from storefront.core.exceptions import (
    InsufficientPointsError,
    LoyaltyAccountNotFoundError,
    LoyaltyProgramNotFoundError,
    ValidationError,
)
from storefront.models import LoyaltyProgram, TierLevel
from storefront.models.loyalty import tier_for_points
from storefront.repositories import LoyaltyRepository


@pytest.fixture
def repo(session_factory):
    return LoyaltyRepository(session_factory)


class TestTiers:

    @pytest.mark.unit
    @pytest.mark.parametrize("points, tier", [
        (0, TierLevel.BRONZE),
        (999, TierLevel.BRONZE),
        (1000, TierLevel.SILVER),
        (5000, TierLevel.GOLD),
        (25000, TierLevel.PLATINUM),
    ])
    def test_tier_for_points(self, points, tier):
        assert tier_for_points(points) == tier

    @pytest.mark.unit
    def test_program_redemption_rules(self):
        program = LoyaltyProgram(
            name="p", points_per_dollar=2, cents_per_point=1,
            min_points_to_redeem=100, max_points_per_order=500,
        )

        assert program.points_for_amount(1999) == 38
        assert program.can_redeem(100)
        assert not program.can_redeem(99)
        assert not program.can_redeem(501)
        assert program.calculate_redemption_value_cents(250) == 250


class TestLoyaltyBalances:

    @pytest.mark.db
    def test_first_access_creates_bronze_balance(self, repo, user):
        balance = repo.get_user_points(user.id)

        assert balance.available_points == 0
        assert balance.tier_level == TierLevel.BRONZE.value

    @pytest.mark.db
    def test_add_points_without_existing_row(self, repo, user):
        balance = repo.add_points(user.id, 150, "order 1")

        assert balance.total_points == 150
        assert balance.available_points == 150

    @pytest.mark.db
    def test_add_points_accumulates_and_promotes(self, repo, user):
        repo.add_points(user.id, 600)
        balance = repo.add_points(user.id, 600)

        assert balance.total_points == 1200
        assert balance.tier_level == TierLevel.SILVER.value

    @pytest.mark.db
    def test_redeem(self, repo, user):
        repo.add_points(user.id, 300)

        balance = repo.redeem_points(user.id, 120)

        assert balance.available_points == 180
        assert balance.used_points == 120
        assert balance.total_points == 300

    @pytest.mark.db
    def test_redeem_more_than_available(self, repo, user):
        repo.add_points(user.id, 50)

        with pytest.raises(InsufficientPointsError):
            repo.redeem_points(user.id, 51)
        assert repo.get_user_points(user.id).available_points == 50

    @pytest.mark.db
    def test_expire(self, repo, user):
        repo.add_points(user.id, 100)

        balance = repo.expire_points(user.id, 40)

        assert balance.expired_points == 40
        assert balance.available_points == 60

    @pytest.mark.db
    def test_non_positive_points_rejected(self, repo, user):
        with pytest.raises(ValidationError):
            repo.add_points(user.id, 0)

    @pytest.mark.db
    def test_missing_account(self, repo):
        with pytest.raises(LoyaltyAccountNotFoundError):
            repo.get_by_id(4321)

    @pytest.mark.db
    def test_loyalty_program_missing(self, repo):
        with pytest.raises(LoyaltyProgramNotFoundError):
            repo.get_loyalty_program()

    @pytest.mark.db
    def test_loyalty_program_active(self, repo, session_factory):
        with session_factory() as session:
            session.add(LoyaltyProgram(name="Old", is_active=False))
            session.add(LoyaltyProgram(name="Current", is_active=True))
            session.commit()

        assert repo.get_loyalty_program().name == "Current"
