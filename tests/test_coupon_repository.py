"""
CouponRepository / PromotionRepository tests

- code normalisation and the duplicate-code conflict
- validate_coupon error order
- used_count arithmetic and the used_up flip
- discount maths on the models
"""

from datetime import timedelta

import pytest

from storefront.core.exceptions import (
    CouponCodeExistsError,
    CouponInvalidError,
    CouponNotApplicableError,
    CouponNotFoundError,
    CouponUsageLimitExceededError,
    DatabaseError,
)
from storefront.models import (
    Coupon,
    CouponApplicability,
    CouponStatus,
    CouponUsage,
    DiscountType,
    Promotion,
    PromotionStatus,
)
from storefront.models.coupon import compute_discount
from storefront.repositories import CouponRepository, PromotionRepository
from storefront.utils.date_utils import DateUtils


@pytest.fixture
def repo(session_factory):
    return CouponRepository(session_factory)


def _coupon(code="save10", **kwargs):
    kwargs.setdefault("name", "Save ten percent")
    kwargs.setdefault("type", DiscountType.PERCENTAGE.value)
    kwargs.setdefault("value", 10)
    return Coupon(code=code, **kwargs)


class TestComputeDiscount:

    @pytest.mark.unit
    def test_percentage(self):
        assert compute_discount("percentage", 15, 10000) == 1500

    @pytest.mark.unit
    def test_percentage_capped(self):
        assert compute_discount("percentage", 50, 10000, max_discount_cents=2000) == 2000

    @pytest.mark.unit
    def test_fixed_never_exceeds_amount(self):
        assert compute_discount("fixed", 5000, 3000) == 3000

    @pytest.mark.unit
    def test_below_minimum_order(self):
        assert compute_discount("fixed", 500, 1000, min_order_cents=2000) == 0

    @pytest.mark.unit
    def test_unsupported_type(self):
        assert compute_discount("free_shipping", 100, 1000) == 0


class TestCouponCrud:

    @pytest.mark.db
    def test_code_is_upper_cased(self, repo):
        coupon = repo.create(_coupon(" save10 "))

        assert coupon.code == "SAVE10"
        assert repo.get_by_code("save10").id == coupon.id

    @pytest.mark.db
    def test_duplicate_code(self, repo):
        repo.create(_coupon("WELCOME"))

        with pytest.raises(CouponCodeExistsError):
            repo.create(_coupon("welcome"))

    @pytest.mark.db
    def test_missing_code(self, repo):
        with pytest.raises(CouponNotFoundError):
            repo.get_by_code("NOPE")

    @pytest.mark.db
    def test_list_and_delete(self, repo):
        first = repo.create(_coupon("A1"))
        repo.create(_coupon("B2"))

        assert len(repo.list()) == 2
        repo.delete(first.id)
        assert [c.code for c in repo.list()] == ["B2"]

    @pytest.mark.db
    def test_active_coupons_exclude_expired(self, repo):
        repo.create(_coupon("LIVE"))
        repo.create(_coupon("OLD", expires_at=DateUtils.now_utc() - timedelta(days=1)))

        assert [c.code for c in repo.get_active_coupons()] == ["LIVE"]

    @pytest.mark.db
    def test_user_coupons(self, repo, make_user):
        owner = make_user()
        other = make_user()
        repo.create(_coupon("EVERYONE"))
        repo.create(_coupon("VIP", applicability=CouponApplicability.USERS.value, users=[owner]))

        assert {c.code for c in repo.get_user_coupons(owner.id)} == {"EVERYONE", "VIP"}
        assert {c.code for c in repo.get_user_coupons(other.id)} == {"EVERYONE"}


class TestValidateCoupon:

    @pytest.mark.db
    def test_valid(self, repo, user):
        repo.create(_coupon("OK"))

        assert repo.validate_coupon("ok", user.id).code == "OK"

    @pytest.mark.db
    def test_not_found(self, repo, user):
        with pytest.raises(CouponNotFoundError):
            repo.validate_coupon("MISSING", user.id)

    @pytest.mark.db
    def test_inactive_is_invalid(self, repo, user):
        repo.create(_coupon("OFF", status=CouponStatus.INACTIVE.value))

        with pytest.raises(CouponInvalidError):
            repo.validate_coupon("OFF", user.id)

    @pytest.mark.db
    def test_not_started_is_invalid(self, repo, user):
        repo.create(_coupon("SOON", starts_at=DateUtils.now_utc() + timedelta(days=2)))

        with pytest.raises(CouponInvalidError):
            repo.validate_coupon("SOON", user.id)

    @pytest.mark.db
    def test_restricted_to_other_user(self, repo, make_user):
        owner = make_user()
        repo.create(_coupon("MINE", applicability=CouponApplicability.USERS.value, users=[owner]))

        with pytest.raises(CouponNotApplicableError):
            repo.validate_coupon("MINE", make_user().id)

    @pytest.mark.db
    def test_per_user_limit(self, repo, user):
        coupon = repo.create(_coupon("ONCE", usage_limit_per_user=1))
        repo.record_usage(CouponUsage(coupon_id=coupon.id, user_id=user.id, discount_cents=100))

        with pytest.raises(CouponUsageLimitExceededError):
            repo.validate_coupon("ONCE", user.id)


class TestCouponUsage:

    @pytest.mark.db
    def test_record_usage_increments_count(self, repo, user):
        coupon = repo.create(_coupon("COUNTME"))

        repo.record_usage(CouponUsage(coupon_id=coupon.id, user_id=user.id, discount_cents=250))
        repo.record_usage(CouponUsage(coupon_id=coupon.id, user_id=user.id, discount_cents=250))

        assert repo.get_by_id(coupon.id).used_count == 2
        assert repo.get_user_usage_count(coupon.id, user.id) == 2
        assert len(repo.get_usage_history(coupon.id)) == 2

    @pytest.mark.db
    def test_limit_reached_marks_used_up(self, repo, user):
        coupon = repo.create(_coupon("LAST", usage_limit=1))

        repo.increment_usage(coupon.id)

        assert repo.get_by_id(coupon.id).status == CouponStatus.USED_UP.value

    @pytest.mark.db
    def test_increment_missing(self, repo):
        with pytest.raises(CouponNotFoundError):
            repo.increment_usage(999)

    @pytest.mark.db
    def test_failed_usage_rolls_back(self, repo, user):
        """A usage for a missing coupon leaves no row behind"""
        coupon = repo.create(_coupon("SAFE"))

        with pytest.raises(DatabaseError):
            repo.record_usage(CouponUsage(coupon_id=coupon.id + 100, user_id=user.id))

        assert repo.get_usage_history(coupon.id + 100) == []

    @pytest.mark.db
    def test_expire_coupons(self, repo):
        repo.create(_coupon("GONE", expires_at=DateUtils.now_utc() - timedelta(minutes=1)))
        repo.create(_coupon("STAYS"))

        assert repo.expire_coupons() == 1
        assert repo.get_by_code("GONE").status == CouponStatus.EXPIRED.value


class TestPromotionRepository:

    @pytest.fixture
    def promos(self, session_factory):
        return PromotionRepository(session_factory)

    def _promotion(self, name, **kwargs):
        now = DateUtils.now_utc()
        kwargs.setdefault("starts_at", now - timedelta(days=1))
        kwargs.setdefault("ends_at", now + timedelta(days=1))
        kwargs.setdefault("status", PromotionStatus.ACTIVE.value)
        kwargs.setdefault("discount_type", DiscountType.PERCENTAGE.value)
        kwargs.setdefault("discount_value", 20)
        return Promotion(name=name, **kwargs)

    @pytest.mark.db
    def test_active_promotions(self, promos):
        promos.create(self._promotion("Running"))
        promos.create(self._promotion("Draft", status=PromotionStatus.DRAFT.value))

        assert [p.name for p in promos.get_active_promotions()] == ["Running"]

    @pytest.mark.db
    def test_featured(self, promos):
        promos.create(self._promotion("Plain"))
        promos.create(self._promotion("Hero", is_featured=True))

        assert [p.name for p in promos.get_featured_promotions()] == ["Hero"]

    @pytest.mark.db
    def test_promotions_for_product(self, promos, make_product):
        target = make_product()
        other = make_product()
        promos.create(self._promotion("Storewide"))
        promos.create(self._promotion("Targeted", products=[target]))

        assert {p.name for p in promos.get_promotions_for_product(target.id)} == {"Storewide", "Targeted"}
        assert {p.name for p in promos.get_promotions_for_product(other.id)} == {"Storewide"}

    @pytest.mark.unit
    def test_promotion_discount(self):
        promotion = self._promotion("Half", discount_value=50, max_discount_cents=1000)

        assert promotion.calculate_discount(5000) == 1000
        assert promotion.is_running()
