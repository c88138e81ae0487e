"""
StockReservationRepository tests

- default expiry and quantity validation on create
- live totals only count active, unexpired holds
- confirm / release / expire transitions match on the current status
"""

from datetime import timedelta

import pytest

from storefront.core.exceptions import StockReservationNotFoundError, ValidationError
from storefront.models import ReservationStatus, ReservationType, StockReservation
from storefront.repositories import StockReservationRepository
from storefront.schemas.filters import ReservationFilter
from storefront.utils.date_utils import DateUtils


@pytest.fixture
def repo(session_factory):
    return StockReservationRepository(session_factory)


def _hold(product, quantity=1, **kwargs):
    return StockReservation(product_id=product.id, quantity=quantity, **kwargs)


def _past():
    return DateUtils.now_utc() - timedelta(minutes=1)


class TestReservationModel:

    @pytest.mark.unit
    def test_extend(self):
        start = DateUtils.now_utc()
        reservation = StockReservation(quantity=1, expires_at=start, status=ReservationStatus.ACTIVE.value)

        reservation.extend(15)

        assert reservation.expires_at == start + timedelta(minutes=15)
        assert reservation.is_active(now=start + timedelta(minutes=10))
        assert not reservation.is_active(now=start + timedelta(minutes=20))


class TestReservationCreate:

    @pytest.mark.db
    def test_defaults(self, repo, product):
        reservation = repo.create(_hold(product, 2))

        assert reservation.status == ReservationStatus.ACTIVE.value
        remaining = DateUtils.ensure_utc(reservation.expires_at) - DateUtils.now_utc()
        assert timedelta(minutes=29) < remaining <= timedelta(minutes=30)

    @pytest.mark.db
    @pytest.mark.parametrize("quantity", [0, -3, None])
    def test_quantity_must_be_positive(self, repo, product, quantity):
        with pytest.raises(ValidationError):
            repo.create(_hold(product, quantity))

    @pytest.mark.db
    def test_create_batch(self, repo, product):
        assert repo.create_batch([_hold(product, n) for n in (1, 2, 3)]) == 3
        assert len(repo.get_by_product_id(product.id)) == 3

    @pytest.mark.db
    def test_delete_missing(self, repo):
        with pytest.raises(StockReservationNotFoundError):
            repo.delete(5150)


class TestReservationTotals:

    @pytest.mark.db
    def test_only_live_holds_count(self, repo, product, user):
        repo.create(_hold(product, 4, user_id=user.id))
        repo.create(_hold(product, 3))
        repo.create(_hold(product, 10, expires_at=_past()))
        repo.create(_hold(product, 7, status=ReservationStatus.CONFIRMED.value))

        assert repo.get_total_reserved_stock(product.id) == 7
        assert repo.get_user_reserved_stock(user.id, product.id) == 4
        assert len(repo.get_active_reservations(product.id)) == 2

    @pytest.mark.db
    def test_expired_sweep(self, repo, product):
        stale = repo.create(_hold(product, 1, expires_at=_past()))
        repo.create(_hold(product, 1))

        assert [r.id for r in repo.get_expired_reservations()] == [stale.id]
        assert repo.release_expired_reservations() == 1
        assert repo.get_by_id(stale.id).status == ReservationStatus.EXPIRED.value
        assert repo.release_expired_reservations() == 0


class TestReservationTransitions:

    @pytest.mark.db
    def test_confirm_then_release(self, repo, product, make_order):
        order = make_order()
        first = repo.create(_hold(product, 1, order_id=order.id))
        repo.create(_hold(product, 2, order_id=order.id))

        assert repo.confirm_by_order_id(order.id) == 2
        assert repo.confirm_by_order_id(order.id) == 0
        assert repo.get_by_id(first.id).confirmed_at is not None

        assert repo.release_by_order_id(order.id) == 2
        assert {r.status for r in repo.get_by_order_id(order.id)} == {ReservationStatus.RELEASED.value}

    @pytest.mark.db
    def test_expired_holds_are_not_released(self, repo, product, make_order):
        order = make_order()
        repo.create(_hold(product, 1, order_id=order.id, status=ReservationStatus.EXPIRED.value))

        assert repo.release_by_order_id(order.id) == 0

    @pytest.mark.db
    def test_filtered_list(self, repo, product, user):
        repo.create(_hold(product, 5, user_id=user.id, type=ReservationType.CART.value))
        repo.create(_hold(product, 1, user_id=user.id))
        repo.create(_hold(product, 9))

        filters = ReservationFilter(user_id=user.id, sort_by="quantity", sort_order="asc")

        assert [r.quantity for r in repo.list(filters)] == [1, 5]
        assert repo.count(ReservationFilter(type=ReservationType.CART.value)) == 1
        assert repo.count(ReservationFilter(expires_before=DateUtils.now_utc())) == 0
