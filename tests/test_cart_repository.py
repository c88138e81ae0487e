"""
CartRepository tests

- ownership validation and default expiry on create
- item writes keep subtotal / item_count / total in step with cart_items
- expiry sweep, abandonment flags and the abandoned-cart stats query
"""

from datetime import timedelta

import pytest

from storefront.core.exceptions import CartItemNotFoundError, CartNotFoundError, ValidationError
from storefront.models import Cart, CartItem, CartStatus
from storefront.repositories import CartRepository
from storefront.utils.date_utils import DateUtils


@pytest.fixture
def repo(session_factory):
    return CartRepository(session_factory)


@pytest.fixture
def cart(repo, user):
    return repo.create(Cart(user_id=user.id))


def _item(product, quantity=1):
    return CartItem(product_id=product.id, quantity=quantity, price_cents=product.price_cents)


class TestCartCreate:

    @pytest.mark.db
    def test_user_cart_defaults(self, repo, user):
        """A user cart starts active and expires in about a week"""
        cart = repo.create(Cart(user_id=user.id))

        assert cart.id is not None
        assert cart.status == CartStatus.ACTIVE.value
        remaining = DateUtils.ensure_utc(cart.expires_at) - DateUtils.now_utc()
        assert timedelta(days=6) < remaining <= timedelta(days=7)

    @pytest.mark.db
    def test_guest_cart_expires_after_a_day(self, repo):
        cart = repo.create(Cart(session_id="guest-session-0001"))

        remaining = DateUtils.ensure_utc(cart.expires_at) - DateUtils.now_utc()
        assert remaining <= timedelta(days=1)
        assert cart.is_guest

    @pytest.mark.db
    def test_both_owners_rejected(self, repo, user):
        with pytest.raises(ValidationError):
            repo.create(Cart(user_id=user.id, session_id="guest-session-0001"))

    @pytest.mark.db
    def test_no_owner_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.create(Cart())

    @pytest.mark.db
    def test_bad_session_id_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.create(Cart(session_id="bad id!"))


class TestCartLookup:

    @pytest.mark.db
    def test_get_by_id_missing(self, repo):
        with pytest.raises(CartNotFoundError):
            repo.get_by_id(999)

    @pytest.mark.db
    def test_get_by_user_id_returns_newest_active(self, repo, user):
        repo.create(Cart(user_id=user.id))
        newest = repo.create(Cart(user_id=user.id))

        assert repo.get_by_user_id(user.id).id == newest.id

    @pytest.mark.db
    def test_get_by_session_id_for_update(self, repo):
        cart = repo.create(Cart(session_id="guest-session-0002"))

        with repo.transaction() as tx:
            locked = tx.get_by_session_id_for_update("guest-session-0002")
        assert locked.id == cart.id

    @pytest.mark.db
    def test_delete_missing(self, repo):
        with pytest.raises(CartNotFoundError):
            repo.delete(12345)


class TestCartItems:

    @pytest.mark.db
    def test_add_item_updates_totals(self, repo, cart, make_product):
        a = make_product(price_cents=1000)
        b = make_product(price_cents=250)

        repo.add_item(cart.id, _item(a, 2))
        repo.add_item(cart.id, _item(b, 4))

        fresh = repo.get_by_id(cart.id)
        assert fresh.subtotal_cents == 3000
        assert fresh.total_cents == 3000
        assert fresh.item_count == 6
        assert len(fresh.items) == 2

    @pytest.mark.db
    def test_add_same_product_bumps_quantity(self, repo, cart, product):
        repo.add_item(cart.id, _item(product, 1))
        line = repo.add_item(cart.id, _item(product, 2))

        assert line.quantity == 3
        assert line.total_cents == 3 * product.price_cents
        assert len(repo.get_items(cart.id)) == 1

    @pytest.mark.db
    def test_add_item_to_missing_cart(self, repo, product):
        with pytest.raises(CartNotFoundError):
            repo.add_item(424242, _item(product))

    @pytest.mark.db
    def test_zero_quantity_rejected(self, repo, cart, product):
        with pytest.raises(ValidationError):
            repo.add_item(cart.id, _item(product, 0))

    @pytest.mark.db
    def test_update_item(self, repo, cart, product):
        line = repo.add_item(cart.id, _item(product, 1))

        repo.update_item(CartItem(id=line.id, quantity=5, price_cents=None))

        fresh = repo.get_by_id(cart.id)
        assert fresh.item_count == 5
        assert fresh.subtotal_cents == 5 * product.price_cents

    @pytest.mark.db
    def test_remove_item(self, repo, cart, product):
        repo.add_item(cart.id, _item(product, 2))

        repo.remove_item(cart.id, product.id)

        fresh = repo.get_by_id(cart.id)
        assert fresh.item_count == 0
        assert fresh.subtotal_cents == 0

    @pytest.mark.db
    def test_remove_missing_item(self, repo, cart, product):
        with pytest.raises(CartItemNotFoundError):
            repo.remove_item(cart.id, product.id)

    @pytest.mark.db
    def test_clear_cart(self, repo, cart, make_product):
        repo.add_item(cart.id, _item(make_product(), 1))
        repo.add_item(cart.id, _item(make_product(), 1))

        assert repo.clear_cart(cart.id) == 2
        assert repo.get_by_id(cart.id).total_cents == 0

    @pytest.mark.db
    def test_remove_items_by_product_id(self, repo, make_user, product):
        first = repo.create(Cart(user_id=make_user().id))
        second = repo.create(Cart(user_id=make_user().id))
        repo.add_item(first.id, _item(product, 1))
        repo.add_item(second.id, _item(product, 3))

        assert repo.remove_items_by_product_id(product.id) == 2
        assert repo.get_by_id(second.id).item_count == 0

    @pytest.mark.db
    def test_totals_include_tax_and_shipping(self, repo, user, product):
        cart = repo.create(Cart(user_id=user.id, tax_cents=100, shipping_cents=500))

        repo.add_item(cart.id, _item(product, 1))

        assert repo.get_by_id(cart.id).total_cents == product.price_cents + 600


class TestCartLifecycle:

    @pytest.mark.db
    def test_expire_carts(self, repo, user):
        past = DateUtils.now_utc() - timedelta(hours=1)
        stale = repo.create(Cart(user_id=user.id, expires_at=past))
        live = repo.create(Cart(session_id="guest-session-0003"))

        assert [c.id for c in repo.get_expired_carts()] == [stale.id]
        assert repo.expire_carts() == 1
        assert repo.get_by_id(stale.id).status == CartStatus.EXPIRED.value
        assert repo.get_by_id(live.id).status == CartStatus.ACTIVE.value

    @pytest.mark.db
    def test_abandon_and_recover(self, repo, cart):
        repo.mark_abandoned(cart.id)
        abandoned = repo.get_by_id(cart.id)
        assert abandoned.is_abandoned is True
        assert abandoned.status == CartStatus.ABANDONED.value
        assert [c.id for c in repo.get_abandoned_carts_list()] == [cart.id]

        repo.mark_recovered(cart.id)
        recovered = repo.get_by_id(cart.id)
        assert recovered.is_abandoned is False
        assert recovered.status == CartStatus.ACTIVE.value
        assert recovered.recovered_at is not None

    @pytest.mark.db
    def test_get_abandoned_carts_since(self, repo, cart):
        future = DateUtils.now_utc() + timedelta(minutes=5)

        assert [c.id for c in repo.get_abandoned_carts(future)] == [cart.id]
        repo.mark_abandoned(cart.id)
        assert repo.get_abandoned_carts(future) == []

    @pytest.mark.db
    def test_mark_abandoned_missing(self, repo):
        with pytest.raises(CartNotFoundError):
            repo.mark_abandoned(777)

    @pytest.mark.db
    def test_unknown_reminder_stage(self, repo, cart):
        with pytest.raises(ValidationError):
            repo.record_reminder_sent(cart.id, "fourth")

    @pytest.mark.db
    def test_abandoned_cart_stats(self, repo, make_user, product):
        since = DateUtils.now_utc() - timedelta(days=1)
        carts = []
        for quantity in (1, 3):
            cart = repo.create(Cart(user_id=make_user().id))
            repo.add_item(cart.id, _item(product, quantity))
            repo.mark_abandoned(cart.id)
            carts.append(cart)
        repo.record_reminder_sent(carts[0].id, "first")
        repo.mark_recovered(carts[1].id)

        stats = repo.get_abandoned_cart_stats(since)

        assert stats.total_abandoned == 1
        assert stats.total_recovered == 1
        assert stats.recovery_rate == 100.0
        assert stats.total_lost_revenue_cents == product.price_cents
        assert stats.recovered_revenue_cents == 3 * product.price_cents
        assert stats.first_reminders_sent == 1
