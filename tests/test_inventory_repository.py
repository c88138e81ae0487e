"""
InventoryRepository tests

- guarded stock arithmetic (update, reserve, release, transfer)
- product stock sync and the movement ledger
- low / out of stock listings, alerts and reports
"""

from datetime import timedelta

import pytest

from storefront.core.exceptions import (
    InsufficientStockError,
    InventoryNotFoundError,
    StockAlertNotFoundError,
    ValidationError,
)
from storefront.models import Inventory, StockAlert
from storefront.models.inventory import AlertStatus, AlertType, MovementReason, MovementType
from storefront.repositories import InventoryRepository
from storefront.schemas.filters import InventoryFilter
from storefront.utils.date_utils import DateUtils


@pytest.fixture
def repo(session_factory):
    return InventoryRepository(session_factory)


@pytest.fixture
def make_inventory(repo, make_product):
    def build(on_hand=50, reserved=0, **kwargs):
        product = kwargs.pop("product", None) or make_product()
        return repo.create(Inventory(
            product_id=product.id, quantity_on_hand=on_hand, quantity_reserved=reserved, **kwargs
        ))
    return build


class TestInventoryCrud:

    @pytest.mark.db
    def test_create_derives_available(self, make_inventory):
        inventory = make_inventory(on_hand=20, reserved=5)

        assert inventory.quantity_available == 15

    @pytest.mark.db
    def test_lookups(self, repo, make_inventory, make_warehouse, product):
        warehouse = make_warehouse()
        inventory = make_inventory(product=product, warehouse_id=warehouse.id)

        assert repo.get_by_product_id(product.id).id == inventory.id
        assert repo.get_by_product_and_warehouse(product.id, warehouse.id).product.id == product.id
        assert [i.id for i in repo.get_inventory_by_warehouse(warehouse.id)] == [inventory.id]

    @pytest.mark.db
    def test_missing(self, repo):
        with pytest.raises(InventoryNotFoundError):
            repo.get_by_id(99)
        with pytest.raises(InventoryNotFoundError):
            repo.get_by_product_id(99)


class TestStockArithmetic:

    @pytest.mark.db
    def test_update_stock_in_and_out(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10)

        assert repo.update_stock(inventory.id, 5, MovementReason.PURCHASE.value).quantity_on_hand == 15
        after = repo.update_stock(inventory.id, -12, MovementReason.SALE.value)

        assert after.quantity_on_hand == 3
        assert after.quantity_available == 3
        movements = repo.get_movements(inventory.id)
        assert [(m.type, m.quantity, m.quantity_after) for m in movements] == [
            (MovementType.OUT.value, 12, 3),
            (MovementType.IN.value, 5, 15),
        ]

    @pytest.mark.db
    def test_update_stock_never_goes_below_reserved(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10, reserved=4)

        with pytest.raises(InsufficientStockError):
            repo.update_stock(inventory.id, -7)

        unchanged = repo.get_by_id(inventory.id)
        assert unchanged.quantity_on_hand == 10
        assert repo.get_movements(inventory.id) == []

    @pytest.mark.db
    def test_zero_change_rejected(self, repo, make_inventory):
        with pytest.raises(ValidationError):
            repo.update_stock(make_inventory().id, 0)

    @pytest.mark.db
    def test_reserve_and_release(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10)

        repo.reserve_stock(inventory.id, 8)
        with pytest.raises(InsufficientStockError):
            repo.reserve_stock(inventory.id, 3)
        repo.release_reservation(inventory.id, 5)

        fresh = repo.get_by_id(inventory.id)
        assert fresh.quantity_reserved == 3
        assert fresh.quantity_available == 7
        assert fresh.quantity_on_hand == 10

    @pytest.mark.db
    def test_release_more_than_reserved(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10, reserved=2)

        with pytest.raises(InsufficientStockError):
            repo.release_reservation(inventory.id, 3)

    @pytest.mark.db
    def test_reserve_missing_inventory(self, repo):
        with pytest.raises(InventoryNotFoundError):
            repo.reserve_stock(404, 1)

    @pytest.mark.db
    def test_transfer(self, repo, make_inventory):
        source = make_inventory(on_hand=10)
        target = make_inventory(on_hand=1)

        repo.transfer_stock(source.id, target.id, 4, reference="rebalance")

        assert repo.get_by_id(source.id).quantity_available == 6
        assert repo.get_by_id(target.id).quantity_on_hand == 5
        [inbound] = repo.get_movements(target.id)
        assert inbound.reason == MovementReason.TRANSFER.value
        assert inbound.reference_id == source.id

    @pytest.mark.db
    def test_transfer_insufficient_is_atomic(self, repo, make_inventory):
        source = make_inventory(on_hand=3)
        target = make_inventory(on_hand=0)

        with pytest.raises(InsufficientStockError):
            repo.transfer_stock(source.id, target.id, 4)

        assert repo.get_by_id(target.id).quantity_on_hand == 0
        assert repo.get_movements(source.id) == []

    @pytest.mark.db
    def test_transfer_to_self(self, repo, make_inventory):
        inventory = make_inventory()

        with pytest.raises(ValidationError):
            repo.transfer_stock(inventory.id, inventory.id, 1)

    @pytest.mark.db
    def test_sync_with_product_stock(self, repo, make_inventory, product):
        make_inventory(product=product, on_hand=10, reserved=2, average_cost_cents=150)

        synced = repo.sync_with_product_stock(product.id, 25)

        assert synced.quantity_on_hand == 25
        assert synced.quantity_available == 23
        [movement] = repo.get_movements(synced.id)
        assert movement.type == MovementType.ADJUST.value
        assert movement.quantity == 15
        assert movement.total_cost_cents == 15 * 150

    @pytest.mark.db
    def test_sync_below_reserved(self, repo, make_inventory, product):
        make_inventory(product=product, on_hand=10, reserved=6)

        with pytest.raises(InsufficientStockError):
            repo.sync_with_product_stock(product.id, 5)

    @pytest.mark.db
    def test_available_stock(self, repo, make_inventory, product):
        make_inventory(product=product, on_hand=9, reserved=4)

        assert repo.get_available_stock(product.id) == 5
        assert repo.get_available_stock(product.id + 1000) == 0


class TestInventoryListings:

    @pytest.mark.db
    def test_low_and_out_of_stock(self, repo, make_inventory):
        low = make_inventory(on_hand=3)
        out = make_inventory(on_hand=0)
        make_inventory(on_hand=500)

        assert [i.id for i in repo.get_low_stock_items()] == [low.id]
        assert [i.id for i in repo.get_out_of_stock_items()] == [out.id]
        assert repo.count_low_stock_items() == 1
        assert repo.count_out_of_stock_items() == 1

    @pytest.mark.db
    def test_filtered_list(self, repo, make_inventory):
        make_inventory(on_hand=3)
        make_inventory(on_hand=40)
        make_inventory(on_hand=20)

        filters = InventoryFilter(sort_by="quantity_on_hand", sort_order="asc", limit=2)

        assert [i.quantity_on_hand for i in repo.list(filters)] == [3, 20]
        assert repo.count(filters) == 3
        assert repo.count(InventoryFilter(low_stock=True)) == 1


class TestAlertsAndReports:

    @pytest.mark.db
    def test_alert_lifecycle(self, repo, make_inventory, user):
        inventory = make_inventory(on_hand=2)
        alert = repo.create_alert(StockAlert(
            inventory_id=inventory.id, type=AlertType.LOW_STOCK.value, threshold=10, current_quantity=2,
        ))

        assert [a.id for a in repo.get_active_alerts()] == [alert.id]
        repo.resolve_alert(alert.id, resolved_by=user.id)

        assert repo.get_active_alerts() == []
        [resolved] = repo.get_alerts_by_inventory(inventory.id)
        assert resolved.status == AlertStatus.RESOLVED.value

    @pytest.mark.db
    def test_resolve_missing_alert(self, repo):
        with pytest.raises(StockAlertNotFoundError):
            repo.resolve_alert(31337)

    @pytest.mark.db
    def test_movement_report(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10)
        repo.update_stock(inventory.id, 6)
        repo.update_stock(inventory.id, -4)

        report = repo.get_movement_report(inventory_id=inventory.id)

        assert len(report.rows) == 2
        assert report.total_inbound == 6
        assert report.total_outbound == 4
        assert report.net_movement == 2

    @pytest.mark.db
    def test_movements_by_date_range(self, repo, make_inventory):
        inventory = make_inventory(on_hand=10)
        repo.update_stock(inventory.id, 1)
        now = DateUtils.now_utc()

        assert len(repo.get_movements_by_date_range(now - timedelta(hours=1), now + timedelta(hours=1))) == 1
        assert repo.get_movements_by_date_range(now + timedelta(hours=1), now + timedelta(hours=2)) == []

    @pytest.mark.db
    def test_stock_report(self, repo, make_inventory):
        make_inventory(on_hand=50, average_cost_cents=100)
        make_inventory(on_hand=4)
        make_inventory(on_hand=0)

        report = repo.get_stock_report()

        assert report.total_items == 3
        assert report.low_stock_count == 1
        assert report.out_of_stock_count == 1
        assert report.total_value_cents == 5000
