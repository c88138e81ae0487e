import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import joinedload

from storefront.core.exceptions import (
    InsufficientStockError,
    InventoryNotFoundError,
    StockAlertNotFoundError,
    ValidationError,
)
from storefront.domain.reports import (
    MovementReport,
    MovementReportRow,
    StockReport,
    StockReportRow,
)
from storefront.models.inventory import (
    INBOUND_MOVEMENTS,
    OUTBOUND_MOVEMENTS,
    AlertStatus,
    Inventory,
    InventoryMovement,
    MovementReason,
    MovementType,
    StockAlert,
)
from storefront.models.product import Product
from storefront.repositories.base import BaseRepository
from storefront.schemas.filters import InventoryFilter
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class InventoryRepository(BaseRepository[Inventory]):
    """
    Stock positions, the movement ledger and stock alerts.

    Quantities are never read-modified-written in Python. Every change is
    a guarded UPDATE (``SET quantity_x = quantity_x + :delta WHERE ... >=``)
    and a zero rowcount means the guard failed.
    """

    model = Inventory
    not_found_error = InventoryNotFoundError

    SORT_COLUMNS = {
        "created_at": Inventory.created_at,
        "updated_at": Inventory.updated_at,
        "quantity_available": Inventory.quantity_available,
        "quantity_on_hand": Inventory.quantity_on_hand,
    }

    def create(self, inventory: Inventory) -> Inventory:
        on_hand = inventory.quantity_on_hand or 0
        reserved = inventory.quantity_reserved or 0
        inventory.quantity_on_hand = on_hand
        inventory.quantity_reserved = reserved
        inventory.quantity_available = on_hand - reserved
        return self._add(inventory)

    def _inventory_query(self):
        return select(Inventory).options(joinedload(Inventory.product))

    def get_by_id(self, inventory_id: int) -> Inventory:
        return self._first(self._inventory_query().where(Inventory.id == inventory_id), inventory_id)

    def get_by_product_and_warehouse(self, product_id: int, warehouse_id: int) -> Inventory:
        stmt = self._inventory_query().where(
            Inventory.product_id == product_id, Inventory.warehouse_id == warehouse_id
        )
        return self._first(stmt, f"product={product_id} warehouse={warehouse_id}")

    def get_by_product_id(self, product_id: int) -> Inventory:
        stmt = self._inventory_query().where(Inventory.product_id == product_id)
        return self._first(stmt, f"product={product_id}")

    def update(self, inventory: Inventory) -> Inventory:
        return self._save(inventory)

    def delete(self, inventory_id: int) -> None:
        self._delete_by_id(inventory_id)

    # ------------------------------------------------------------------
    # Stock arithmetic
    # ------------------------------------------------------------------

    def _lock(self, session, inventory_id: int) -> Inventory:
        inventory = session.scalars(
            select(Inventory)
            .where(Inventory.id == inventory_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if inventory is None:
            raise InventoryNotFoundError(resource_id=inventory_id)
        return inventory

    def update_stock(
        self,
        inventory_id: int,
        quantity_change: int,
        reason: str = MovementReason.ADJUSTMENT.value,
    ) -> Inventory:
        """
        Add (positive) or remove (negative) stock on hand.

        Raises InsufficientStockError rather than clamping when the change
        would leave less on hand than is reserved.
        """
        if not quantity_change:
            raise ValidationError("Quantity change cannot be zero")

        now = DateUtils.now_utc()
        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                before = self._lock(session, inventory_id).quantity_on_hand

                result = session.execute(
                    update(Inventory)
                    .where(
                        Inventory.id == inventory_id,
                        Inventory.quantity_on_hand + quantity_change >= Inventory.quantity_reserved,
                    )
                    .values(
                        quantity_on_hand=Inventory.quantity_on_hand + quantity_change,
                        quantity_available=Inventory.quantity_on_hand + quantity_change - Inventory.quantity_reserved,
                        last_movement_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.error(
                        f"Stock update of {quantity_change} rejected for inventory {inventory_id} "
                        f"(on hand {before})"
                    )
                    raise InsufficientStockError(
                        f"Cannot remove {-quantity_change} units from inventory {inventory_id}"
                    )

                session.add(InventoryMovement(
                    inventory_id=inventory_id,
                    type=MovementType.IN.value if quantity_change > 0 else MovementType.OUT.value,
                    reason=reason,
                    quantity=abs(quantity_change),
                    quantity_before=before,
                    quantity_after=before + quantity_change,
                ))
                session.flush()
                inventory = self._lock(session, inventory_id)

        logger.info(f"Inventory {inventory_id} stock changed by {quantity_change} ({reason})")
        return inventory

    def sync_with_product_stock(
        self,
        product_id: int,
        product_stock: int,
        reason: str = MovementReason.ADJUSTMENT.value,
    ) -> Inventory:
        """Make on-hand match the catalogue stock figure, logging the drift"""
        if product_stock < 0:
            raise ValidationError("Product stock cannot be negative")

        now = DateUtils.now_utc()
        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                inventory = session.scalars(
                    select(Inventory)
                    .where(Inventory.product_id == product_id)
                    .with_for_update()
                ).first()
                if inventory is None:
                    raise InventoryNotFoundError(resource_id=f"product={product_id}")
                if product_stock < inventory.quantity_reserved:
                    raise InsufficientStockError(
                        f"Product {product_id} stock {product_stock} is below reserved "
                        f"{inventory.quantity_reserved}"
                    )

                before = inventory.quantity_on_hand
                difference = product_stock - before
                session.execute(
                    update(Inventory)
                    .where(Inventory.id == inventory.id)
                    .values(
                        quantity_on_hand=product_stock,
                        quantity_available=product_stock - Inventory.quantity_reserved,
                        last_movement_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

                if difference != 0:
                    unit_cost = inventory.average_cost_cents or 0
                    session.add(InventoryMovement(
                        inventory_id=inventory.id,
                        type=MovementType.ADJUST.value,
                        reason=reason,
                        quantity=difference,
                        unit_cost_cents=unit_cost,
                        total_cost_cents=difference * unit_cost,
                        quantity_before=before,
                        quantity_after=product_stock,
                        reference_type="product_stock_sync",
                        notes="Synchronized with product stock",
                    ))
                    session.flush()
                inventory = self._lock(session, inventory.id)

        logger.info(f"Synced inventory for product {product_id} to {product_stock}")
        return inventory

    def reserve_stock(self, inventory_id: int, quantity: int) -> None:
        self._guarded_reservation(
            inventory_id,
            quantity,
            Inventory.quantity_available >= quantity,
            quantity_reserved=Inventory.quantity_reserved + quantity,
            quantity_available=Inventory.quantity_available - quantity,
        )
        logger.info(f"Reserved {quantity} units on inventory {inventory_id}")

    def release_reservation(self, inventory_id: int, quantity: int) -> None:
        self._guarded_reservation(
            inventory_id,
            quantity,
            Inventory.quantity_reserved >= quantity,
            quantity_reserved=Inventory.quantity_reserved - quantity,
            quantity_available=Inventory.quantity_available + quantity,
        )
        logger.info(f"Released {quantity} reserved units on inventory {inventory_id}")

    def _guarded_reservation(self, inventory_id: int, quantity: int, guard, **values) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be positive")
        values["updated_at"] = DateUtils.now_utc()
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Inventory)
                .where(Inventory.id == inventory_id, guard)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if session.get(Inventory, inventory_id) is None:
                    raise InventoryNotFoundError(resource_id=inventory_id)
                raise InsufficientStockError(
                    f"Inventory {inventory_id} cannot cover {quantity} units"
                )

    def transfer_stock(
        self,
        from_inventory_id: int,
        to_inventory_id: int,
        quantity: int,
        reference: Optional[str] = None,
    ) -> None:
        """
        Move available stock between two inventories.

        Both rows are locked in id order so two opposite transfers cannot
        deadlock.
        """
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if from_inventory_id == to_inventory_id:
            raise ValidationError("Cannot transfer stock to the same inventory")

        now = DateUtils.now_utc()
        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                locked = {
                    inventory_id: self._lock(session, inventory_id)
                    for inventory_id in sorted((from_inventory_id, to_inventory_id))
                }
                source_before = locked[from_inventory_id].quantity_on_hand
                target_before = locked[to_inventory_id].quantity_on_hand

                result = session.execute(
                    update(Inventory)
                    .where(
                        Inventory.id == from_inventory_id,
                        Inventory.quantity_available >= quantity,
                    )
                    .values(
                        quantity_on_hand=Inventory.quantity_on_hand - quantity,
                        quantity_available=Inventory.quantity_available - quantity,
                        last_movement_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise InsufficientStockError(
                        f"Inventory {from_inventory_id} cannot transfer {quantity} units"
                    )

                session.execute(
                    update(Inventory)
                    .where(Inventory.id == to_inventory_id)
                    .values(
                        quantity_on_hand=Inventory.quantity_on_hand + quantity,
                        quantity_available=Inventory.quantity_available + quantity,
                        last_movement_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

                session.add_all([
                    InventoryMovement(
                        inventory_id=from_inventory_id,
                        type=MovementType.OUT.value,
                        reason=MovementReason.TRANSFER.value,
                        quantity=quantity,
                        quantity_before=source_before,
                        quantity_after=source_before - quantity,
                        reference_type="inventory",
                        reference_id=to_inventory_id,
                        notes=reference,
                    ),
                    InventoryMovement(
                        inventory_id=to_inventory_id,
                        type=MovementType.IN.value,
                        reason=MovementReason.TRANSFER.value,
                        quantity=quantity,
                        quantity_before=target_before,
                        quantity_after=target_before + quantity,
                        reference_type="inventory",
                        reference_id=from_inventory_id,
                        notes=reference,
                    ),
                ])
                session.flush()

        logger.info(
            f"Transferred {quantity} units from inventory {from_inventory_id} to {to_inventory_id}"
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def _low_stock_clause(self):
        return and_(
            Inventory.quantity_available > 0,
            Inventory.quantity_available <= Inventory.reorder_level,
        )

    def get_low_stock_items(self, limit: int = 20, offset: int = 0) -> List[Inventory]:
        stmt = (
            self._inventory_query()
            .where(self._low_stock_clause())
            .order_by(Inventory.quantity_available.asc(), Inventory.id)
        )
        return self._all(self._paginate(stmt, limit, offset))

    def count_low_stock_items(self) -> int:
        return self._count(select(Inventory).where(self._low_stock_clause()))

    def get_out_of_stock_items(self, limit: int = 20, offset: int = 0) -> List[Inventory]:
        stmt = (
            self._inventory_query()
            .where(Inventory.quantity_available == 0)
            .order_by(Inventory.updated_at.desc(), Inventory.id)
        )
        return self._all(self._paginate(stmt, limit, offset))

    def count_out_of_stock_items(self) -> int:
        return self._count(select(Inventory).where(Inventory.quantity_available == 0))

    def get_inventory_by_warehouse(self, warehouse_id: int, limit: int = 20, offset: int = 0) -> List[Inventory]:
        stmt = (
            self._inventory_query()
            .where(Inventory.warehouse_id == warehouse_id)
            .order_by(Inventory.updated_at.desc(), Inventory.id)
        )
        return self._all(self._paginate(stmt, limit, offset))

    def _filter_criteria(self, filters: InventoryFilter) -> list:
        criteria = []
        if filters.product_id is not None:
            criteria.append(Inventory.product_id == filters.product_id)
        if filters.warehouse_id is not None:
            criteria.append(Inventory.warehouse_id == filters.warehouse_id)
        if filters.low_stock:
            criteria.append(self._low_stock_clause())
        if filters.out_of_stock:
            criteria.append(Inventory.quantity_available == 0)
        if filters.is_active is not None:
            criteria.append(Inventory.is_active.is_(filters.is_active))
        return criteria

    def list(self, filters: InventoryFilter) -> List[Inventory]:
        column = self.SORT_COLUMNS.get(filters.order_column, Inventory.created_at)
        stmt = self._order(
            self._inventory_query().where(*self._filter_criteria(filters)),
            column,
            filters.descending,
        ).order_by(Inventory.id)
        return self._all(self._paginate(stmt, filters.limit, filters.offset))

    def count(self, filters: InventoryFilter) -> int:
        return self._count(select(Inventory).where(*self._filter_criteria(filters)))

    def get_available_stock(self, product_id: int) -> int:
        stmt = select(func.coalesce(func.sum(Inventory.quantity_available), 0)).where(
            Inventory.product_id == product_id
        )
        with self.get_db_session() as session:
            return int(session.execute(stmt).scalar())

    # ------------------------------------------------------------------
    # Movements and alerts
    # ------------------------------------------------------------------

    def create_movement(self, movement: InventoryMovement) -> InventoryMovement:
        with self.get_db_session("INSERT") as session:
            session.add(movement)
            session.flush()
            return movement

    def get_movements(self, inventory_id: int, limit: int = 20, offset: int = 0) -> List[InventoryMovement]:
        stmt = (
            select(InventoryMovement)
            .where(InventoryMovement.inventory_id == inventory_id)
            .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_movements_by_date_range(
        self, start: datetime, end: datetime, limit: int = 20, offset: int = 0
    ) -> List[InventoryMovement]:
        stmt = (
            select(InventoryMovement)
            .where(InventoryMovement.created_at.between(start, end))
            .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def create_alert(self, alert: StockAlert) -> StockAlert:
        with self.get_db_session("INSERT") as session:
            session.add(alert)
            session.flush()
        logger.info(f"Stock alert {alert.type} raised for inventory {alert.inventory_id}")
        return alert

    def get_active_alerts(self, limit: int = 20, offset: int = 0) -> List[StockAlert]:
        stmt = (
            select(StockAlert)
            .where(StockAlert.status == AlertStatus.ACTIVE.value)
            .order_by(StockAlert.created_at.desc(), StockAlert.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def resolve_alert(self, alert_id: int, resolved_by: Optional[int] = None) -> None:
        now = DateUtils.now_utc()
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(StockAlert)
                .where(StockAlert.id == alert_id)
                .values(
                    status=AlertStatus.RESOLVED.value,
                    resolved_at=now,
                    resolved_by=resolved_by,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StockAlertNotFoundError(resource_id=alert_id)
        logger.info(f"Stock alert {alert_id} resolved")

    def get_alerts_by_inventory(self, inventory_id: int) -> List[StockAlert]:
        stmt = (
            select(StockAlert)
            .where(StockAlert.inventory_id == inventory_id)
            .order_by(StockAlert.created_at.desc(), StockAlert.id.desc())
        )
        return self._all(stmt)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_movement_report(
        self,
        inventory_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        movement_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> MovementReport:
        stmt = (
            select(
                InventoryMovement,
                Inventory.product_id,
                Product.name,
                Product.sku,
            )
            .join(Inventory, Inventory.id == InventoryMovement.inventory_id)
            .join(Product, Product.id == Inventory.product_id)
        )
        if inventory_id is not None:
            stmt = stmt.where(InventoryMovement.inventory_id == inventory_id)
        if warehouse_id is not None:
            stmt = stmt.where(Inventory.warehouse_id == warehouse_id)
        if movement_type:
            stmt = stmt.where(InventoryMovement.type == movement_type)
        if start is not None:
            stmt = stmt.where(InventoryMovement.created_at >= start)
        if end is not None:
            stmt = stmt.where(InventoryMovement.created_at <= end)
        stmt = stmt.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())

        with self.get_db_session() as session:
            results = session.execute(stmt).all()

        report = MovementReport()
        for movement, product_id, product_name, product_sku in results:
            report.rows.append(MovementReportRow(
                movement_id=movement.id,
                inventory_id=movement.inventory_id,
                product_id=product_id,
                product_name=product_name,
                product_sku=product_sku,
                type=movement.type,
                reason=movement.reason,
                quantity=movement.quantity,
                quantity_before=movement.quantity_before,
                quantity_after=movement.quantity_after,
                created_at=movement.created_at,
            ))
            if movement.type in INBOUND_MOVEMENTS:
                report.total_inbound += abs(movement.quantity)
            elif movement.type in OUTBOUND_MOVEMENTS:
                report.total_outbound += abs(movement.quantity)
        return report

    def get_stock_report(self, warehouse_id: Optional[int] = None) -> StockReport:
        stmt = (
            select(Inventory, Product.name, Product.sku)
            .join(Product, Product.id == Inventory.product_id)
            .order_by(Product.name, Inventory.id)
        )
        if warehouse_id is not None:
            stmt = stmt.where(Inventory.warehouse_id == warehouse_id)

        with self.get_db_session() as session:
            results = session.execute(stmt).all()

        report = StockReport()
        for inventory, product_name, product_sku in results:
            value_cents = inventory.quantity_available * (inventory.average_cost_cents or 0)
            status = inventory.stock_status
            report.rows.append(StockReportRow(
                inventory_id=inventory.id,
                product_id=inventory.product_id,
                product_name=product_name,
                product_sku=product_sku,
                warehouse_id=inventory.warehouse_id,
                quantity_on_hand=inventory.quantity_on_hand,
                quantity_reserved=inventory.quantity_reserved,
                quantity_available=inventory.quantity_available,
                reorder_level=inventory.reorder_level,
                average_cost_cents=inventory.average_cost_cents or 0,
                value_cents=value_cents,
                stock_status=status,
            ))
            report.total_value_cents += value_cents
            if status == "low_stock":
                report.low_stock_count += 1
            elif status == "out_of_stock":
                report.out_of_stock_count += 1
        report.total_items = len(report.rows)
        return report
