"""
Versioned schema migrations.

Each Migration has an ``up`` and a ``down`` callable taking a Connection.
MigrationManager applies them in version order, recording each one in
schema_migrations inside the same transaction as the migration itself,
so a failed migration leaves neither its changes nor its record behind.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, insert, select, text
from sqlalchemy.engine import Connection, Engine

from storefront.db import Base, get_engine
from storefront.domain.reports import MigrationStatus
from storefront.models import LoyaltyProgram, SchemaMigration
from storefront.seed import DEFAULT_LOYALTY_PROGRAM, insert_ignore
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)

# (index name, table, columns)
INDEXES = [
    ("idx_carts_user_id", "carts", "user_id"),
    ("idx_carts_session_id", "carts", "session_id"),
    ("idx_carts_status", "carts", "status"),
    ("idx_carts_expires_at", "carts", "expires_at"),
    ("idx_cart_items_cart_id", "cart_items", "cart_id"),
    ("idx_cart_items_product_id", "cart_items", "product_id"),
    ("idx_coupons_status", "coupons", "status"),
    ("idx_coupons_expires_at", "coupons", "expires_at"),
    ("idx_emails_status", "emails", "status"),
    ("idx_emails_type", "emails", "type"),
    ("idx_emails_created_at", "emails", "created_at"),
    ("idx_inventories_warehouse_id", "inventories", "warehouse_id"),
    ("idx_inventories_available", "inventories", "quantity_available"),
    ("idx_inventory_movements_inventory_id", "inventory_movements", "inventory_id"),
    ("idx_inventory_movements_created_at", "inventory_movements", "created_at"),
    ("idx_stock_reservations_product_id", "stock_reservations", "product_id"),
    ("idx_stock_reservations_order_id", "stock_reservations", "order_id"),
    ("idx_stock_reservations_status", "stock_reservations", "status"),
    ("idx_stock_reservations_expires_at", "stock_reservations", "expires_at"),
    ("idx_reviews_product_status", "reviews", "product_id, status"),
    ("idx_shipments_order_id", "shipments", "order_id"),
    ("idx_shipments_status", "shipments", "status"),
    ("idx_user_wishlists_user_id", "user_wishlists", "user_id"),
    ("idx_file_uploads_uploaded_by", "file_uploads", "uploaded_by"),
]


def create_indexes(conn: Connection) -> None:
    for name, table, columns in INDEXES:
        conn.execute(text(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({columns})"))
    logger.info(f"Ensured {len(INDEXES)} indexes")


def drop_indexes(conn: Connection) -> None:
    for name, _, _ in reversed(INDEXES):
        conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
    logger.info(f"Dropped {len(INDEXES)} indexes")


def _application_tables():
    return [
        table for table in Base.metadata.sorted_tables
        if table.name != SchemaMigration.__tablename__
    ]


def _create_schema(conn: Connection) -> None:
    Base.metadata.create_all(conn, tables=_application_tables())


def _drop_schema(conn: Connection) -> None:
    Base.metadata.drop_all(conn, tables=_application_tables())


def _add_default_loyalty_program(conn: Connection) -> None:
    insert_ignore(conn, LoyaltyProgram.__table__, [DEFAULT_LOYALTY_PROGRAM])


def _remove_default_loyalty_program(conn: Connection) -> None:
    conn.execute(
        delete(LoyaltyProgram.__table__)
        .where(LoyaltyProgram.__table__.c.name == DEFAULT_LOYALTY_PROGRAM["name"])
    )


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    up: Callable[[Connection], None]
    down: Callable[[Connection], None]


MIGRATIONS: List[Migration] = [
    Migration("001", "initial_schema", _create_schema, _drop_schema),
    Migration("002", "performance_indexes", create_indexes, drop_indexes),
    Migration("003", "default_loyalty_program", _add_default_loyalty_program, _remove_default_loyalty_program),
]


class MigrationManager:
    """Applies, reverts and reports on MIGRATIONS against one engine"""

    def __init__(self, engine: Optional[Engine] = None, migrations: Optional[List[Migration]] = None):
        self.engine = engine or get_engine()
        self.migrations = sorted(migrations or MIGRATIONS, key=lambda m: m.version)

    def _ensure_table(self) -> None:
        with self.engine.begin() as conn:
            SchemaMigration.__table__.create(conn, checkfirst=True)

    def _applied(self) -> Dict[str, Any]:
        table = SchemaMigration.__table__
        with self.engine.connect() as conn:
            rows = conn.execute(select(table).order_by(table.c.version)).all()
        return {row.version: row for row in rows}

    def run_migrations(self) -> List[str]:
        """Apply every pending migration in order; returns the versions applied"""
        self._ensure_table()
        applied = self._applied()
        done = []

        for migration in self.migrations:
            if migration.version in applied:
                continue
            logger.info(f"Applying migration {migration.version}_{migration.name}")
            try:
                with self.engine.begin() as conn:
                    migration.up(conn)
                    conn.execute(
                        insert(SchemaMigration.__table__).values(
                            version=migration.version,
                            name=migration.name,
                            applied_at=DateUtils.now_utc(),
                        )
                    )
            except Exception as e:
                logger.error(f"Migration {migration.version}_{migration.name} failed: {e}")
                raise
            done.append(migration.version)

        if not done:
            logger.info("Database schema is up to date")
        return done

    def rollback_migration(self) -> Optional[str]:
        """Revert the most recently applied migration; None when nothing is applied"""
        self._ensure_table()
        applied = self._applied()
        if not applied:
            logger.info("No migrations to roll back")
            return None

        by_version = {migration.version: migration for migration in self.migrations}
        version = max(applied)
        migration = by_version.get(version)
        if migration is None:
            raise ValueError(f"Applied migration {version} is not in the registry")

        logger.info(f"Rolling back migration {migration.version}_{migration.name}")
        table = SchemaMigration.__table__
        with self.engine.begin() as conn:
            migration.down(conn)
            conn.execute(delete(table).where(table.c.version == version))
        return version

    def get_migration_status(self) -> List[MigrationStatus]:
        self._ensure_table()
        applied = self._applied()
        return [
            MigrationStatus(
                version=migration.version,
                name=migration.name,
                applied=migration.version in applied,
                applied_at=applied[migration.version].applied_at if migration.version in applied else None,
            )
            for migration in self.migrations
        ]
