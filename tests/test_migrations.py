"""
Migrations, seed data and the migrate command

Each test gets its own empty in-memory SQLite database.
"""

import pytest
from sqlalchemy import func, inspect, select

from storefront.core.config import DatabaseConfig
from storefront.db import create_db_engine
from storefront.migrate import format_status, main
from storefront.migrations import INDEXES, MIGRATIONS, Migration, MigrationManager
from storefront.models import Category, LoyaltyProgram, ShippingMethod, Tag, Warehouse
from storefront.seed import CATEGORIES, SHIPPING_METHODS, TAGS, seed


@pytest.fixture
def empty_engine():
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    yield engine
    engine.dispose()


@pytest.fixture
def manager(empty_engine):
    return MigrationManager(empty_engine)


def _count(engine, model):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(model.__table__)).scalar()


class TestMigrationManager:

    @pytest.mark.db
    def test_run_applies_everything_once(self, manager, empty_engine):
        assert manager.run_migrations() == [m.version for m in MIGRATIONS]
        assert manager.run_migrations() == []

        tables = set(inspect(empty_engine).get_table_names())
        assert {"carts", "coupons", "emails", "inventories", "reviews", "shipments", "schema_migrations"} <= tables
        assert _count(empty_engine, LoyaltyProgram) == 1

    @pytest.mark.db
    def test_indexes_created(self, manager, empty_engine):
        manager.run_migrations()

        index_names = {
            index["name"]
            for table in {table for _, table, _ in INDEXES}
            for index in inspect(empty_engine).get_indexes(table)
        }
        assert {name for name, _, _ in INDEXES} <= index_names

    @pytest.mark.db
    def test_status(self, manager):
        assert [s.applied for s in manager.get_migration_status()] == [False, False, False]

        manager.run_migrations()
        statuses = manager.get_migration_status()

        assert all(s.applied for s in statuses)
        assert all(s.applied_at is not None for s in statuses)
        assert statuses[0].to_dict()["name"] == "initial_schema"

    @pytest.mark.db
    def test_rollback_newest_first(self, manager, empty_engine):
        manager.run_migrations()

        assert manager.rollback_migration() == "003"
        assert _count(empty_engine, LoyaltyProgram) == 0
        assert manager.rollback_migration() == "002"
        assert manager.rollback_migration() == "001"
        assert "carts" not in inspect(empty_engine).get_table_names()
        assert manager.rollback_migration() is None

    @pytest.mark.db
    def test_failed_migration_is_not_recorded(self, empty_engine):
        def broken(conn):
            raise RuntimeError("boom")

        manager = MigrationManager(
            empty_engine,
            MIGRATIONS[:1] + [Migration("002", "broken", broken, broken)],
        )

        with pytest.raises(RuntimeError):
            manager.run_migrations()

        assert [s.applied for s in manager.get_migration_status()] == [True, False]

    @pytest.mark.db
    def test_unknown_applied_version(self, manager, empty_engine):
        manager.run_migrations()

        with pytest.raises(ValueError):
            MigrationManager(empty_engine, MIGRATIONS[:2]).rollback_migration()


class TestSeed:

    @pytest.mark.db
    def test_seed_is_idempotent(self, engine, capsys):
        seed(engine)
        seed(engine)

        assert _count(engine, Category) == len(CATEGORIES)
        assert _count(engine, Tag) == len(TAGS)
        assert _count(engine, ShippingMethod) == len(SHIPPING_METHODS)
        assert _count(engine, Warehouse) == 1
        assert _count(engine, LoyaltyProgram) == 1
        assert "[+] Warehouse: MAIN" in capsys.readouterr().out

    @pytest.mark.db
    def test_seed_after_migrations(self, manager, empty_engine):
        manager.run_migrations()

        seed(empty_engine)

        with empty_engine.connect() as conn:
            slugs = set(conn.execute(select(Category.__table__.c.slug)).scalars())
        assert "home-and-garden" in slugs
        assert _count(empty_engine, LoyaltyProgram) == 1


class TestMigrateCommand:

    @pytest.mark.db
    def test_format_status(self, manager):
        table = format_status(manager.get_migration_status())

        assert table.splitlines()[0].startswith("VERSION")
        assert "initial_schema" in table
        assert "pending" in table

    @pytest.mark.db
    def test_up(self, capsys):
        assert main(["--action", "up", "--database-url", "sqlite://"]) == 0

        assert "Applied 3 migration(s): 001, 002, 003" in capsys.readouterr().out

    @pytest.mark.db
    def test_status_and_down_on_empty_database(self, capsys):
        assert main(["--action", "status", "--database-url", "sqlite://"]) == 0
        assert "default_loyalty_program" in capsys.readouterr().out

        assert main(["--action", "down", "--database-url", "sqlite://"]) == 0
        assert "Nothing to roll back" in capsys.readouterr().out

    @pytest.mark.unit
    def test_rejects_unknown_action(self):
        with pytest.raises(SystemExit):
            main(["--action", "sideways"])
