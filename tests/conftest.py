"""
Shared test fixtures

- a fresh in-memory SQLite database per test (StaticPool, foreign keys on)
- a session factory bound to it
- builders for the reference rows repositories point at (users, products,
  warehouses, orders)
"""

import itertools

import pytest
from sqlalchemy.orm import sessionmaker

import storefront.models  # noqa: F401  registers every table on Base.metadata
from storefront.core.config import DatabaseConfig
from storefront.db import Base, create_db_engine
from storefront.models import Order, Product, User, Warehouse

_seq = itertools.count(1)


@pytest.fixture
def engine():
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def _insert(session_factory, entity):
    with session_factory() as session:
        session.add(entity)
        session.commit()
    return entity


@pytest.fixture
def make_user(session_factory):
    def build(email=None, first_name="Jane"):
        n = next(_seq)
        return _insert(
            session_factory,
            User(email=email or f"user{n}@shopmail.com", first_name=first_name),
        )
    return build


@pytest.fixture
def make_product(session_factory):
    def build(name=None, price_cents=1999, stock=100, sku=None):
        n = next(_seq)
        return _insert(
            session_factory,
            Product(
                sku=sku or f"SKU-{n:05d}",
                name=name or f"Product {n}",
                price_cents=price_cents,
                stock=stock,
            ),
        )
    return build


@pytest.fixture
def make_warehouse(session_factory):
    def build(code=None, name="Main Warehouse"):
        n = next(_seq)
        return _insert(session_factory, Warehouse(code=code or f"WH{n}", name=name))
    return build


@pytest.fixture
def make_order(session_factory, make_user):
    def build(user=None, total_cents=5000):
        user = user or make_user()
        return _insert(session_factory, Order(user_id=user.id, total_cents=total_cents))
    return build


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def product(make_product):
    return make_product()
