"""
Seed script -- populates the reference data every environment needs.

Run with:
    python -m storefront.seed

Every insert is INSERT ... ON CONFLICT DO NOTHING (INSERT OR IGNORE on
SQLite), keyed on the natural unique column of each table, so the script
can be re-run safely against a database that already has some or all of
the rows.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import Table, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Connection, Engine

from storefront.core.logging_config import configure_logging
from storefront.db import get_engine
from storefront.models import (
    Category,
    EmailTemplate,
    EmailType,
    LoyaltyProgram,
    ShippingMethod,
    ShippingMethodType,
    Tag,
    Warehouse,
)
from storefront.utils.validators import ValidationUtils

logger = logging.getLogger(__name__)

CATEGORIES = ["Electronics", "Clothing", "Books", "Home & Garden"]

TAGS = ["New", "Featured", "Sale", "Popular", "Limited Edition"]

DEFAULT_WAREHOUSE = {"code": "MAIN", "name": "Main Warehouse", "is_active": True}

DEFAULT_LOYALTY_PROGRAM = {
    "name": "Default Loyalty Program",
    "description": "Earn 1 point per dollar spent, redeem 100 points for $1.",
    "points_per_dollar": 1,
    "cents_per_point": 1,
    "min_points_to_redeem": 100,
    "max_points_per_order": None,
    "is_active": True,
}

SHIPPING_METHODS = [
    {
        "name": "Standard Shipping", "type": ShippingMethodType.STANDARD.value,
        "base_cost_cents": 599, "cost_per_kg_cents": 100, "free_shipping_min_cents": 5000,
        "min_delivery_days": 3, "max_delivery_days": 7, "max_weight": 30.0,
        "is_default": True, "sort_order": 1,
    },
    {
        "name": "Express Shipping", "type": ShippingMethodType.EXPRESS.value,
        "base_cost_cents": 1499, "cost_per_kg_cents": 200, "free_shipping_min_cents": None,
        "min_delivery_days": 1, "max_delivery_days": 3, "max_weight": 20.0,
        "is_default": False, "sort_order": 2,
    },
    {
        "name": "Overnight Shipping", "type": ShippingMethodType.OVERNIGHT.value,
        "base_cost_cents": 2999, "cost_per_kg_cents": 300, "free_shipping_min_cents": None,
        "min_delivery_days": 1, "max_delivery_days": 1, "max_weight": 10.0,
        "is_default": False, "sort_order": 3,
    },
    {
        "name": "Store Pickup", "type": ShippingMethodType.PICKUP.value,
        "base_cost_cents": 0, "cost_per_kg_cents": 0, "free_shipping_min_cents": None,
        "min_delivery_days": 1, "max_delivery_days": 2, "max_weight": None,
        "is_default": False, "sort_order": 4,
    },
]

EMAIL_TEMPLATES = [
    {
        "name": "welcome",
        "type": EmailType.WELCOME.value,
        "subject": "Welcome to the store, {{first_name}}!",
        "body_text": "Hi {{first_name}},\n\nThanks for signing up.",
        "body_html": "<p>Hi {{first_name}},</p><p>Thanks for signing up.</p>",
        "version": 1,
        "variables": ["first_name"],
    },
    {
        "name": "order_confirmation",
        "type": EmailType.ORDER_CONFIRMATION.value,
        "subject": "Order #{{order_number}} confirmed",
        "body_text": "We received your order #{{order_number}} for {{order_total}}.",
        "body_html": "<p>We received your order <b>#{{order_number}}</b> for {{order_total}}.</p>",
        "version": 1,
        "variables": ["order_number", "order_total"],
    },
]


def insert_ignore(conn: Connection, table: Table, rows: Iterable[Dict[str, Any]]) -> int:
    """Insert ``rows`` skipping any that hit a unique constraint; returns rows written"""
    rows = list(rows)
    if not rows:
        return 0
    if conn.dialect.name == "postgresql":
        stmt = pg_insert(table).on_conflict_do_nothing()
    elif conn.dialect.name == "sqlite":
        stmt = insert(table).prefix_with("OR IGNORE")
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {conn.dialect.name}")
    written = 0
    for row in rows:
        written += conn.execute(stmt, row).rowcount
    return written


def seed(engine: Optional[Engine] = None) -> None:
    engine = engine or get_engine()

    with engine.begin() as conn:
        # ------------------------------------------------------------------ #
        # Catalogue                                                           #
        # ------------------------------------------------------------------ #
        insert_ignore(conn, Category.__table__, [
            {"name": name, "slug": ValidationUtils.slugify(name.replace("&", "and")), "sort_order": i}
            for i, name in enumerate(CATEGORIES)
        ])
        print("  [+] Categories seeded")

        insert_ignore(conn, Tag.__table__, [
            {"name": name, "slug": ValidationUtils.slugify(name)} for name in TAGS
        ])
        print("  [+] Tags seeded")

        # ------------------------------------------------------------------ #
        # Fulfilment                                                          #
        # ------------------------------------------------------------------ #
        insert_ignore(conn, Warehouse.__table__, [DEFAULT_WAREHOUSE])
        print(f"  [+] Warehouse: {DEFAULT_WAREHOUSE['code']}")

        insert_ignore(conn, ShippingMethod.__table__, [
            dict(method, is_active=True) for method in SHIPPING_METHODS
        ])
        for method in SHIPPING_METHODS:
            print(f"  [+] Shipping method: {method['name']}")

        # ------------------------------------------------------------------ #
        # Loyalty and email                                                   #
        # ------------------------------------------------------------------ #
        insert_ignore(conn, LoyaltyProgram.__table__, [DEFAULT_LOYALTY_PROGRAM])
        print("  [+] Loyalty program seeded")

        insert_ignore(conn, EmailTemplate.__table__, [
            dict(template, is_active=True) for template in EMAIL_TEMPLATES
        ])
        for template in EMAIL_TEMPLATES:
            print(f"  [+] Email template: {template['name']}")

    logger.info("Seed data applied")


if __name__ == "__main__":
    configure_logging()
    print("Seeding database...")
    seed()
    print("Done.")
