from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Type, Union

from sqlalchemy import CheckConstraint, Column, DateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def created_at_column() -> Column:
    return Column(DateTime(timezone=True), nullable=False, default=utcnow)


def updated_at_column() -> Column:
    return Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


def enum_check(
    column: str, values: Union[Type[Enum], Iterable[str]], name: str
) -> CheckConstraint:
    """CHECK (column IN (...)) built from an Enum or a list of values."""
    if isinstance(values, type) and issubclass(values, Enum):
        values = [member.value for member in values]
    allowed = ",".join(f"'{value}'" for value in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)
