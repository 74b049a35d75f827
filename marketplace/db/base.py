"""Declarative base and shared column helpers."""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Enum, Numeric
from sqlalchemy.orm import DeclarativeBase

# DECIMAL(18,4) for every monetary column
MONEY = Numeric(18, 4)
# DECIMAL(5,2) for percentages such as commission rates
PERCENT = Numeric(5, 2)

MONEY_QUANTUM = Decimal("0.0001")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def utcnow() -> datetime:
    """Timezone-aware current time used as the Python-side column default."""
    return datetime.now(timezone.utc)


def enum_column(enum_cls: type[enum.Enum]) -> Enum:
    """Store a str-valued Enum as VARCHAR holding the member *values*."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
