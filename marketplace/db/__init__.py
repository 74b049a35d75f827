# Database Connection, Base Models and Unit of Work

from marketplace.db.base import Base
from marketplace.db.session import (
    create_engine_for_url,
    get_async_engine,
    get_async_session_maker,
)
from marketplace.db.unit_of_work import retry_transient, unit_of_work

__all__ = [
    "Base",
    "create_engine_for_url",
    "get_async_engine",
    "get_async_session_maker",
    "retry_transient",
    "unit_of_work",
]
