"""
Shared plumbing for the SQL repository adapters.

A repository is bound either to the engine (each call runs in its own
short transaction) or to one open connection (every call joins the
transaction opened by ``SqlUnitOfWork.atomic``).
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

E = TypeVar("E", bound=Enum)


class SqlRepository:
    """Base class for repositories over an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine, connection: Optional[AsyncConnection] = None) -> None:
        self._engine = engine
        self._connection = connection

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
        else:
            async with self._engine.begin() as conn:
                yield conn


def parse_enum(enum_cls: type[E], value: Any, default: E) -> E:
    """Map a stored string to an enum member, falling back on unknown values."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
