"""
Adapter: SQL unit of work.

Implements UnitOfWork port. ``atomic()`` opens one transaction and yields
a unit of work whose repositories all run on that connection; it commits
when the block exits and rolls back if the block raises.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from financy.domain.trading.ports import UnitOfWork
from financy.infrastructure.trading.alert_repository import SqlAlertRepository
from financy.infrastructure.trading.asset_repository import SqlAssetRepository
from financy.infrastructure.trading.portfolio_repository import SqlPortfolioRepository
from financy.infrastructure.trading.suggestion_repository import SqlSuggestionRepository
from financy.infrastructure.trading.trading_repository import SqlTradingRepository


class SqlUnitOfWork(UnitOfWork):
    """Repositories bound to one engine, or to one open transaction."""

    def __init__(self, engine: AsyncEngine, connection: Optional[AsyncConnection] = None) -> None:
        self._engine = engine
        self._connection = connection
        self.assets = SqlAssetRepository(engine, connection)
        self.alerts = SqlAlertRepository(engine, connection)
        self.trading = SqlTradingRepository(engine, connection)
        self.suggestions = SqlSuggestionRepository(engine, connection)
        self.portfolios = SqlPortfolioRepository(engine, connection)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["SqlUnitOfWork"]:
        if self._connection is not None:
            # Already inside a transaction: join it.
            yield self
            return
        async with self._engine.begin() as conn:
            yield SqlUnitOfWork(self._engine, conn)
