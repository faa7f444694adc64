"""
Adapter: Portfolio persistence.

Implements PortfolioRepository port over ``portfolios`` and ``holdings``.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, insert, select, update

from financy.domain.trading.entities import Holding, Portfolio
from financy.domain.trading.ports import PortfolioRepository
from financy.infrastructure.trading.base import SqlRepository, to_decimal
from financy.infrastructure.trading.tables import holdings, portfolios


def _to_holding(row) -> Holding:
    return Holding(
        id=row["id"],
        portfolio_id=row["portfolio_id"],
        asset_id=row["asset_id"],
        quantity=to_decimal(row["quantity"]),
        avg_buy_price=to_decimal(row["avg_buy_price"]),
        trading_asset_id=row["trading_asset_id"],
    )


class SqlPortfolioRepository(SqlRepository, PortfolioRepository):
    """SQL implementation of the portfolio repository."""

    @staticmethod
    async def _find(conn, user_id: UUID, name: str) -> Optional[Portfolio]:
        result = await conn.execute(
            select(portfolios).where(portfolios.c.user_id == user_id, portfolios.c.name == name)
        )
        row = result.mappings().first()
        return Portfolio(id=row["id"], user_id=row["user_id"], name=row["name"]) if row else None

    async def find(self, user_id: UUID, name: str) -> Optional[Portfolio]:
        async with self._connect() as conn:
            return await self._find(conn, user_id, name)

    async def get_or_create(self, user_id: UUID, name: str) -> Portfolio:
        async with self._connect() as conn:
            existing = await self._find(conn, user_id, name)
            if existing is not None:
                return existing
            portfolio = Portfolio(id=uuid4(), user_id=user_id, name=name)
            await conn.execute(
                insert(portfolios).values(id=portfolio.id, user_id=user_id, name=name)
            )
        return portfolio

    async def get_holding(self, portfolio_id: UUID, asset_id: UUID) -> Optional[Holding]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(holdings).where(
                    holdings.c.portfolio_id == portfolio_id, holdings.c.asset_id == asset_id
                )
            )
            row = result.mappings().first()
        return _to_holding(row) if row else None

    async def save_holding(self, holding: Holding) -> None:
        values = {
            "quantity": holding.quantity,
            "avg_buy_price": holding.avg_buy_price,
            "trading_asset_id": holding.trading_asset_id,
        }
        async with self._connect() as conn:
            result = await conn.execute(
                update(holdings)
                .where(
                    holdings.c.portfolio_id == holding.portfolio_id,
                    holdings.c.asset_id == holding.asset_id,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                await conn.execute(
                    insert(holdings).values(
                        id=holding.id,
                        portfolio_id=holding.portfolio_id,
                        asset_id=holding.asset_id,
                        **values,
                    )
                )

    async def delete_trading_holding(self, portfolio_id: UUID, trading_asset_id: UUID) -> int:
        async with self._connect() as conn:
            result = await conn.execute(
                delete(holdings).where(
                    holdings.c.portfolio_id == portfolio_id,
                    holdings.c.trading_asset_id == trading_asset_id,
                )
            )
        return result.rowcount

    async def list_holdings(self, portfolio_id: UUID) -> list[Holding]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(holdings).where(holdings.c.portfolio_id == portfolio_id)
            )
            rows = result.mappings().all()
        return [_to_holding(row) for row in rows]
