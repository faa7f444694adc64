"""
Adapter: Asset repository.

Implements AssetRepository port over the ``assets`` table.
"""

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import insert, select, update

from financy.domain.trading.entities import Asset, Quote
from financy.domain.trading.ports import AssetRepository
from financy.infrastructure.trading.base import SqlRepository, to_decimal
from financy.infrastructure.trading.tables import assets


def _to_asset(row) -> Asset:
    return Asset(
        id=row["id"],
        symbol=row["symbol"],
        name=row["name"],
        asset_type=row["asset_type"],
        sector=row["sector"],
        currency=row["currency"] or "USD",
        current_price=to_decimal(row["current_price"]),
        previous_close=to_decimal(row["previous_close"]),
        change_percent=to_decimal(row["change_percent"]),
        volume=row["volume"],
        average_volume=row["average_volume"],
        updated_at=row["updated_at"],
    )


class SqlAssetRepository(SqlRepository, AssetRepository):
    """SQL implementation of the asset repository."""

    async def get(self, asset_id: UUID) -> Optional[Asset]:
        async with self._connect() as conn:
            result = await conn.execute(select(assets).where(assets.c.id == asset_id))
            row = result.mappings().first()
        return _to_asset(row) if row else None

    async def get_many(self, asset_ids: Iterable[UUID]) -> dict[UUID, Asset]:
        ids = list(set(asset_ids))
        if not ids:
            return {}
        async with self._connect() as conn:
            result = await conn.execute(select(assets).where(assets.c.id.in_(ids)))
            rows = result.mappings().all()
        return {row["id"]: _to_asset(row) for row in rows}

    async def find_by_symbol(self, symbol: str) -> Optional[Asset]:
        async with self._connect() as conn:
            result = await conn.execute(select(assets).where(assets.c.symbol == symbol.upper()))
            row = result.mappings().first()
        return _to_asset(row) if row else None

    async def add(self, asset: Asset) -> Asset:
        async with self._connect() as conn:
            await conn.execute(
                insert(assets).values(
                    id=asset.id,
                    symbol=asset.symbol.upper(),
                    name=asset.name,
                    asset_type=asset.asset_type,
                    sector=asset.sector,
                    currency=asset.currency,
                    current_price=asset.current_price,
                    previous_close=asset.previous_close,
                    change_percent=asset.change_percent,
                    volume=asset.volume,
                    average_volume=asset.average_volume,
                    updated_at=asset.updated_at,
                )
            )
        return asset

    async def update_quote(self, asset_id: UUID, quote: Quote, at: datetime) -> None:
        values = {"current_price": quote.price, "updated_at": at}
        if quote.previous_close is not None:
            values["previous_close"] = quote.previous_close
        if quote.change_percent is not None:
            values["change_percent"] = quote.change_percent
        if quote.volume is not None:
            values["volume"] = quote.volume
        if quote.currency:
            values["currency"] = quote.currency
        async with self._connect() as conn:
            await conn.execute(update(assets).where(assets.c.id == asset_id).values(**values))
