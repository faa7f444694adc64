"""
Adapter: Alert repository.

Implements AlertRepository port over ``alerts``, ``alert_history``
and ``alert_price_tracks``.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import insert, select, update

from financy.domain.trading.entities import (
    Alert,
    AlertHistoryEntry,
    AlertPriceTrack,
    AlertStatus,
    AlertType,
    NotificationChannel,
)
from financy.domain.trading.ports import AlertRepository
from financy.infrastructure.trading.base import SqlRepository, parse_enum, to_decimal
from financy.infrastructure.trading.tables import alert_history, alert_price_tracks, alerts


_CHANNELS = {c.value: c for c in NotificationChannel}


def _to_alert(row) -> Alert:
    channels = tuple(_CHANNELS[c] for c in (row["channels"] or []) if c in _CHANNELS)
    return Alert(
        id=row["id"],
        user_id=row["user_id"],
        asset_id=row["asset_id"],
        alert_type=AlertType(row["alert_type"]),
        threshold=to_decimal(row["threshold"]),
        status=parse_enum(AlertStatus, row["status"], AlertStatus.PAUSED),
        channels=channels,
        is_tracking=bool(row["is_tracking"]),
        tracking_started_at=row["tracking_started_at"],
        last_triggered_at=row["last_triggered_at"],
        trigger_count=row["trigger_count"] or 0,
    )


class SqlAlertRepository(SqlRepository, AlertRepository):
    """SQL implementation of the alert repository."""

    async def get(self, alert_id: UUID) -> Optional[Alert]:
        async with self._connect() as conn:
            result = await conn.execute(select(alerts).where(alerts.c.id == alert_id))
            row = result.mappings().first()
        return _to_alert(row) if row else None

    async def list_active(self) -> list[Alert]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(alerts)
                .where(alerts.c.status == AlertStatus.ACTIVE.value)
                .order_by(alerts.c.created_at)
            )
            rows = result.mappings().all()
        return [_to_alert(row) for row in rows]

    async def add(self, alert: Alert) -> Alert:
        async with self._connect() as conn:
            await conn.execute(
                insert(alerts).values(
                    id=alert.id,
                    user_id=alert.user_id,
                    asset_id=alert.asset_id,
                    alert_type=alert.alert_type.value,
                    threshold=alert.threshold,
                    status=alert.status.value,
                    channels=[c.value for c in alert.channels],
                    is_tracking=alert.is_tracking,
                    tracking_started_at=alert.tracking_started_at,
                    last_triggered_at=alert.last_triggered_at,
                    trigger_count=alert.trigger_count,
                )
            )
        return alert

    async def save_state(self, alert: Alert) -> None:
        async with self._connect() as conn:
            await conn.execute(
                update(alerts)
                .where(alerts.c.id == alert.id)
                .values(
                    is_tracking=alert.is_tracking,
                    tracking_started_at=alert.tracking_started_at,
                    last_triggered_at=alert.last_triggered_at,
                    trigger_count=alert.trigger_count,
                )
            )

    async def add_history(self, entry: AlertHistoryEntry) -> None:
        async with self._connect() as conn:
            await conn.execute(
                insert(alert_history).values(
                    id=entry.id,
                    alert_id=entry.alert_id,
                    price_at_trigger=entry.price_at_trigger,
                    message=entry.message,
                    notified=entry.notified,
                    triggered_at=entry.triggered_at,
                )
            )

    async def list_history(self, alert_id: UUID) -> list[AlertHistoryEntry]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(alert_history)
                .where(alert_history.c.alert_id == alert_id)
                .order_by(alert_history.c.triggered_at)
            )
            rows = result.mappings().all()
        return [
            AlertHistoryEntry(
                id=row["id"],
                alert_id=row["alert_id"],
                price_at_trigger=to_decimal(row["price_at_trigger"]),
                message=row["message"],
                notified=bool(row["notified"]),
                triggered_at=row["triggered_at"],
            )
            for row in rows
        ]

    async def add_track(self, track: AlertPriceTrack) -> None:
        async with self._connect() as conn:
            await conn.execute(
                insert(alert_price_tracks).values(
                    id=track.id,
                    alert_id=track.alert_id,
                    price=track.price,
                    threshold=track.threshold,
                    recorded_at=track.recorded_at,
                )
            )

    async def recent_tracks(self, alert_id: UUID, limit: int = 500) -> list[AlertPriceTrack]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(alert_price_tracks)
                .where(alert_price_tracks.c.alert_id == alert_id)
                .order_by(alert_price_tracks.c.recorded_at.desc())
                .limit(limit)
            )
            rows = result.mappings().all()
        tracks = [
            AlertPriceTrack(
                id=row["id"],
                alert_id=row["alert_id"],
                price=to_decimal(row["price"]),
                threshold=to_decimal(row["threshold"]),
                recorded_at=row["recorded_at"],
            )
            for row in rows
        ]
        tracks.reverse()
        return tracks
