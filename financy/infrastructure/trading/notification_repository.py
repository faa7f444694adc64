"""
Adapter: In-app notification store.

Implements NotificationRepository port over ``notifications`` and
``user_settings``. Alert notifications are kept one row per alert:
a re-trigger refreshes the existing row instead of stacking a new one.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import insert, select, update

from financy.domain.trading.entities import NotificationMessage
from financy.domain.trading.ports import NotificationRepository
from financy.infrastructure.trading.base import SqlRepository
from financy.infrastructure.trading.tables import notifications, user_settings, utcnow


class SqlNotificationRepository(SqlRepository, NotificationRepository):
    """SQL implementation of the in-app notification store."""

    async def store(self, user_id: UUID, message: NotificationMessage) -> None:
        alert_id = message.data.get("alertId") if message.kind == "alert" else None
        values = {
            "kind": message.kind,
            "title": message.title,
            "message": message.body,
            "data": message.data,
            "read": False,
            "created_at": utcnow(),
        }
        async with self._connect() as conn:
            if alert_id is not None:
                result = await conn.execute(
                    update(notifications)
                    .where(
                        notifications.c.user_id == user_id,
                        notifications.c.alert_id == UUID(str(alert_id)),
                    )
                    .values(**values)
                )
                if result.rowcount:
                    return
            await conn.execute(
                insert(notifications).values(
                    id=uuid4(),
                    user_id=user_id,
                    alert_id=UUID(str(alert_id)) if alert_id is not None else None,
                    **values,
                )
            )

    async def get_telegram_chat_id(self, user_id: UUID) -> Optional[str]:
        async with self._connect() as conn:
            result = await conn.execute(
                select(user_settings.c.telegram_chat_id).where(
                    user_settings.c.user_id == user_id,
                    user_settings.c.telegram_enabled.is_(True),
                )
            )
            return result.scalar_one_or_none()
