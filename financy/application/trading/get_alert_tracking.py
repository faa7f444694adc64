"""
Use case: Read the tracking state and price samples of an alert.
"""

from uuid import UUID

from financy.application.trading.dtos import AlertTrackingResult
from financy.domain.trading.errors import AlertNotFoundError
from financy.domain.trading.ports import UnitOfWork

TRACK_LIMIT = 500


class GetAlertTrackingUseCase:
    def __init__(self, uow: UnitOfWork, limit: int = TRACK_LIMIT) -> None:
        self._uow = uow
        self._limit = limit

    async def execute(self, alert_id: UUID) -> AlertTrackingResult:
        alert = await self._uow.alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(str(alert_id))
        tracks = await self._uow.alerts.recent_tracks(alert.id, limit=self._limit)
        return AlertTrackingResult(
            alert_id=alert.id,
            is_tracking=alert.is_tracking,
            tracking_started_at=alert.tracking_started_at,
            tracks=tuple(tracks),
        )
