"""
Use case: Create an alert on an asset.

Input: CreateAlertCommand
Output: the stored Alert (active, not tracking)
Failure cases:
    - UnsupportedAlertTypeError for types the alert pass cannot evaluate.
    - AssetNotFoundError if the asset does not exist.
"""

import logging

from financy.application.trading.dtos import CreateAlertCommand
from financy.domain.trading.alert_evaluator import ensure_evaluable
from financy.domain.trading.entities import Alert, NotificationChannel
from financy.domain.trading.errors import AssetNotFoundError
from financy.domain.trading.ports import UnitOfWork

logger = logging.getLogger(__name__)


class CreateAlertUseCase:
    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    async def execute(self, command: CreateAlertCommand) -> Alert:
        ensure_evaluable(command.alert_type)

        asset = await self._uow.assets.get(command.asset_id)
        if asset is None:
            raise AssetNotFoundError(str(command.asset_id))

        alert = Alert(
            user_id=command.user_id,
            asset_id=asset.id,
            alert_type=command.alert_type,
            threshold=command.threshold,
            channels=tuple(dict.fromkeys(command.channels)) or (NotificationChannel.IN_APP,),
        )
        stored = await self._uow.alerts.add(alert)
        logger.info("Created %s alert on %s at %s", alert.alert_type.value, asset.symbol, alert.threshold)
        return stored
