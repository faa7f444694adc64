"""
Use case: Evaluate all active alerts (one alert pass).

Input: none (all alerts with status ``active``)
Output: AlertPassResult counters
Side effects:
    - Refreshes cached quotes of the alerted assets.
    - Trigger: one transaction updating the alert and appending one history
      row and one price sample, then one notification per channel.
    - Track: appends one price sample. Reset: clears the tracking flag.
Failure cases:
    - Missing price: alert skipped for this pass.
    - Any error on one alert is logged; the pass continues.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Optional

from financy.application.trading.dtos import AlertPassResult
from financy.application.trading.market_snapshot import MarketSnapshot, MarketSnapshotLoader
from financy.domain.trading.alert_evaluator import (
    AlertEvaluator,
    AlertObservation,
    AlertOutcome,
    AlertTransition,
)
from financy.domain.trading.entities import Alert, Asset, NotificationMessage
from financy.domain.trading.ports import NotifierPort, UnitOfWork

logger = logging.getLogger(__name__)

_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluateAlertsUseCase:
    """Runs the alert state machine over every active alert.

    Passes never overlap: a pass started while another one runs waits for
    it, so transitions of one alert stay ordered by pass.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        market: MarketSnapshotLoader,
        notifier: NotifierPort,
        evaluator: Optional[AlertEvaluator] = None,
        max_concurrency: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._market = market
        self._notifier = notifier
        self._evaluator = evaluator or AlertEvaluator()
        self._max_concurrency = max(1, max_concurrency)
        self._clock = clock
        self._pass_lock = asyncio.Lock()

    async def execute(self) -> AlertPassResult:
        async with self._pass_lock:
            now = self._clock()
            alerts = await self._uow.alerts.list_active()
            if not alerts:
                return AlertPassResult()

            snapshot = await self._market.load({a.asset_id for a in alerts}, now)
            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def run(alert: Alert) -> str:
                async with semaphore:
                    try:
                        return await self._process(alert, snapshot, now)
                    except Exception:
                        logger.exception("Alert %s failed, continuing pass", alert.id)
                        return _FAILED

            outcomes = Counter(await asyncio.gather(*(run(a) for a in alerts)))

        result = AlertPassResult(
            evaluated=len(alerts) - outcomes[AlertTransition.SKIP.value] - outcomes[_FAILED],
            triggered=outcomes[AlertTransition.TRIGGER.value],
            tracked=outcomes[AlertTransition.TRACK.value],
            reset=outcomes[AlertTransition.RESET.value],
            skipped=outcomes[AlertTransition.SKIP.value],
            failed=outcomes[_FAILED],
        )
        logger.info(
            "Alert pass: %d evaluated, %d triggered, %d tracked, %d reset, %d skipped, %d failed",
            result.evaluated, result.triggered, result.tracked, result.reset, result.skipped, result.failed,
        )
        return result

    async def _process(self, alert: Alert, snapshot: MarketSnapshot, now: datetime) -> str:
        asset = snapshot.assets.get(alert.asset_id)
        if asset is None:
            logger.warning("Alert %s references unknown asset %s", alert.id, alert.asset_id)
            return AlertTransition.SKIP.value

        observation = AlertObservation(
            symbol=asset.symbol,
            price_eur=snapshot.price_eur(asset.id),
            change_percent=asset.change_percent,
            volume=asset.volume,
        )
        decision = self._evaluator.evaluate(alert, observation, now)
        if decision.transition is AlertTransition.SKIP:
            logger.debug("Alert %s skipped: %s", alert.id, decision.reason)
            return decision.transition.value

        outcome = self._evaluator.apply(alert, decision, observation, now)

        if decision.transition is AlertTransition.TRIGGER:
            async with self._uow.atomic() as tx:
                await tx.alerts.save_state(outcome.alert)
                await tx.alerts.add_history(outcome.history)
                await tx.alerts.add_track(outcome.track)
            await self._notify(outcome, asset, observation)
        elif decision.transition is AlertTransition.TRACK:
            await self._uow.alerts.add_track(outcome.track)
        elif decision.transition is AlertTransition.RESET:
            await self._uow.alerts.save_state(outcome.alert)

        return decision.transition.value

    async def _notify(self, outcome: AlertOutcome, asset: Asset, observation: AlertObservation) -> None:
        alert = outcome.alert
        if not alert.channels:
            return
        message = NotificationMessage(
            title=f"🔔 {asset.symbol}",
            body=outcome.history.message,
            kind="alert",
            data={
                "alertId": str(alert.id),
                "assetId": str(asset.id),
                "symbol": asset.symbol,
                "currentPrice": float(observation.price_eur),
                "threshold": float(alert.threshold),
                "alertType": alert.alert_type.value,
                "currency": "EUR",
            },
        )
        summary = await self._notifier.notify(alert.user_id, alert.channels, message)
        if summary.failed:
            logger.warning(
                "Alert %s: %d of %d channels failed", alert.id, summary.failed, len(summary.results)
            )
