"""
Alert evaluation state machine.

Each active alert is either IDLE (``is_tracking`` false) or TRACKING.

    IDLE ──condition true & cooldown elapsed──▶ TRACKING   (notify once)
    TRACKING ──condition still true──▶ TRACKING            (sample price)
    TRACKING ──condition false──▶ IDLE                     (silent)

A sustained breach therefore produces exactly one notification plus a
price trail, never one notification per pass. The evaluator is pure:
it returns a decision and the records to persist; the caller owns IO.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from financy.domain.trading.entities import (
    Alert,
    AlertHistoryEntry,
    AlertPriceTrack,
    AlertStatus,
    AlertType,
)
from financy.domain.trading.errors import UnsupportedAlertTypeError

logger = logging.getLogger(__name__)

ALERT_COOLDOWN = timedelta(minutes=5)

EVALUABLE_TYPES = frozenset(
    {
        AlertType.PRICE_ABOVE,
        AlertType.PRICE_BELOW,
        AlertType.PERCENT_CHANGE,
        AlertType.VOLUME_SPIKE,
    }
)


class AlertTransition(Enum):
    SKIP = "skip"
    NONE = "none"
    TRIGGER = "trigger"
    TRACK = "track"
    RESET = "reset"


@dataclass(frozen=True)
class AlertObservation:
    """What the market looks like for one alert in this pass."""

    symbol: str
    price_eur: Optional[Decimal]
    change_percent: Optional[Decimal] = None
    volume: Optional[int] = None


@dataclass(frozen=True)
class AlertDecision:
    transition: AlertTransition
    condition_met: bool = False
    reason: str = ""


@dataclass(frozen=True)
class AlertOutcome:
    """Records produced by applying a decision."""

    alert: Alert
    history: Optional[AlertHistoryEntry] = None
    track: Optional[AlertPriceTrack] = None


def ensure_evaluable(alert_type: AlertType) -> None:
    """Reject alert types without an evaluation rule.

    Raises:
        UnsupportedAlertTypeError: For ``technical_signal``.
    """
    if alert_type not in EVALUABLE_TYPES:
        raise UnsupportedAlertTypeError(alert_type.value)


def condition_met(alert: Alert, observation: AlertObservation) -> bool:
    """Evaluate the alert condition. Missing inputs never satisfy it."""
    threshold = alert.threshold
    if alert.alert_type is AlertType.PRICE_ABOVE:
        return observation.price_eur is not None and observation.price_eur >= threshold
    if alert.alert_type is AlertType.PRICE_BELOW:
        return observation.price_eur is not None and observation.price_eur <= threshold
    if alert.alert_type is AlertType.PERCENT_CHANGE:
        return observation.change_percent is not None and abs(observation.change_percent) >= threshold
    if alert.alert_type is AlertType.VOLUME_SPIKE:
        return observation.volume is not None and observation.volume >= threshold
    return False


def describe_trigger(alert: Alert, observation: AlertObservation) -> str:
    """Human-readable trigger message stored in history and sent to the user."""
    symbol = observation.symbol
    if alert.alert_type is AlertType.PRICE_ABOVE:
        return f"{symbol} rose to €{observation.price_eur:.2f} (threshold €{alert.threshold:.2f})"
    if alert.alert_type is AlertType.PRICE_BELOW:
        return f"{symbol} fell to €{observation.price_eur:.2f} (threshold €{alert.threshold:.2f})"
    if alert.alert_type is AlertType.PERCENT_CHANGE:
        return (
            f"{symbol} moved {observation.change_percent:+.2f}% "
            f"(threshold ±{alert.threshold:.2f}%)"
        )
    if alert.alert_type is AlertType.VOLUME_SPIKE:
        return f"{symbol} volume {observation.volume:,} (threshold {alert.threshold:,.0f})"
    return f"{symbol} alert triggered"


class AlertEvaluator:
    """Decides and applies alert transitions.

    Args:
        cooldown: Minimum time between two triggers of the same alert.
    """

    def __init__(self, cooldown: timedelta = ALERT_COOLDOWN) -> None:
        self._cooldown = cooldown

    def evaluate(self, alert: Alert, observation: AlertObservation, now: datetime) -> AlertDecision:
        if alert.status is not AlertStatus.ACTIVE:
            return AlertDecision(AlertTransition.SKIP, reason="inactive")
        if alert.alert_type not in EVALUABLE_TYPES:
            return AlertDecision(AlertTransition.SKIP, reason="unsupported type")
        if observation.price_eur is None:
            return AlertDecision(AlertTransition.SKIP, reason="no price")

        met = condition_met(alert, observation)

        if alert.is_tracking:
            if met:
                return AlertDecision(AlertTransition.TRACK, condition_met=True)
            return AlertDecision(AlertTransition.RESET)

        if not met:
            return AlertDecision(AlertTransition.NONE)
        if not self.cooldown_elapsed(alert, now):
            return AlertDecision(AlertTransition.NONE, condition_met=True, reason="cooldown")
        return AlertDecision(AlertTransition.TRIGGER, condition_met=True)

    def cooldown_elapsed(self, alert: Alert, now: datetime) -> bool:
        if alert.last_triggered_at is None:
            return True
        return now - alert.last_triggered_at >= self._cooldown

    def apply(
        self,
        alert: Alert,
        decision: AlertDecision,
        observation: AlertObservation,
        now: datetime,
    ) -> AlertOutcome:
        """Return the updated alert and the rows this transition creates."""
        transition = decision.transition

        if transition is AlertTransition.TRIGGER:
            updated = replace(
                alert,
                is_tracking=True,
                tracking_started_at=now,
                last_triggered_at=now,
                trigger_count=alert.trigger_count + 1,
            )
            history = AlertHistoryEntry(
                alert_id=alert.id,
                price_at_trigger=observation.price_eur,
                message=describe_trigger(alert, observation),
                notified=len(alert.channels) > 0,
                triggered_at=now,
            )
            return AlertOutcome(updated, history=history, track=self._sample(alert, observation, now))

        if transition is AlertTransition.TRACK:
            return AlertOutcome(alert, track=self._sample(alert, observation, now))

        if transition is AlertTransition.RESET:
            return AlertOutcome(replace(alert, is_tracking=False, tracking_started_at=None))

        return AlertOutcome(alert)

    @staticmethod
    def _sample(alert: Alert, observation: AlertObservation, now: datetime) -> AlertPriceTrack:
        return AlertPriceTrack(
            alert_id=alert.id,
            price=observation.price_eur,
            threshold=alert.threshold,
            recorded_at=now,
        )
