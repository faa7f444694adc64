"""
Domain-specific errors for the trading bounded context.

All errors raised from the domain layer must be defined here.
These are mapped to HTTP responses at the interface layer.
No framework imports allowed.

Notification failures are deliberately absent: the notifier reports
them as results and never raises.
"""


class TradingDomainError(Exception):
    """Base error for all trading domain errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class DataUnavailableError(TradingDomainError):
    """Raised when a price, quote or indicator needed for a decision is missing."""

    def __init__(self, subject: str, reason: str = "no data") -> None:
        super().__init__(f"Data unavailable for {subject}: {reason}")
        self.subject = subject
        self.reason = reason


class RateUnavailableError(TradingDomainError):
    """Raised by the FX feed when every rate source failed."""

    def __init__(self, currency: str) -> None:
        super().__init__(f"No EUR rate available for currency: {currency}")
        self.currency = currency


class InsufficientFundsError(TradingDomainError):
    """Raised when the profile cash balance cannot cover a purchase."""

    def __init__(self, required: str, available: str) -> None:
        super().__init__(
            f"Insufficient funds: required {required}, available {available}"
        )
        self.required = required
        self.available = available


class InvalidStateError(TradingDomainError):
    """Raised when an operation is not allowed from the current status."""

    def __init__(self, entity: str, current: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} {entity} in status '{current}'")
        self.entity = entity
        self.current = current
        self.operation = operation


class InvalidQuantityError(TradingDomainError):
    """Raised when a trade quantity is not strictly positive."""

    def __init__(self, quantity: str) -> None:
        super().__init__(f"Invalid quantity: {quantity}. Must be greater than 0.")
        self.quantity = quantity


class TradingAssetNotFoundError(TradingDomainError):
    """Raised when a trading asset cannot be found."""

    def __init__(self, trading_asset_id: str) -> None:
        super().__init__(f"Trading asset not found: {trading_asset_id}")
        self.trading_asset_id = trading_asset_id


class AssetNotFoundError(TradingDomainError):
    """Raised when a market asset cannot be found."""

    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Asset not found: {asset_id}")
        self.asset_id = asset_id


class ProfileNotFoundError(TradingDomainError):
    """Raised when a trading profile cannot be found."""

    def __init__(self, profile_id: str) -> None:
        super().__init__(f"Trading profile not found: {profile_id}")
        self.profile_id = profile_id


class SuggestionNotFoundError(TradingDomainError):
    """Raised when a trading suggestion cannot be found."""

    def __init__(self, suggestion_id: str) -> None:
        super().__init__(f"Suggestion not found: {suggestion_id}")
        self.suggestion_id = suggestion_id


class AlertNotFoundError(TradingDomainError):
    """Raised when an alert cannot be found."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class AlreadyTrackedError(TradingDomainError):
    """Raised when an asset is already in the profile's trading list."""

    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Asset {asset_id} is already in the trading list")
        self.asset_id = asset_id


class UnsupportedAlertTypeError(TradingDomainError):
    """Raised for alert types that have no evaluation rule."""

    def __init__(self, alert_type: str) -> None:
        super().__init__(f"Alert type '{alert_type}' cannot be evaluated")
        self.alert_type = alert_type
