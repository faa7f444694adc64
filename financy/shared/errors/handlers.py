"""
Centralized error handlers for FastAPI.

Maps domain-specific errors to HTTP responses.
No stack traces or internal details are exposed to clients.
All error responses use the ErrorResponse schema.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from financy.domain.trading.errors import (
    AlertNotFoundError,
    AlreadyTrackedError,
    AssetNotFoundError,
    DataUnavailableError,
    InsufficientFundsError,
    InvalidQuantityError,
    InvalidStateError,
    ProfileNotFoundError,
    RateUnavailableError,
    SuggestionNotFoundError,
    TradingAssetNotFoundError,
    TradingDomainError,
    UnsupportedAlertTypeError,
)

logger = logging.getLogger(__name__)

HTTP_404 = 404
HTTP_409 = 409
HTTP_422 = 422
HTTP_500 = 500
HTTP_503 = 503

NOT_FOUND_ERRORS = (
    AlertNotFoundError,
    AssetNotFoundError,
    ProfileNotFoundError,
    SuggestionNotFoundError,
    TradingAssetNotFoundError,
)


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    async def handle_not_found(_request: Request, exc: TradingDomainError) -> JSONResponse:
        """Handle missing entity errors."""
        logger.warning("Not found: %s", exc.message)
        return _error_response(HTTP_404, "Not found", exc.message)

    for error_cls in NOT_FOUND_ERRORS:
        app.add_exception_handler(error_cls, handle_not_found)

    @app.exception_handler(InsufficientFundsError)
    async def handle_insufficient_funds(
        _request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        """Handle insufficient funds errors."""
        logger.warning("Insufficient funds: %s", exc.message)
        return _error_response(HTTP_422, "Insufficient funds", exc.message)

    @app.exception_handler(InvalidQuantityError)
    async def handle_invalid_quantity(
        _request: Request, exc: InvalidQuantityError
    ) -> JSONResponse:
        logger.warning("Invalid quantity: %s", exc.message)
        return _error_response(HTTP_422, "Invalid quantity", exc.message)

    @app.exception_handler(UnsupportedAlertTypeError)
    async def handle_unsupported_alert_type(
        _request: Request, exc: UnsupportedAlertTypeError
    ) -> JSONResponse:
        logger.warning("Unsupported alert type: %s", exc.message)
        return _error_response(HTTP_422, "Unsupported alert type", exc.message)

    @app.exception_handler(InvalidStateError)
    async def handle_invalid_state(
        _request: Request, exc: InvalidStateError
    ) -> JSONResponse:
        """Handle operations attempted in the wrong lifecycle status."""
        logger.warning("Invalid state: %s", exc.message)
        return _error_response(HTTP_409, "Invalid state", exc.message)

    @app.exception_handler(AlreadyTrackedError)
    async def handle_already_tracked(
        _request: Request, exc: AlreadyTrackedError
    ) -> JSONResponse:
        logger.warning("Already tracked: %s", exc.message)
        return _error_response(HTTP_409, "Already tracked", exc.message)

    @app.exception_handler(DataUnavailableError)
    async def handle_data_unavailable(
        _request: Request, exc: DataUnavailableError
    ) -> JSONResponse:
        """Handle missing market data (price feed down or no quote)."""
        logger.warning("Data unavailable: %s", exc.message)
        return _error_response(HTTP_503, "Market data unavailable", exc.message)

    @app.exception_handler(RateUnavailableError)
    async def handle_rate_unavailable(
        _request: Request, exc: RateUnavailableError
    ) -> JSONResponse:
        logger.warning("Rate unavailable: %s", exc.message)
        return _error_response(HTTP_503, "Exchange rate unavailable", exc.message)

    @app.exception_handler(TradingDomainError)
    async def handle_trading_domain(
        _request: Request, exc: TradingDomainError
    ) -> JSONResponse:
        """Catch-all for unhandled trading domain errors."""
        logger.error("Unhandled trading domain error: %s", exc.message)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
