"""
FastAPI router for the trading bounded context.

All routes delegate to use cases. No business logic here.
Input validation is handled by Pydantic schemas.
Error mapping is handled by centralized error handlers.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from financy.application.trading.add_to_trading import AddToTradingUseCase
from financy.application.trading.analyze_trading_asset import AnalyzeTradingAssetUseCase
from financy.application.trading.create_alert import CreateAlertUseCase
from financy.application.trading.dtos import AddToTradingCommand, CreateAlertCommand
from financy.application.trading.evaluate_alerts import EvaluateAlertsUseCase
from financy.application.trading.execute_trade import TradeExecutor
from financy.application.trading.generate_suggestions import GenerateSuggestionsUseCase
from financy.application.trading.get_alert_tracking import GetAlertTrackingUseCase
from financy.application.trading.review_suggestion import ReviewSuggestionUseCase
from financy.interfaces.trading.dependencies import (
    get_add_to_trading_use_case,
    get_alert_tracking_use_case,
    get_analyze_use_case,
    get_create_alert_use_case,
    get_evaluate_alerts_use_case,
    get_generate_suggestions_use_case,
    get_review_suggestion_use_case,
    get_trade_executor,
)
from financy.interfaces.trading.schemas import (
    AcceptSuggestionResponse,
    AddToTradingRequest,
    AlertPassResponse,
    AlertResponse,
    AlertTrackingResponse,
    AnalysisResponse,
    BuyRequest,
    CreateAlertRequest,
    ErrorResponse,
    GenerateSuggestionsResponse,
    PriceTrackItem,
    SuggestionResponse,
    TradingAssetResponse,
)
from financy.shared.security.rate_limiting import HEAVY_RATE_LIMIT, limiter

router = APIRouter(tags=["trading"])


# ── Alerts ──────────────────────────────────────────────────────────


@router.post(
    "/alerts",
    response_model=AlertResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Create an alert",
    description="Alert types without an evaluation rule (technical_signal) are rejected.",
)
async def create_alert(
    body: CreateAlertRequest,
    use_case: CreateAlertUseCase = Depends(get_create_alert_use_case),
) -> AlertResponse:
    alert = await use_case.execute(
        CreateAlertCommand(
            user_id=body.user_id,
            asset_id=body.asset_id,
            alert_type=body.alert_type,
            threshold=body.threshold,
            channels=tuple(body.channels),
        )
    )
    return AlertResponse.model_validate(alert)


@router.post(
    "/alerts/evaluate",
    response_model=AlertPassResponse,
    summary="Run an alert pass",
    description="Evaluate every active alert now, outside the scheduler.",
)
async def evaluate_alerts(
    use_case: EvaluateAlertsUseCase = Depends(get_evaluate_alerts_use_case),
) -> AlertPassResponse:
    result = await use_case.execute()
    return AlertPassResponse(
        evaluated=result.evaluated,
        triggered=result.triggered,
        tracked=result.tracked,
        reset=result.reset,
        skipped=result.skipped,
        failed=result.failed,
    )


@router.get(
    "/alerts/{alert_id}/tracking",
    response_model=AlertTrackingResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Alert tracking state",
    description="Tracking flag and the most recent EUR price samples, oldest first.",
)
async def get_alert_tracking(
    alert_id: UUID,
    use_case: GetAlertTrackingUseCase = Depends(get_alert_tracking_use_case),
) -> AlertTrackingResponse:
    result = await use_case.execute(alert_id)
    return AlertTrackingResponse(
        alert_id=result.alert_id,
        is_tracking=result.is_tracking,
        tracking_started_at=result.tracking_started_at,
        tracks=[
            PriceTrackItem(price=t.price, threshold=t.threshold, recorded_at=t.recorded_at)
            for t in result.tracks
        ],
    )


# ── Trading list ────────────────────────────────────────────────────


@router.post(
    "/trading/profiles/{profile_id}/assets",
    response_model=TradingAssetResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Add an asset to the trading list",
)
async def add_to_trading(
    profile_id: UUID,
    body: AddToTradingRequest,
    use_case: AddToTradingUseCase = Depends(get_add_to_trading_use_case),
) -> TradingAssetResponse:
    trading_asset = await use_case.execute(
        AddToTradingCommand(
            profile_id=profile_id,
            asset_id=body.asset_id,
            status=body.status,
            entry_price=body.entry_price,
            quantity=body.quantity,
        )
    )
    return TradingAssetResponse.model_validate(trading_asset)


@router.post(
    "/trading/assets/{trading_asset_id}/analyze",
    response_model=AnalysisResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Analyze a trading asset now",
    description="Run the signal rules immediately. Returns the decision even when "
    "an identical signal is already recorded inside the dedup window.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def analyze_trading_asset(
    request: Request,
    trading_asset_id: UUID,
    use_case: AnalyzeTradingAssetUseCase = Depends(get_analyze_use_case),
) -> AnalysisResponse:
    result = await use_case.execute(trading_asset_id)
    return AnalysisResponse(
        trading_asset_id=result.trading_asset_id,
        action=result.action,
        confidence=result.confidence,
        reason=result.reason,
        price=result.price,
        price_eur=result.price_eur,
        signal_created=result.signal_created,
        criteria=result.criteria,
    )


@router.post(
    "/trading/assets/{trading_asset_id}/buy",
    response_model=TradingAssetResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Buy a watched asset",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def buy_trading_asset(
    request: Request,
    trading_asset_id: UUID,
    body: BuyRequest,
    executor: TradeExecutor = Depends(get_trade_executor),
) -> TradingAssetResponse:
    trading_asset = await executor.buy(trading_asset_id, body.quantity)
    return TradingAssetResponse.model_validate(trading_asset)


@router.post(
    "/trading/assets/{trading_asset_id}/sell",
    response_model=TradingAssetResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Sell a bought asset",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def sell_trading_asset(
    request: Request,
    trading_asset_id: UUID,
    executor: TradeExecutor = Depends(get_trade_executor),
) -> TradingAssetResponse:
    trading_asset = await executor.sell(trading_asset_id)
    return TradingAssetResponse.model_validate(trading_asset)


# ── Suggestions ─────────────────────────────────────────────────────


@router.post(
    "/trading/profiles/{profile_id}/suggestions/generate",
    response_model=GenerateSuggestionsResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Generate suggestions now",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def generate_suggestions(
    request: Request,
    profile_id: UUID,
    use_case: GenerateSuggestionsUseCase = Depends(get_generate_suggestions_use_case),
) -> GenerateSuggestionsResponse:
    created = await use_case.execute(profile_id)
    return GenerateSuggestionsResponse(created=created)


@router.post(
    "/trading/suggestions/{suggestion_id}/accept",
    response_model=AcceptSuggestionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Accept a suggestion",
)
async def accept_suggestion(
    suggestion_id: UUID,
    use_case: ReviewSuggestionUseCase = Depends(get_review_suggestion_use_case),
) -> AcceptSuggestionResponse:
    suggestion, trading_asset = await use_case.accept(suggestion_id)
    return AcceptSuggestionResponse(
        suggestion=SuggestionResponse.model_validate(suggestion),
        trading_asset=TradingAssetResponse.model_validate(trading_asset),
    )


@router.post(
    "/trading/suggestions/{suggestion_id}/dismiss",
    response_model=SuggestionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Dismiss a suggestion",
)
async def dismiss_suggestion(
    suggestion_id: UUID,
    use_case: ReviewSuggestionUseCase = Depends(get_review_suggestion_use_case),
) -> SuggestionResponse:
    suggestion = await use_case.dismiss(suggestion_id)
    return SuggestionResponse.model_validate(suggestion)
