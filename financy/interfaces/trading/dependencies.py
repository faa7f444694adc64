"""
Dependency injection for the trading bounded context.

``build_services`` is the composition root: it wires infrastructure
adapters into use cases via constructor injection, once per process.
The resulting container lives on ``app.state.services``; the ``get_*``
functions hand its use cases to the routes.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from financy.application.trading.add_to_trading import AddToTradingUseCase
from financy.application.trading.analyze_trading_asset import (
    AnalyzeTradingAssetUseCase,
    RunSignalPassUseCase,
)
from financy.application.trading.create_alert import CreateAlertUseCase
from financy.application.trading.evaluate_alerts import EvaluateAlertsUseCase
from financy.application.trading.execute_trade import TradeExecutor
from financy.application.trading.generate_suggestions import (
    GenerateSuggestionsUseCase,
    RunSuggestionPassUseCase,
)
from financy.application.trading.get_alert_tracking import GetAlertTrackingUseCase
from financy.application.trading.guards import KeyedLocks
from financy.application.trading.market_snapshot import MarketSnapshotLoader
from financy.application.trading.review_suggestion import ReviewSuggestionUseCase
from financy.core.config import Settings
from financy.domain.trading.alert_evaluator import AlertEvaluator
from financy.domain.trading.currency import CurrencyNormalizer
from financy.domain.trading.ports import FxRatePort, IndicatorPort, NotifierPort, PriceFeedPort
from financy.infrastructure.trading.fx_rate_adapter import EcbYahooFxAdapter
from financy.infrastructure.trading.indicator_repository import SqlIndicatorRepository
from financy.infrastructure.trading.notification_dispatcher import NotificationDispatcher
from financy.infrastructure.trading.notification_repository import SqlNotificationRepository
from financy.infrastructure.trading.unit_of_work import SqlUnitOfWork
from financy.infrastructure.trading.yahoo_finance_adapter import YahooFinanceAdapter
from financy.realtime.scheduler import EvaluationScheduler


@dataclass
class Services:
    """Process-wide use cases and the scheduler that drives them."""

    create_alert: CreateAlertUseCase
    evaluate_alerts: EvaluateAlertsUseCase
    get_alert_tracking: GetAlertTrackingUseCase
    add_to_trading: AddToTradingUseCase
    analyze: AnalyzeTradingAssetUseCase
    signal_pass: RunSignalPassUseCase
    trades: TradeExecutor
    generate_suggestions: GenerateSuggestionsUseCase
    suggestion_pass: RunSuggestionPassUseCase
    review_suggestion: ReviewSuggestionUseCase
    scheduler: Optional[EvaluationScheduler] = None


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    client: httpx.AsyncClient,
    price_feed: Optional[PriceFeedPort] = None,
    fx_feed: Optional[FxRatePort] = None,
    indicators: Optional[IndicatorPort] = None,
    notifier: Optional[NotifierPort] = None,
) -> Services:
    """Wire every use case. Collaborators may be overridden (tests, CLI)."""
    timeout = settings.collaborator_timeout_seconds
    uow = SqlUnitOfWork(engine)

    price_feed = price_feed or YahooFinanceAdapter(
        client, base_url=settings.yahoo_base_url, user_agent=settings.yahoo_user_agent
    )
    fx_feed = fx_feed or EcbYahooFxAdapter(
        client,
        ecb_url=settings.ecb_daily_url,
        yahoo_base_url=settings.yahoo_base_url,
        user_agent=settings.yahoo_user_agent,
        cache_ttl_seconds=settings.fx_cache_ttl_seconds,
    )
    indicators = indicators or SqlIndicatorRepository(engine)
    notifier = notifier or NotificationDispatcher(
        client,
        SqlNotificationRepository(engine),
        telegram_bot_token=settings.telegram_bot_token,
        telegram_api_url=settings.telegram_api_url,
        webhook_urls=settings.notification_webhook_urls,
        timeout=timeout,
    )

    normalizer = CurrencyNormalizer(fx_feed, timeout=timeout)
    market = MarketSnapshotLoader(
        uow, price_feed, normalizer, timeout=timeout, max_concurrency=settings.max_concurrency
    )
    evaluate_alerts = EvaluateAlertsUseCase(
        uow,
        market,
        notifier,
        evaluator=AlertEvaluator(cooldown=timedelta(minutes=settings.alert_cooldown_minutes)),
        max_concurrency=settings.max_concurrency,
    )
    analyze = AnalyzeTradingAssetUseCase(
        uow,
        market,
        indicators,
        notifier,
        timeout=timeout,
        dedup_window=timedelta(hours=settings.signal_dedup_hours),
        locks=KeyedLocks(),
    )
    signal_pass = RunSignalPassUseCase(uow, market, analyze, max_concurrency=settings.max_concurrency)
    add_to_trading = AddToTradingUseCase(uow, normalizer)
    generate_suggestions = GenerateSuggestionsUseCase(uow, price_feed, normalizer, notifier, timeout=timeout)
    suggestion_pass = RunSuggestionPassUseCase(uow, generate_suggestions)

    return Services(
        create_alert=CreateAlertUseCase(uow),
        evaluate_alerts=evaluate_alerts,
        get_alert_tracking=GetAlertTrackingUseCase(uow),
        add_to_trading=add_to_trading,
        analyze=analyze,
        signal_pass=signal_pass,
        trades=TradeExecutor(uow, price_feed, normalizer, timeout=timeout, locks=KeyedLocks()),
        generate_suggestions=generate_suggestions,
        suggestion_pass=suggestion_pass,
        review_suggestion=ReviewSuggestionUseCase(uow, add_to_trading),
        scheduler=EvaluationScheduler(
            evaluate_alerts,
            signal_pass,
            suggestion_pass,
            alert_interval_seconds=settings.alert_pass_interval_seconds,
            signal_interval_seconds=settings.signal_check_interval_seconds,
            suggestion_interval_seconds=settings.suggestion_check_interval_seconds,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_create_alert_use_case(request: Request) -> CreateAlertUseCase:
    return get_services(request).create_alert


def get_evaluate_alerts_use_case(request: Request) -> EvaluateAlertsUseCase:
    return get_services(request).evaluate_alerts


def get_alert_tracking_use_case(request: Request) -> GetAlertTrackingUseCase:
    return get_services(request).get_alert_tracking


def get_add_to_trading_use_case(request: Request) -> AddToTradingUseCase:
    return get_services(request).add_to_trading


def get_analyze_use_case(request: Request) -> AnalyzeTradingAssetUseCase:
    return get_services(request).analyze


def get_trade_executor(request: Request) -> TradeExecutor:
    return get_services(request).trades


def get_generate_suggestions_use_case(request: Request) -> GenerateSuggestionsUseCase:
    return get_services(request).generate_suggestions


def get_review_suggestion_use_case(request: Request) -> ReviewSuggestionUseCase:
    return get_services(request).review_suggestion
