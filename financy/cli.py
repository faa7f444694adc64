"""
Command-line entry point.

Usage:
    # Create the database tables
    python -m financy.cli init-db

    # Run one alert pass
    python -m financy.cli evaluate-alerts

    # Run one signal pass (all profiles, ignoring their intervals)
    python -m financy.cli signals

    # Analyze a single trading asset
    python -m financy.cli analyze --trading-asset <uuid>

    # Generate suggestions for a profile
    python -m financy.cli suggest --profile <uuid>
"""

import argparse
import asyncio
import logging
from typing import Awaitable, Callable
from uuid import UUID

import httpx

from financy.core.config import settings
from financy.infrastructure.trading.database import create_engine
from financy.infrastructure.trading.tables import init_db
from financy.interfaces.trading.dependencies import Services, build_services
from financy.shared.logging import configure_logging

logger = logging.getLogger(__name__)


async def _with_services(fn: Callable[[Services], Awaitable[None]]) -> None:
    engine = create_engine(settings)
    async with httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds) as client:
        try:
            await fn(build_services(settings, engine, client))
        finally:
            await engine.dispose()


async def cmd_init_db(args: argparse.Namespace) -> None:
    """Create all tables."""
    engine = create_engine(settings)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    logger.info("Database initialized.")


async def cmd_evaluate_alerts(args: argparse.Namespace) -> None:
    async def run(services: Services) -> None:
        result = await services.evaluate_alerts.execute()
        logger.info("Alert pass: %s", result)

    await _with_services(run)


async def cmd_signals(args: argparse.Namespace) -> None:
    async def run(services: Services) -> None:
        result = await services.signal_pass.execute(force=True)
        logger.info("Signal pass: %s", result)

    await _with_services(run)


async def cmd_analyze(args: argparse.Namespace) -> None:
    async def run(services: Services) -> None:
        result = await services.analyze.execute(args.trading_asset)
        logger.info(
            "%s (%s): %s [price %s, €%s, new signal: %s]",
            result.action.value, result.confidence.value, result.reason,
            result.price, result.price_eur, result.signal_created,
        )

    await _with_services(run)


async def cmd_suggest(args: argparse.Namespace) -> None:
    async def run(services: Services) -> None:
        created = await services.generate_suggestions.execute(args.profile)
        logger.info("%d suggestions created.", created)

    await _with_services(run)


def main() -> None:
    parser = argparse.ArgumentParser(description="Financy CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=cmd_init_db)

    alerts_parser = subparsers.add_parser("evaluate-alerts", help="Run one alert pass")
    alerts_parser.set_defaults(func=cmd_evaluate_alerts)

    signals_parser = subparsers.add_parser("signals", help="Run one signal pass for every profile")
    signals_parser.set_defaults(func=cmd_signals)

    analyze_parser = subparsers.add_parser("analyze", help="Analyze one trading asset")
    analyze_parser.add_argument("--trading-asset", required=True, type=UUID, dest="trading_asset")
    analyze_parser.set_defaults(func=cmd_analyze)

    suggest_parser = subparsers.add_parser("suggest", help="Generate suggestions for a profile")
    suggest_parser.add_argument("--profile", required=True, type=UUID)
    suggest_parser.set_defaults(func=cmd_suggest)

    args = parser.parse_args()
    configure_logging(level=settings.log_level)
    asyncio.run(args.func(args))


if __name__ == "__main__":
    main()
