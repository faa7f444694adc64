"""
Relational schema of the persistent store (SQLAlchemy Core).

Uniqueness constraints carry data-model invariants:
    trading_profiles.user_id                         one profile per user
    trading_assets (profile_id, asset_id)            one entry per asset
    trading_suggestions (profile_id, asset_id, status)
    holdings (portfolio_id, asset_id)                one lot per asset
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.ext.asyncio import AsyncEngine


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo; values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


MONEY = Numeric(18, 6, asdecimal=True)

metadata = MetaData()

assets = Table(
    "assets",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("symbol", String(32), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("asset_type", String(32), nullable=False, default="stock"),
    Column("sector", String(128)),
    Column("currency", String(8), nullable=False, default="USD"),
    Column("current_price", MONEY),
    Column("previous_close", MONEY),
    Column("change_percent", MONEY),
    Column("volume", BigInteger),
    Column("average_volume", BigInteger),
    Column("updated_at", UtcDateTime),
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("alert_type", String(32), nullable=False),
    Column("threshold", MONEY, nullable=False),
    Column("status", String(16), nullable=False, default="active", index=True),
    Column("channels", JSON, nullable=False),
    Column("is_tracking", Boolean, nullable=False, default=False),
    Column("tracking_started_at", UtcDateTime),
    Column("last_triggered_at", UtcDateTime),
    Column("trigger_count", Integer, nullable=False, default=0),
    Column("created_at", UtcDateTime, nullable=False, default=utcnow),
)

alert_price_tracks = Table(
    "alert_price_tracks",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("alert_id", Uuid, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False),
    Column("price", MONEY, nullable=False),
    Column("threshold", MONEY, nullable=False),
    Column("recorded_at", UtcDateTime, nullable=False),
    Index("ix_alert_price_tracks_alert_recorded", "alert_id", "recorded_at"),
)

alert_history = Table(
    "alert_history",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("alert_id", Uuid, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("price_at_trigger", MONEY, nullable=False),
    Column("message", Text, nullable=False),
    Column("notified", Boolean, nullable=False, default=False),
    Column("triggered_at", UtcDateTime, nullable=False),
)

trading_profiles = Table(
    "trading_profiles",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", Uuid, nullable=False, unique=True),
    Column("horizon", String(16), nullable=False, default="medium"),
    Column("risk_tolerance", String(16), nullable=False, default="moderate"),
    Column("target_profit_pct", MONEY, nullable=False),
    Column("max_loss_pct", MONEY, nullable=False),
    Column("preferred_sectors", JSON, nullable=False),
    Column("trading_style", String(16), nullable=False, default="swing"),
    Column("cash_balance", MONEY, nullable=False, default=0),
    Column("analysis_interval", Integer, nullable=False, default=60),
    Column("suggestion_interval", Integer, nullable=False, default=0),
    Column("resuggest_dismissed_after_days", Integer, nullable=False, default=7),
    Column("resuggest_accepted_after_days", Integer),
    Column("last_analysis_at", UtcDateTime),
    Column("last_suggestion_at", UtcDateTime),
)

trading_assets = Table(
    "trading_assets",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("profile_id", Uuid, ForeignKey("trading_profiles.id", ondelete="CASCADE"), nullable=False),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("status", String(16), nullable=False, default="watching"),
    Column("entry_price", MONEY),
    Column("entry_price_native", MONEY),
    Column("entry_date", UtcDateTime),
    Column("quantity", MONEY),
    Column("target_price", MONEY),
    Column("stop_loss_price", MONEY),
    Column("exit_price", MONEY),
    Column("exit_price_native", MONEY),
    Column("exit_date", UtcDateTime),
    Column("realized_profit_pct", MONEY),
    Column("created_at", UtcDateTime, nullable=False, default=utcnow),
    Column("updated_at", UtcDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    UniqueConstraint("profile_id", "asset_id", name="uq_trading_assets_profile_asset"),
)

trading_signals = Table(
    "trading_signals",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("trading_asset_id", Uuid, ForeignKey("trading_assets.id", ondelete="CASCADE"), nullable=False),
    Column("action", String(8), nullable=False),
    Column("confidence", String(8), nullable=False),
    Column("reason", Text, nullable=False),
    Column("price_at_signal", MONEY, nullable=False),
    Column("criteria", JSON, nullable=False),
    Column("notified", Boolean, nullable=False, default=False),
    Column("executed", Boolean, nullable=False, default=False),
    Column("created_at", UtcDateTime, nullable=False),
    Index("ix_trading_signals_asset_action_created", "trading_asset_id", "action", "created_at"),
)

trading_suggestions = Table(
    "trading_suggestions",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("profile_id", Uuid, ForeignKey("trading_profiles.id", ondelete="CASCADE"), nullable=False),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("reason", Text, nullable=False),
    Column("confidence", String(8), nullable=False),
    Column("risk_level", String(8), nullable=False),
    Column("expected_profit", MONEY, nullable=False),
    Column("timeframe", String(16), nullable=False),
    Column("criteria", JSON, nullable=False),
    Column("created_at", UtcDateTime, nullable=False, default=utcnow),
    Column("accepted_at", UtcDateTime),
    Column("dismissed_at", UtcDateTime),
    UniqueConstraint("profile_id", "asset_id", "status", name="uq_trading_suggestions_profile_asset_status"),
)

portfolios = Table(
    "portfolios",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("name", String(128), nullable=False),
    Column("created_at", UtcDateTime, nullable=False, default=utcnow),
    UniqueConstraint("user_id", "name", name="uq_portfolios_user_name"),
)

holdings = Table(
    "holdings",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("portfolio_id", Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("quantity", MONEY, nullable=False),
    Column("avg_buy_price", MONEY, nullable=False),
    Column("trading_asset_id", Uuid, ForeignKey("trading_assets.id", ondelete="SET NULL")),
    UniqueConstraint("portfolio_id", "asset_id", name="uq_holdings_portfolio_asset"),
)

technical_signals = Table(
    "technical_signals",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("indicator", String(32), nullable=False),
    Column("signal", String(32), nullable=False),
    Column("value", MONEY),
    Column("calculated_at", UtcDateTime, nullable=False),
    Index("ix_technical_signals_asset_calculated", "asset_id", "calculated_at"),
)

asset_news = Table(
    "asset_news",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("asset_id", Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("sentiment", String(16)),
    Column("published_at", UtcDateTime, nullable=False),
    Index("ix_asset_news_asset_published", "asset_id", "published_at"),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("kind", String(32), nullable=False),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("data", JSON, nullable=False),
    Column("alert_id", Uuid, index=True),
    Column("read", Boolean, nullable=False, default=False),
    Column("created_at", UtcDateTime, nullable=False, default=utcnow),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", Uuid, primary_key=True),
    Column("telegram_chat_id", String(64)),
    Column("telegram_enabled", Boolean, nullable=False, default=False),
)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
