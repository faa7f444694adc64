"""
Async engine construction.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from financy.core.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the process-wide async engine from settings.

    Plain ``postgresql://`` URLs are routed to the asyncpg driver.
    """
    url = settings.database_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    options = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
    return create_async_engine(url, **options)
