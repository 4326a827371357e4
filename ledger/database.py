"""
Database engine and session management for the Kiln ledger.

Uses the SQLAlchemy async engine with aiosqlite by default. One
LedgerDatabase is built by the composition root; there is no module-level
engine.
"""

from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from core.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ledger ORM models."""
    pass


def to_async_url(url: str) -> str:
    """Convert sqlite:///... to sqlite+aiosqlite:///... for the async driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


class LedgerDatabase:
    """Engine plus session factory for one ledger database."""

    def __init__(self, url: str, echo: bool = False):
        self.url = to_async_url(url)
        kwargs: dict = {"echo": echo}
        if self.url.endswith(":memory:"):
            # One shared connection, or every session sees an empty database
            kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        elif self.url.startswith("sqlite+aiosqlite:///"):
            Path(self.url[len("sqlite+aiosqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.engine: AsyncEngine = create_async_engine(self.url, **kwargs)
        self.sessionmaker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init_db(self) -> None:
        """Create all tables (idempotent)."""
        # Import models so Base.metadata knows about them
        import ledger.db_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Ledger tables created (or already exist)")

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def dispose(self) -> None:
        await self.engine.dispose()
