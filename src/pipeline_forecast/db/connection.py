"""Async SQLAlchemy engine and session factory for the CRM store."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings


def _normalise_url(url: str) -> str:
    """Ensure the URL uses the async psycopg driver and has SSL for cloud DBs."""
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    elif url.startswith("postgresql://") and "+psycopg" not in url:
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    # Append sslmode=require for cloud databases (non-localhost)
    host = url.split("@")[-1].split("/")[0].split(":")[0] if "@" in url else ""
    if host and host not in ("localhost", "127.0.0.1") and "sslmode" not in url:
        sep = "&" if "?" in url else "?"
        url += sep + "sslmode=require"
    return url


def create_session_factory(url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to a fresh engine.

    The engine is read-only in practice: nothing in this package issues
    writes, so sessions never need committing.
    """
    engine = create_async_engine(_normalise_url(url or settings.database_url), echo=False)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
