from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from predikto.core.config import Settings


def normalize_database_url(raw_url: str) -> tuple[str, dict]:
    """Map libpq-style URLs onto the asyncpg driver.

    Returns the cleaned URL plus ``connect_args`` for ``create_async_engine``.
    """
    url = (raw_url or "").strip()
    if url.startswith("postgres://"):
        url = "postgresql+asyncpg://" + url[len("postgres://") :]
    elif url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://") :]
    if not url.startswith("postgresql+asyncpg://"):
        return url, {}

    parsed = urlsplit(url)
    filtered: list[tuple[str, str]] = []
    connect_args: dict = {}
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        k = key.lower()
        if k == "sslmode":
            # asyncpg expects `ssl`, not `sslmode`.
            if (value or "").lower().strip() not in {"disable", "allow"}:
                connect_args["ssl"] = "require"
            continue
        if k == "channel_binding":
            continue
        filtered.append((key, value))
    return urlunsplit(parsed._replace(query=urlencode(filtered))), connect_args


def build_engine(settings: Settings) -> AsyncEngine:
    url, connect_args = normalize_database_url(settings.database_url)
    engine_kwargs: dict = {"pool_pre_ping": True}
    if settings.serverless_mode:
        engine_kwargs["poolclass"] = NullPool
    if connect_args:
        engine_kwargs["connect_args"] = connect_args
    return create_async_engine(url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
