from __future__ import annotations

import logging
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine

from lifeapp.settings import get_settings

logger = logging.getLogger(__name__)

_ASYNC_SCHEMES = ("postgres://", "postgresql://", "postgresql+psycopg2://")


def normalize_database_url(database_url: str) -> str:
    url = str(database_url or "").strip()
    if not url:
        return url
    for scheme in _ASYNC_SCHEMES:
        if url.startswith(scheme):
            url = "postgresql+asyncpg://" + url[len(scheme) :]
            break
    parsed = urlparse(url)
    clean = []
    ssl_requested = False
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        if key == "sslmode":
            ssl_requested = value != "disable"
            continue
        if key in {"channel_binding", "ssl"}:
            continue
        clean.append((key, value))
    if ssl_requested:
        clean.append(("ssl", "true"))
    return urlunparse(parsed._replace(query=urlencode(clean)))


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        db_url = normalize_database_url(get_settings().database_url)
        engine_kwargs = {"pool_pre_ping": True, "pool_size": 20, "max_overflow": 10}
        host = urlparse(db_url).hostname or ""
        if host and host not in {"localhost", "127.0.0.1"}:
            logger.debug("Enabling SSL for database host %s", host)
            engine_kwargs["connect_args"] = {"ssl": True}
        _engine = create_async_engine(db_url, **engine_kwargs)
    return _engine


def get_sessionmaker() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory
