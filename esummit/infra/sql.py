"""
Async engine setup for SQLite (aiosqlite) and Postgres (asyncpg), plus the
DB gate every request goes through before it opens a transaction.
"""

import asyncio
import os
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from sqlalchemy import MetaData, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

# plain URL scheme -> async driver scheme
_ASYNC_SCHEMES = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

_SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "busy_timeout=5000",
    "synchronous=NORMAL",
    # unique and foreign keys are the only guards we rely on
    "foreign_keys=ON",
)

# SQLSTATE for unique_violation; sqlite has no code, only the message
UNIQUE_VIOLATION = "23505"


def to_async_url(url: str) -> str:
    for plain, driver in _ASYNC_SCHEMES:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


class DbGate:
    """Caps concurrent transactions at the pool size."""

    def __init__(self, limit: int):
        self.limit = max(1, limit)
        self._sem = asyncio.Semaphore(self.limit)

    async def __aenter__(self):
        await self._sem.acquire()

    async def __aexit__(self, *exc):
        self._sem.release()
        return False


class Database(NamedTuple):
    engine: AsyncEngine
    sessions: async_sessionmaker
    gate: DbGate
    gated: Callable[[], DbGate]


def _engine_options(db_url: str) -> Tuple[Dict[str, Any], Optional[int]]:
    kw: Dict[str, Any] = dict(future=True, pool_pre_ping=True)
    if not db_url.startswith("postgresql+asyncpg://"):
        return kw, None
    pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
    kw.update(
        pool_size=pool_size,
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
    )
    return kw, pool_size


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        for pragma in _SQLITE_PRAGMAS:
            cur.execute(f"PRAGMA {pragma};")
        cur.close()


def make_async_engine(database_url: str) -> Database:
    """
    Returns (engine, session factory, gate, gated). `gated()` is used as
    `async with gated(): async with db.begin(): ...`.
    """
    db_url = to_async_url(database_url)
    kw, pool_size = _engine_options(db_url)
    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine)

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    gate = DbGate(int(os.getenv("DB_GATE_LIMIT", pool_size or 10)))
    return Database(engine, sessions, gate, lambda: gate)


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code == UNIQUE_VIOLATION
    msg = str(orig or exc).lower()
    return "unique constraint" in msg or "duplicate key" in msg


async def create_schema(engine: AsyncEngine, metadata: MetaData) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
