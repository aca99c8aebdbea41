import asyncio

from sqlalchemy.exc import IntegrityError

from esummit.infra.sql import DbGate, is_unique_violation, to_async_url


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__("boom")
        self.sqlstate = sqlstate


def test_async_driver_urls():
    assert to_async_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
    assert to_async_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert to_async_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert to_async_url("postgresql+asyncpg://u@h/db") == "postgresql+asyncpg://u@h/db"


def test_unique_violation_detection():
    sqlite = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: event_logs.ticket_id"))
    assert is_unique_violation(sqlite)
    assert is_unique_violation(IntegrityError("INSERT", {}, _PgError("23505")))
    assert not is_unique_violation(IntegrityError("INSERT", {}, _PgError("23503")))
    assert not is_unique_violation(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed")))


def test_gate_limits_concurrency():
    gate = DbGate(2)
    inside = []
    peak = []

    async def work():
        async with gate:
            inside.append(1)
            peak.append(len(inside))
            await asyncio.sleep(0.01)
            inside.pop()

    async def main():
        await asyncio.gather(*(work() for _ in range(6)))

    asyncio.run(main())
    assert max(peak) == 2
    assert DbGate(0).limit == 1
