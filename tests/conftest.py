"""
Shared test fixtures for the telemetry engine tests.

Store-backed tests run against a file-based SQLite database (aiosqlite)
created fresh for each test. Redis is replaced by a small in-memory
double that implements the hash, scan and WATCH/MULTI calls the
latest-value cache uses. API tests drive the FastAPI app over ASGI with
the services placed on ``app.state`` directly.

CHANGELOG:
- 2026-02-28: In-memory Redis double with optimistic transactions
- 2026-02-20: Initial creation
"""

import fnmatch
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import WatchError

from telemetry_engine.api.main import create_app
from telemetry_engine.config import EngineSettings, get_settings
from telemetry_engine.db.models import Point, PointAggregate5m, PointReading, System
from telemetry_engine.db.session import (
    create_engine,
    create_schema,
    create_session_factory,
)
from telemetry_engine.services.container import wire_services

# ---------------------------------------------------------------------------
# In-memory Redis double
# ---------------------------------------------------------------------------


class InMemoryPipeline:
    """Pipeline supporting the watch -> read -> multi -> execute pattern."""

    def __init__(self, owner: "InMemoryRedis") -> None:
        self._owner = owner
        self._watched: dict[str, int] = {}
        self._queued: list[tuple[str, tuple]] = []
        self._in_multi = False

    async def __aenter__(self) -> "InMemoryPipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        self.reset()

    def reset(self) -> None:
        self._watched.clear()
        self._queued.clear()
        self._in_multi = False

    async def watch(self, *keys: str) -> None:
        for key in keys:
            self._watched[key] = self._owner.versions.get(key, 0)

    async def unwatch(self) -> None:
        self._watched.clear()

    async def hget(self, key: str, field: str):
        return await self._owner.hget(key, field)

    def multi(self) -> None:
        self._in_multi = True

    def hset(self, key: str, field: str, value: str) -> "InMemoryPipeline":
        self._queued.append(("hset", (key, field, value)))
        return self

    async def execute(self) -> list:
        try:
            if self._owner.fail_next_executes > 0:
                self._owner.fail_next_executes -= 1
                raise WatchError("Watched variable changed.")
            for key, version in self._watched.items():
                if self._owner.versions.get(key, 0) != version:
                    raise WatchError("Watched variable changed.")
            results = []
            for name, args in self._queued:
                results.append(await getattr(self._owner, name)(*args))
            return results
        finally:
            self.reset()


class InMemoryRedis:
    """Subset of redis.asyncio.Redis used by the latest-value cache."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.versions: dict[str, int] = {}
        self.fail_next_executes = 0
        self.closed = False

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    async def hset(self, key: str, field: str, value: str) -> int:
        bucket = self.hashes.setdefault(key, {})
        created = field not in bucket
        bucket[field] = value
        self._touch(key)
        return int(created)

    async def hget(self, key: str, field: str):
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                deleted += 1
                self._touch(key)
        return deleted

    async def scan_iter(self, match: str | None = None):
        for key in list(self.hashes):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> InMemoryPipeline:
        return InMemoryPipeline(self)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Environment and settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set required environment variables and reset cached settings."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings(tmp_path) -> EngineSettings:
    """Settings pointing at a per-test SQLite file."""
    return EngineSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}",
        redis_url="redis://localhost:6379/0",
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def engine(settings: EngineSettings):
    """Async engine with the schema created from the ORM metadata."""
    eng = create_engine(settings.database_url)
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    """Session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncGenerator:
    """A session for direct store access in tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_redis() -> InMemoryRedis:
    """Fresh in-memory Redis double."""
    return InMemoryRedis()


@pytest.fixture()
def services(settings, session_factory, fake_redis, engine):
    """Fully wired services over SQLite and the Redis double."""
    return wire_services(settings, session_factory, fake_redis, engine=None)


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_system(session_factory):
    """Insert a system and return it."""

    async def _make(
        system_id: int = 1,
        short_name: str | None = None,
        vendor_type: str = "test",
        timezone_offset_min: int = 0,
    ) -> System:
        system = System(
            id=system_id,
            short_name=short_name,
            display_name=f"System {system_id}",
            vendor_type=vendor_type,
            timezone_offset_min=timezone_offset_min,
        )
        async with session_factory() as session:
            session.add(system)
            await session.commit()
        return system

    return _make


@pytest.fixture()
def make_point(session_factory):
    """Insert a point and return it."""

    async def _make(
        system_id: int,
        point_index: int,
        metric_type: str = "power",
        stem: str | None = None,
        transform: str | None = None,
        energy_source: str = "counter",
        metric_unit: str | None = None,
        active: bool = True,
        default_name: str | None = None,
    ) -> Point:
        defaults = {"power": "W", "energy": "Wh", "soc": "%", "status": "text"}
        point = Point(
            system_id=system_id,
            point_index=point_index,
            physical_path_tail=f"path/{point_index}",
            logical_path_stem=stem,
            metric_type=metric_type,
            metric_unit=metric_unit or defaults.get(metric_type, ""),
            transform=transform,
            energy_source=energy_source,
            active=active,
            default_name=default_name or f"Point {point_index}",
        )
        async with session_factory() as session:
            session.add(point)
            await session.commit()
        return point

    return _make


@pytest.fixture()
def add_readings(session_factory):
    """Insert raw readings given as ``(time, value[, quality])`` tuples."""

    async def _add(system_id: int, point_index: int, readings: list[tuple]) -> None:
        async with session_factory() as session:
            for reading in readings:
                time_ms, value = reading[0], reading[1]
                quality = reading[2] if len(reading) > 2 else "good"
                session.add(
                    PointReading(
                        system_id=system_id,
                        point_index=point_index,
                        measurement_time=time_ms,
                        received_time=time_ms,
                        value=value,
                        data_quality=quality,
                    )
                )
            await session.commit()

    return _add


@pytest.fixture()
def add_buckets(session_factory):
    """Insert 5-minute aggregate rows given as column dicts."""

    async def _add(system_id: int, point_index: int, rows: list[dict]) -> None:
        async with session_factory() as session:
            for row in rows:
                values = {
                    "avg": None,
                    "min": None,
                    "max": None,
                    "last": None,
                    "delta": None,
                    "sample_count": 1,
                    "error_count": 0,
                    "degraded": False,
                    **row,
                }
                session.add(
                    PointAggregate5m(
                        system_id=system_id, point_index=point_index, **values
                    )
                )
            await session.commit()

    return _add


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def client(services) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for the FastAPI app with test services on app.state."""
    app = create_app()
    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
