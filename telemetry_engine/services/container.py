"""
Wiring of the engine's long-lived collaborators.

Builds, from settings, the database engine and session factory, the Redis
client, the event bus, the latest-value cache, the point manager, the
subscription registry and the series resolver, and connects them:

- point mutations invalidate the series resolver cache;
- cached source values fan out to subscribing composite systems.

The API lifespan and the jobs CLI both build their services here.

CHANGELOG:
- 2026-02-28: Register composite fan-out on the event bus
- 2026-02-26: Initial creation
"""

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from telemetry_engine.cache.latest import LatestValueCache
from telemetry_engine.cache.redis_client import create_redis
from telemetry_engine.config import EngineSettings
from telemetry_engine.db.session import create_engine, create_session_factory
from telemetry_engine.services.events import EventBus, RawValueCommitted
from telemetry_engine.services.points import PointManager
from telemetry_engine.services.series import SeriesResolver
from telemetry_engine.services.subscriptions import CompositeFanout, SubscriptionRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by requests and jobs."""

    settings: EngineSettings
    engine: AsyncEngine | None
    session_factory: async_sessionmaker[AsyncSession]
    redis: redis.Redis
    bus: EventBus
    cache: LatestValueCache
    points: PointManager
    registry: SubscriptionRegistry
    resolver: SeriesResolver

    @property
    def max_gap_ms(self) -> int:
        """Longest power segment that is still integrated, in ms."""
        return self.settings.integration_max_gap_s * 1000

    async def rebuild_subscriptions(self, system_id: int | None = None) -> int:
        """Rebuild the subscription registry in a fresh session."""
        async with self.session_factory() as db:
            return await self.registry.build(db, system_id)

    async def close(self) -> None:
        """Release the Redis connection pool and database engine."""
        await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def wire_services(
    settings: EngineSettings,
    session_factory: async_sessionmaker[AsyncSession],
    client: redis.Redis,
    engine: AsyncEngine | None = None,
) -> Services:
    """Connect collaborators built by the caller."""
    bus = EventBus()
    cache = LatestValueCache(
        client,
        key_prefix=settings.redis_key_prefix,
        reject_out_of_order=settings.latest_reject_out_of_order,
        bus=bus,
    )
    resolver = SeriesResolver()
    points = PointManager()
    points.add_mutation_listener(resolver.invalidate)
    registry = SubscriptionRegistry()
    bus.subscribe(RawValueCommitted, CompositeFanout(registry, cache))

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=client,
        bus=bus,
        cache=cache,
        points=points,
        registry=registry,
        resolver=resolver,
    )


def build_services(settings: EngineSettings) -> Services:
    """Build every collaborator from settings."""
    engine = create_engine(settings.database_url)
    services = wire_services(
        settings,
        create_session_factory(engine),
        create_redis(settings.redis_url),
        engine=engine,
    )
    logger.info(
        "Services built: reject_out_of_order=%s max_gap_s=%d",
        settings.latest_reject_out_of_order,
        settings.integration_max_gap_s,
    )
    return services
