"""
Latest-value cache backed by Redis hashes.

One hash per system (key ``{prefix}latest:system:{system_id}``), one field
per logical path, each field a JSON object::

    {"value": 4210.0, "logicalPath": "source.solar/power",
     "measurementTimeMs": 1767225600000, "receivedTimeMs": 1767225601000,
     "metricUnit": "W"}

The cache is secondary state: it can be cleared and rebuilt at any time
from ingestion. Redis failures propagate to the caller, which decides
whether the write matters.

When out-of-order rejection is enabled, a write whose measurement time is
older than the cached entry is dropped. The read-compare-write runs as an
optimistic WATCH/MULTI transaction so two concurrent writers cannot both
pass the comparison.

CHANGELOG:
- 2026-02-28: Publish RawValueCommitted for composite fan-out
- 2026-02-27: Optional out-of-order rejection with WATCH/MULTI
- 2026-02-21: Initial creation

TODO:
- None
"""

import json
import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import WatchError

from telemetry_engine.services.events import EventBus, RawValueCommitted

logger = logging.getLogger(__name__)

# Retries of the optimistic transaction before giving up on a hot field.
_MAX_WATCH_RETRIES = 10


@dataclass(frozen=True)
class LatestValue:
    """Newest known value of one logical path of one system."""

    value: float | str | None
    logical_path: str
    measurement_time: int
    received_time: int
    metric_unit: str

    def to_json(self) -> str:
        """Serialise to the JSON stored in the hash field."""
        return json.dumps(
            {
                "value": self.value,
                "logicalPath": self.logical_path,
                "measurementTimeMs": self.measurement_time,
                "receivedTimeMs": self.received_time,
                "metricUnit": self.metric_unit,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "LatestValue":
        """Parse a stored hash field value."""
        data = json.loads(raw)
        return cls(
            value=data.get("value"),
            logical_path=data["logicalPath"],
            measurement_time=int(data["measurementTimeMs"]),
            received_time=int(data["receivedTimeMs"]),
            metric_unit=data.get("metricUnit", ""),
        )


class LatestValueCache:
    """Read/write access to the per-system latest-value hashes.

    Args:
        client: Async Redis client.
        key_prefix: Namespace prepended to every key (may be empty).
        reject_out_of_order: Drop writes older than the cached entry.
        bus: Optional event bus notified after source point writes.
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "",
        reject_out_of_order: bool = True,
        bus: EventBus | None = None,
    ) -> None:
        self._redis = client
        self._prefix = key_prefix
        self._reject_out_of_order = reject_out_of_order
        self._bus = bus

    def key_for(self, system_id: int) -> str:
        """Return the hash key of a system."""
        return f"{self._prefix}latest:system:{system_id}"

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def put_latest(
        self,
        system_id: int,
        logical_path: str,
        value: float | str | None,
        measurement_time: int,
        received_time: int,
        metric_unit: str,
        point_index: int | None = None,
    ) -> bool:
        """Store the newest value of a logical path.

        Args:
            system_id: Owning system.
            logical_path: Hash field to write.
            value: Observed value.
            measurement_time: Measurement time in epoch milliseconds.
            received_time: Receipt time in epoch milliseconds.
            metric_unit: Unit of the value.
            point_index: Source point; when given, ``RawValueCommitted`` is
                published after the write.

        Returns:
            bool: False when the write was rejected as out of order.

        Raises:
            redis.RedisError: On any Redis failure.
        """
        entry = LatestValue(
            value=value,
            logical_path=logical_path,
            measurement_time=measurement_time,
            received_time=received_time,
            metric_unit=metric_unit,
        )
        written = await self._write(system_id, entry)
        if written and point_index is not None and self._bus is not None:
            await self._bus.publish(
                RawValueCommitted(
                    system_id=system_id,
                    point_index=point_index,
                    logical_path=logical_path,
                    value=value,
                    measurement_time=measurement_time,
                    received_time=received_time,
                    metric_unit=metric_unit,
                )
            )
        return written

    async def write_many(self, system_id: int, entries: list[LatestValue]) -> int:
        """Write several entries of one system without publishing events.

        Used by the composite fan-out so copies never trigger further
        fan-out.

        Returns:
            int: Number of entries written (rejected ones excluded).
        """
        written = 0
        for entry in entries:
            if await self._write(system_id, entry):
                written += 1
        return written

    async def _write(self, system_id: int, entry: LatestValue) -> bool:
        key = self.key_for(system_id)
        if not self._reject_out_of_order:
            await self._redis.hset(key, entry.logical_path, entry.to_json())
            return True

        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(_MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    current = await pipe.hget(key, entry.logical_path)
                    if current is not None:
                        cached = LatestValue.from_json(current)
                        if entry.measurement_time < cached.measurement_time:
                            await pipe.unwatch()
                            logger.debug(
                                "Rejected out-of-order latest value %s on system %d "
                                "(%d < %d)",
                                entry.logical_path,
                                system_id,
                                entry.measurement_time,
                                cached.measurement_time,
                            )
                            return False
                    pipe.multi()
                    pipe.hset(key, entry.logical_path, entry.to_json())
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Latest value %s changed concurrently, retrying", key)
                    continue
        raise WatchError(f"Could not update {key} after {_MAX_WATCH_RETRIES} attempts")

    # -----------------------------------------------------------------------
    # Reads and maintenance
    # -----------------------------------------------------------------------

    async def get_latest(self, system_id: int, logical_path: str) -> LatestValue | None:
        """Return the cached value of one logical path, or None."""
        raw = await self._redis.hget(self.key_for(system_id), logical_path)
        if raw is None:
            return None
        return LatestValue.from_json(raw)

    async def get_all_latest(self, system_id: int) -> dict[str, LatestValue]:
        """Return every cached value of a system keyed by logical path."""
        raw = await self._redis.hgetall(self.key_for(system_id))
        return {field: LatestValue.from_json(value) for field, value in raw.items()}

    async def clear(self, system_id: int) -> None:
        """Drop the cached values of one system."""
        await self._redis.delete(self.key_for(system_id))
        logger.info("Cleared latest values for system %d", system_id)

    async def clear_all(self) -> int:
        """Drop the cached values of every system.

        Scans for ``latest:system:*`` keys instead of assuming a single
        aggregate key.

        Returns:
            int: Number of keys deleted.
        """
        deleted = 0
        async for key in self._redis.scan_iter(match=f"{self._prefix}latest:system:*"):
            deleted += await self._redis.delete(key)
        logger.info("Cleared latest values for %d system(s)", deleted)
        return deleted
