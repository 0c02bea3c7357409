"""
Read access to systems.

Systems are owned by an external system manager; the engine only looks
them up to resolve identifiers, day boundaries and composite status.

CHANGELOG:
- 2026-02-23: Initial creation
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import System


async def get_system(db: AsyncSession, system_id: int) -> System | None:
    """Return a system by id, or None when it does not exist."""
    return await db.get(System, system_id)


async def get_system_by_identifier(db: AsyncSession, identifier: str) -> System | None:
    """Return a system by short name or numeric id string."""
    if identifier.isdigit():
        system = await db.get(System, int(identifier))
        if system is not None:
            return system
    result = await db.execute(select(System).where(System.short_name == identifier))
    return result.scalar_one_or_none()


async def list_systems(db: AsyncSession) -> list[System]:
    """Return every system ordered by id."""
    result = await db.execute(select(System).order_by(System.id))
    return list(result.scalars().all())
