"""
FastAPI dependency injection providers.

Provides the engine services stored on ``app.state`` and per-request
database sessions for use with FastAPI's Depends() mechanism.

CHANGELOG:
- 2026-02-27: System path parameter accepts the short name
- 2026-02-26: Sessions come from the services' session factory
- 2026-02-20: Initial creation
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import System
from telemetry_engine.services.container import Services
from telemetry_engine.services.systems import get_system_by_identifier


def get_services(request: Request) -> Services:
    """Return the services built by the application lifespan."""
    return request.app.state.services


async def get_db(
    services: Annotated[Services, Depends(get_services)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session.

    Yields:
        AsyncSession: An async SQLAlchemy session, closed after the request.
    """
    async with services.session_factory() as session:
        yield session


# Type aliases for route handlers:
#   async def my_route(db: DbSession, services: EngineServices): ...
DbSession = Annotated[AsyncSession, Depends(get_db)]
EngineServices = Annotated[Services, Depends(get_services)]


async def require_system(system_id: str, db: DbSession) -> System:
    """Resolve the ``system_id`` path parameter.

    Accepts the numeric id or the system's short name, i.e. the same
    identifier that prefixes its series ids.

    Raises:
        HTTPException: 404 if the system does not exist.
    """
    system = await get_system_by_identifier(db, system_id)
    if system is None:
        raise HTTPException(status_code=404, detail=f"System {system_id} not found.")
    return system


SystemParam = Annotated[System, Depends(require_system)]
