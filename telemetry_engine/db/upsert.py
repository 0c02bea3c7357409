"""
Dialect-aware INSERT ... ON CONFLICT.

PostgreSQL and SQLite both support upserts keyed by a unique index but
expose them through dialect-specific ``insert`` constructs. ``upsert``
picks the right one from the session's bind so writers never fall back to
read-modify-write.

CHANGELOG:
- 2026-03-06: insert_missing (ON CONFLICT DO NOTHING on any unique key)
- 2026-02-22: Initial creation
"""

from collections.abc import Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_CHUNK_SIZE = 500


def _insert_for(db: AsyncSession, model):
    """Return the dialect-specific ``insert`` construct for ``model``."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert is not supported for dialect '{dialect}'")


async def upsert(
    db: AsyncSession,
    model,
    rows: Sequence[dict],
    index_elements: Sequence[str],
    update_columns: Sequence[str],
) -> int:
    """Insert ``rows`` into ``model``, updating ``update_columns`` on conflict.

    Args:
        db: Async SQLAlchemy session. The caller owns the transaction.
        model: ORM class to write to.
        rows: Column dicts, all with the same keys.
        index_elements: Columns of the unique key used as conflict target.
        update_columns: Columns overwritten from the incoming row.

    Returns:
        int: Number of rows submitted.
    """
    rows = list(rows)
    # Keep each statement under the bound-parameter limits of both drivers.
    for start in range(0, len(rows), _CHUNK_SIZE):
        stmt = _insert_for(db, model).values(rows[start : start + _CHUNK_SIZE])
        stmt = stmt.on_conflict_do_update(
            index_elements=list(index_elements),
            set_={col: stmt.excluded[col] for col in update_columns},
        )
        await db.execute(stmt)
    return len(rows)


async def insert_missing(db: AsyncSession, model, rows: Sequence[dict]) -> int:
    """Insert ``rows`` into ``model``, skipping rows that hit any unique key.

    Args:
        db: Async SQLAlchemy session. The caller owns the transaction.
        model: ORM class to write to.
        rows: Column dicts, all with the same keys.

    Returns:
        int: Number of rows actually inserted.
    """
    rows = list(rows)
    inserted = 0
    for start in range(0, len(rows), _CHUNK_SIZE):
        stmt = _insert_for(db, model).values(rows[start : start + _CHUNK_SIZE])
        result = await db.execute(stmt.on_conflict_do_nothing())
        inserted += max(result.rowcount, 0)
    return inserted
