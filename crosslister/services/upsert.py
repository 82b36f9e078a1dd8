from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def upsert(
    db: AsyncSession,
    model: type,
    *,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> None:
    """
    INSERT ... ON CONFLICT DO UPDATE on the natural key.

    A single statement, so concurrent writers for the same key resolve to
    last-write-wins instead of an IntegrityError.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"upsert not supported on dialect={dialect}")

    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={c: stmt.excluded[c] for c in update_columns},
    )
    await db.execute(stmt)


async def insert_ignore(
    db: AsyncSession,
    model: type,
    *,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True when a row was written."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"insert_ignore not supported on dialect={dialect}")

    result = await db.execute(stmt.on_conflict_do_nothing(index_elements=list(conflict_columns)))
    return bool(result.rowcount)
