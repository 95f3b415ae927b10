"""Dialect-aware INSERT ... ON CONFLICT helpers (PostgreSQL and SQLite)."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from stride.db.base import Base


def dialect_insert(db: AsyncSession, model: type[Base]) -> Any:
    """Return an INSERT construct supporting ``on_conflict_*`` for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    msg = f"Unsupported dialect for upserts: {dialect}"
    raise RuntimeError(msg)


async def insert_ignore(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    index_elements: list[str],
) -> bool:
    """Insert a row unless it conflicts on ``index_elements``.

    Returns True only if this call created the row.
    """
    stmt = dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    result = await db.execute(stmt)
    return bool(result.rowcount)
