"""Dialect-aware statements the ledger relies on."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.dml import Insert

from billing_engine.db.base import Base


def dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


def insert_if_absent(session: AsyncSession, model: type[Base], values: dict[str, Any]) -> Insert:
    """Build an INSERT that silently skips rows violating a unique constraint.

    The resulting ``rowcount`` is 1 when the row was written and 0 when an
    existing row already held the key.
    """

    table = model.__table__
    name = dialect_name(session)
    if name in {"mysql", "mariadb"}:
        return mysql.insert(table).values(**values).prefix_with("IGNORE")
    if name == "postgresql":
        return postgresql.insert(table).values(**values).on_conflict_do_nothing()
    if name == "sqlite":
        return sqlite.insert(table).values(**values).on_conflict_do_nothing()
    raise NotImplementedError(f"insert_if_absent is not supported for dialect {name!r}")


__all__ = ["dialect_name", "insert_if_absent"]
