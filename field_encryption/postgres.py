"""
PostgreSQL-backed column storage.

This module provides:
- PostgresFieldStore: asyncpg implementation of FieldStore
- create_pool: Connection pool factory for the command line tools

Values are read as text (``column::text``) so the same code handles text and
jsonb columns. Environment-variable columns are written back with a
``::jsonb`` cast; scalar columns are written as text.
"""

from __future__ import annotations

from typing import Any, List

import asyncpg

from .errors import StorageError
from .storage import ColumnKind, ColumnTarget, FieldStore, StoredRow


def _quote(identifier: str) -> str:
    # ColumnTarget has already validated the identifier
    return f'"{identifier}"'


class PostgresFieldStore(FieldStore):
    """
    PostgreSQL storage backend for encrypted columns.

    The surrounding application owns the schema; this store only reads and
    rewrites the columns it is pointed at.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def fetch_values(self, target: ColumnTarget) -> List[StoredRow]:
        """
        Get all rows whose column is not null.

        Args:
            target: Table/column to read

        Returns:
            List of StoredRow ordered by row id
        """
        id_col = _quote(target.id_column)
        col = _quote(target.column)
        query = (
            f"SELECT {id_col} AS row_id, {col}::text AS value "
            f"FROM {_quote(target.table)} WHERE {col} IS NOT NULL ORDER BY {id_col}"
        )
        try:
            rows = await self._pool.fetch(query)
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(f"Failed to read {target}: {e}") from e
        return [StoredRow(row_id=row["row_id"], value=row["value"]) for row in rows]

    async def update_value(self, target: ColumnTarget, row_id: Any, value: str) -> None:
        """
        Replace a row's column value.

        Args:
            target: Table/column to write
            row_id: Primary key value
            value: Serialized value (JSON text)
        """
        cast = "::jsonb" if target.kind is ColumnKind.ENV_VARS else ""
        query = (
            f"UPDATE {_quote(target.table)} SET {_quote(target.column)} = $1{cast} "
            f"WHERE {_quote(target.id_column)} = $2"
        )
        try:
            status = await self._pool.execute(query, value, row_id)
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(f"Failed to update {target} row {row_id}: {e}") from e
        if status.endswith(" 0"):
            raise StorageError(f"Row {row_id} not found in {target}")


async def create_pool(database_url: str) -> asyncpg.Pool:
    """
    Create an asyncpg connection pool.

    Raises:
        StorageError: If the pool cannot be created
    """
    try:
        pool = await asyncpg.create_pool(database_url)
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ValueError) as e:
        raise StorageError(f"Failed to connect to database: {e}") from e
    if pool is None:
        raise StorageError("Failed to create connection pool")
    return pool
