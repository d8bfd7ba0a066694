"""
Storage abstractions for encrypted columns.

This module provides:
- ColumnTarget: A table column holding secrets (injected by the caller)
- ColumnKind: Scalar secret column or JSON environment-variable list
- StoredRow: Row id and the column's current value
- FieldStore: Abstract protocol for column storage backends
- InMemoryFieldStore: asyncio-safe in-memory implementation for testing
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigError, StorageError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ColumnKind(Enum):
    """How a column's value is laid out."""

    SCALAR = "scalar"  # One secret string (JSON envelope once encrypted)
    ENV_VARS = "env_vars"  # JSON array of {name, value}

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ColumnTarget:
    """A column that holds encrypted (or to-be-encrypted) values."""

    table: str
    column: str
    field_name: Optional[str] = None
    id_column: str = "id"
    kind: ColumnKind = ColumnKind.SCALAR

    def __post_init__(self) -> None:
        for identifier in (self.table, self.column, self.id_column):
            if not _IDENTIFIER.match(identifier or ""):
                raise ConfigError(f"Invalid SQL identifier: {identifier!r}")

    @property
    def field(self) -> str:
        """Field name used for encryption bookkeeping (defaults to the column)."""
        return self.field_name or self.column

    @classmethod
    def parse(cls, text: str) -> ColumnTarget:
        """
        Parse ``table.column`` or ``table.column:env_vars``.

        Raises:
            ConfigError: If the target text is malformed
        """
        location, _, kind = text.partition(":")
        table, dot, column = location.partition(".")
        if not dot:
            raise ConfigError(f"Target must look like table.column[:env_vars], got {text!r}")
        try:
            column_kind = ColumnKind(kind) if kind else ColumnKind.SCALAR
        except ValueError:
            raise ConfigError(f"Unknown column kind {kind!r} in target {text!r}") from None
        return cls(table=table, column=column, kind=column_kind)

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass
class StoredRow:
    """A row id with the column's current (non-null) value."""

    row_id: Any
    value: Any


class FieldStore(ABC):
    """
    Abstract storage interface for encrypted columns.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def fetch_values(self, target: ColumnTarget) -> List[StoredRow]:
        """Get all rows whose target column is not null."""
        ...

    @abstractmethod
    async def update_value(self, target: ColumnTarget, row_id: Any, value: str) -> None:
        """Replace a row's column value with a serialized string."""
        ...


class InMemoryFieldStore(FieldStore):
    """
    In-memory column storage for testing and dry runs.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], Dict[Any, Any]] = {}
        self._lock = asyncio.Lock()

    def put(self, table: str, column: str, row_id: Any, value: Any) -> None:
        """Seed a value (synchronous, for test setup)."""
        self._rows.setdefault((table, column), {})[row_id] = value

    def get(self, table: str, column: str, row_id: Any) -> Any:
        """Read a value back (synchronous, for assertions)."""
        return self._rows.get((table, column), {}).get(row_id)

    async def fetch_values(self, target: ColumnTarget) -> List[StoredRow]:
        async with self._lock:
            column = self._rows.get((target.table, target.column), {})
            return [
                StoredRow(row_id=row_id, value=value)
                for row_id, value in column.items()
                if value is not None
            ]

    async def update_value(self, target: ColumnTarget, row_id: Any, value: str) -> None:
        async with self._lock:
            column = self._rows.get((target.table, target.column))
            if column is None or row_id not in column:
                raise StorageError(f"Row {row_id} not found in {target}")
            column[row_id] = value
