"""In-memory data store.

Provides ``InMemoryStore``, a dict-backed implementation of the
``DataStore`` protocol for tests and local experiments.

Tables may declare their columns and unique columns; inserts that violate
either fail like a constraint violation would in a real database.  Every
``execute_in_transaction`` call works on a copy of the table and only swaps
it in when all statements succeeded.

Usage:
    from db_backup.adapters.memory import InMemoryStore

    store = InMemoryStore()
    store.create_table("customers", columns=["id", "email"], unique=["email"])
    store.insert("customers", {"id": 1, "email": "ada@example.com"})
"""

import asyncio
import copy
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from db_backup.backup.snapshot import ClearTable, RowStatement, Statement


class IntegrityViolation(Exception):
    """Raised when an insert violates a declared column or unique constraint."""

    pass


@dataclass
class InMemoryTable:
    """Rows plus the constraints declared for a table."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    columns: list[str] | None = None
    unique: list[str] = field(default_factory=list)

    def check(self, row: dict[str, Any], existing: list[dict[str, Any]]) -> None:
        if self.columns is not None:
            unknown = set(row) - set(self.columns)
            if unknown:
                raise IntegrityViolation(
                    f"Unknown column(s): {', '.join(sorted(unknown))}"
                )
        for col in self.unique:
            value = row.get(col)
            if value is not None and any(r.get(col) == value for r in existing):
                raise IntegrityViolation(f"Duplicate value for unique column {col}: {value!r}")


class InMemoryStore:
    """Dict-backed ``DataStore`` with per-table transactional writes."""

    def __init__(self) -> None:
        self._tables: dict[str, InMemoryTable] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Setup helpers (synchronous, not part of the protocol)
    # ------------------------------------------------------------------

    def create_table(
        self,
        name: str,
        columns: list[str] | None = None,
        unique: list[str] | None = None,
    ) -> None:
        """Create an empty table, optionally with declared constraints."""
        if name in self._tables:
            raise ValueError(f"Table already exists: {name}")
        self._tables[name] = InMemoryTable(columns=columns, unique=unique or [])

    def drop_table(self, name: str) -> None:
        del self._tables[name]

    def insert(self, table: str, row: dict[str, Any]) -> None:
        """Insert one row, enforcing declared constraints."""
        t = self._table(table)
        t.check(row, t.rows)
        t.rows.append(dict(row))

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Deep copy of a table's rows in insertion order."""
        return copy.deepcopy(self._table(table).rows)

    def set_rows(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Replace a table's rows without constraint checks."""
        self._table(table).rows = copy.deepcopy(rows)

    def _table(self, name: str) -> InMemoryTable:
        try:
            return self._tables[name]
        except KeyError:
            raise KeyError(f"No such table: {name}") from None

    # ------------------------------------------------------------------
    # DataStore protocol
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        return sorted(self._tables)

    async def read_rows(self, table: str) -> list[dict[str, Any]]:
        return self.rows(table)

    async def count_rows(self, table: str) -> int:
        return len(self._table(table).rows)

    async def execute_in_transaction(
        self,
        table: str,
        statements: Sequence[Statement],
    ) -> None:
        async with self._lock:
            target = self._table(table)
            working: list[dict[str, Any]] = copy.deepcopy(target.rows)
            for stmt in statements:
                if stmt.table != table:
                    raise ValueError(
                        f"Statement for '{stmt.table}' in transaction for '{table}'"
                    )
                if isinstance(stmt, ClearTable):
                    working = []
                elif isinstance(stmt, RowStatement):
                    row = copy.deepcopy(stmt.as_row())
                    target.check(row, working)
                    working.append(row)
                else:
                    raise TypeError(f"Unsupported statement: {stmt!r}")
            # Commit
            target.rows = working

    @asynccontextmanager
    async def consistent_read(self) -> AsyncIterator[None]:
        # Transactions wait until every read in the scope is done
        async with self._lock:
            yield

    async def close(self) -> None:
        return None
