"""Data store protocol definition.

Defines the ``DataStore`` Protocol the backup engine runs against.  This is
the only surface through which the engine touches the relational store --
it never issues ad-hoc queries.  All methods are ``async def``.

Usage:
    from db_backup.adapters.base import DataStore

    async def dump(store: DataStore) -> None:
        async with store.consistent_read():
            for table in await store.list_tables():
                rows = await store.read_rows(table)
        await store.close()
"""

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

from db_backup.backup.snapshot import Statement


class DataStore(Protocol):
    """Relational store interface that all adapters must implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def list_tables(self) -> list[str]:
        """Return the names of all user tables.

        Example:
            tables = await store.list_tables()
            # ['customers', 'orders', 'products']
        """
        ...

    async def read_rows(self, table: str) -> list[dict[str, Any]]:
        """Read every row of ``table``.

        Inside ``consistent_read()`` all reads observe the same point in
        time.

        Returns:
            List of dicts, one per row, keyed by column name.
        """
        ...

    async def count_rows(self, table: str) -> int:
        """Return the number of rows currently in ``table``."""
        ...

    async def execute_in_transaction(
        self,
        table: str,
        statements: Sequence[Statement],
    ) -> None:
        """Apply ``statements`` to ``table`` in a single transaction.

        Statements are ``ClearTable`` (delete every row) and
        ``RowStatement`` (insert one row), applied in order.  The
        transaction is opened and closed inside this call.

        Raises:
            Exception: If any statement fails; the table is left exactly as
                it was before the call.

        Example:
            await store.execute_in_transaction(
                "orders",
                [ClearTable("orders"), RowStatement("orders", ["id"], [1])],
            )
        """
        ...

    def consistent_read(self) -> AbstractAsyncContextManager[None]:
        """Scope in which reads share one point-in-time view.

        Example:
            async with store.consistent_read():
                a = await store.read_rows("customers")
                b = await store.read_rows("orders")
        """
        ...

    async def close(self) -> None:
        """Release connections and other resources."""
        ...
