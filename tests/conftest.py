"""Shared fixtures: a seeded in-memory store, a catalog in tmp_path, and a
deterministic identity source."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from db_backup.adapters.memory import InMemoryStore
from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import SnapshotWriter


class FixedIdentity:
    """Sequential ids and a clock that advances one second per id."""

    def __init__(self, prefix: str = "backup") -> None:
        self.prefix = prefix
        self.counter = 0
        self.start = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)

    def new_id(self) -> str:
        self.counter += 1
        return f"{self.prefix}_{self.counter:04d}"

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.counter)


class SpyStore:
    """Wraps a store and records every table it is asked about."""

    def __init__(self, inner: InMemoryStore) -> None:
        self.inner = inner
        self.reads: list[str] = []
        self.writes: list[str] = []
        self.counts: list[str] = []

    async def list_tables(self):
        return await self.inner.list_tables()

    async def read_rows(self, table):
        self.reads.append(table)
        return await self.inner.read_rows(table)

    async def count_rows(self, table):
        self.counts.append(table)
        return await self.inner.count_rows(table)

    async def execute_in_transaction(self, table, statements):
        self.writes.append(table)
        await self.inner.execute_in_transaction(table, statements)

    def consistent_read(self):
        return self.inner.consistent_read()

    async def close(self):
        await self.inner.close()

    def touched(self) -> set[str]:
        return set(self.reads) | set(self.writes) | set(self.counts)


def seed_store(store: InMemoryStore, customers: int = 10, orders: int = 5, products: int = 8) -> None:
    """Create customers/orders/products with the given row counts."""
    store.create_table("customers", columns=["id", "email", "name"], unique=["email"])
    store.create_table("orders", columns=["id", "customer_id", "total", "placed_at"])
    store.create_table("products", columns=["id", "sku", "price", "attributes"], unique=["sku"])
    for i in range(1, customers + 1):
        store.insert("customers", {"id": i, "email": f"c{i}@example.com", "name": f"Customer {i}"})
    for i in range(1, orders + 1):
        store.insert(
            "orders",
            {
                "id": i,
                "customer_id": (i % max(customers, 1)) + 1,
                "total": Decimal(f"{i * 10}.99"),
                "placed_at": datetime(2026, 1, i, 12, 0, tzinfo=timezone.utc),
            },
        )
    for i in range(1, products + 1):
        store.insert(
            "products",
            {
                "id": i,
                "sku": f"SKU-{i:03d}",
                "price": Decimal(f"{i}.50"),
                "attributes": {"color": "red", "sizes": ["S", "M"]},
            },
        )


@pytest.fixture
def identity() -> FixedIdentity:
    return FixedIdentity()


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    seed_store(s)
    return s


@pytest.fixture
def catalog(tmp_path) -> BackupCatalog:
    return BackupCatalog(tmp_path / "backups")


@pytest.fixture
def verifier(catalog) -> IntegrityVerifier:
    return IntegrityVerifier(catalog)


@pytest.fixture
def writer(store, catalog, identity) -> SnapshotWriter:
    return SnapshotWriter(store, catalog, identity)
