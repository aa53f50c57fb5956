"""Shared test fixtures for slice-engine."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator

import pytest

from slice_engine.backends.base import Backend, BackendCapabilities, BackendQuery
from slice_engine.backends.sqlite import SqliteBackend
from slice_engine.engine.pipeline import QueryEngine
from slice_engine.models.query import Row
from slice_engine.models.schema import Schema
from slice_engine.parser.loader import SchemaLoader
from slice_engine.settings import Settings

SAMPLE_SCHEMA_YAML = """\
sources:
  orders:
    columns: [id, customer_id, total, status, created_at, order_date]
    relations:
      items:
        kind: has_many
        target: order_items
        localKey: id
        foreignKey: order_id
      customer:
        kind: belongs_to
        target: customers
        foreignKey: customer_id
        ownerKey: id
      spend:
        kind: cross_join
        target: ad_spend
        leftKey: order_date
        rightKey: day
    dimensions:
      status:
        column: status
      order_date:
        column: order_date
      created_at:
        column: created_at
        kind: time

  order_items:
    columns: [id, order_id, price, quantity]
    relations:
      order:
        kind: belongs_to
        target: orders
        foreignKey: order_id
        ownerKey: id

  customers:
    columns: [id, name, country, credit_limit]
    relations:
      orders:
        kind: has_many
        target: orders
        localKey: id
        foreignKey: customer_id
      tags:
        kind: belongs_to_many
        target: tags
        pivot: customer_tags
        foreignPivotKey: customer_id
        relatedPivotKey: tag_id
    dimensions:
      country:
        column: country

  tags:
    columns: [id, label]
    dimensions:
      label:
        column: label

  ad_spend:
    columns: [id, day, spend]

  shipments:
    connection: warehouse
    columns: [id, order_id, cost]
    relations:
      order:
        kind: belongs_to
        target: orders
        foreignKey: order_id
        ownerKey: id
"""

SAMPLE_DATA: dict[str, tuple[list[str], list[tuple]]] = {
    "orders": (
        ["id", "customer_id", "total", "status", "created_at", "order_date"],
        [
            (1, 10, 100, "US", "2024-01-01 10:15:00", "2024-01-01"),
            (2, 11, 200, "CA", "2024-01-02 09:00:00", "2024-01-02"),
            (3, 10, 50, "US", "2024-01-02 18:30:00", "2024-01-02"),
        ],
    ),
    "order_items": (
        ["id", "order_id", "price", "quantity"],
        [(1, 1, 50, 1), (2, 1, 25, 3), (3, 3, 10, 2)],
    ),
    "customers": (
        ["id", "name", "country", "credit_limit"],
        [(10, "Ada", "DE", 1000), (11, "Bo", "FR", 500)],
    ),
    "customer_tags": (["customer_id", "tag_id"], [(10, 1), (10, 2), (11, 2)]),
    "tags": (["id", "label"], [(1, "vip"), (2, "newsletter")]),
    "ad_spend": (["id", "day", "spend"], [(1, "2024-01-01", 50), (2, "2024-01-02", 0)]),
}


def seed_database(
    connection: sqlite3.Connection, tables: dict[str, tuple[list[str], list[tuple]]]
) -> None:
    for name, (columns, rows) in tables.items():
        connection.execute(f'CREATE TABLE "{name}" ({", ".join(columns)})')
        placeholders = ", ".join("?" for _ in columns)
        connection.executemany(f'INSERT INTO "{name}" VALUES ({placeholders})', rows)
    connection.commit()


class StaticBackend(Backend):
    """Serves canned rows per source name; records which sources were fetched."""

    def __init__(
        self,
        rows: dict[str, list[Row]],
        supports_joins: bool = False,
        supports_staged_computation: bool = False,
    ) -> None:
        self._rows = rows
        self._capabilities = BackendCapabilities(
            name="static",
            supports_joins=supports_joins,
            supports_staged_computation=supports_staged_computation,
        )
        self.calls: list[str] = []
        self._lock = threading.Lock()

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._capabilities

    def execute(self, query: BackendQuery, cancel_event: threading.Event | None = None) -> list[Row]:
        with self._lock:
            self.calls.append(query.name)
        return [dict(row) for row in self._rows.get(query.name, [])]


class SlowBackend(StaticBackend):
    """Blocks fetches of ``slow`` sources until cancelled and fails those in ``failing``."""

    def __init__(
        self,
        rows: dict[str, list[Row]],
        slow: tuple[str, ...] = (),
        failing: tuple[str, ...] = (),
        delay: float = 5.0,
    ) -> None:
        super().__init__(rows)
        self.slow = slow
        self.failing = failing
        self.delay = delay
        self.saw_cancel = threading.Event()

    def execute(self, query: BackendQuery, cancel_event: threading.Event | None = None) -> list[Row]:
        if query.name in self.failing:
            raise RuntimeError(f"{query.name} is down")
        if query.name in self.slow and cancel_event is not None:
            if cancel_event.wait(self.delay):
                self.saw_cancel.set()
                return []
        return super().execute(query, cancel_event)


@pytest.fixture
def schema() -> Schema:
    return SchemaLoader().load_string(SAMPLE_SCHEMA_YAML)


@pytest.fixture
def connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    seed_database(conn, SAMPLE_DATA)
    yield conn
    conn.close()


@pytest.fixture
def native_backend(connection: sqlite3.Connection) -> SqliteBackend:
    """Joins and CTE stages run inside sqlite."""
    return SqliteBackend(connection)


@pytest.fixture
def joinless_backend(connection: sqlite3.Connection) -> SqliteBackend:
    """Same database, but every join and computation happens in process."""
    return SqliteBackend(connection, supports_joins=False, supports_staged_computation=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(fetch_timeout_seconds=5.0, max_fetch_workers=4)


@pytest.fixture
def native_engine(schema: Schema, native_backend: SqliteBackend, settings: Settings) -> QueryEngine:
    return QueryEngine(schema, {"default": native_backend}, settings)


@pytest.fixture
def software_engine(
    schema: Schema, joinless_backend: SqliteBackend, settings: Settings
) -> QueryEngine:
    return QueryEngine(schema, {"default": joinless_backend}, settings)
