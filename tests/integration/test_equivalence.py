"""The in-process join must return exactly what the backend join returns."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator

import pytest

from slice_engine.backends.sqlite import SqliteBackend
from slice_engine.engine.pipeline import QueryEngine
from slice_engine.models.plan import JoinedBackendPlan, SoftwareJoinPlan
from slice_engine.models.query import QueryRequest
from slice_engine.models.schema import Schema
from slice_engine.settings import Settings
from tests.conftest import seed_database

RequestFactory = Callable[[Schema], QueryRequest]


def _status_totals(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("orders.total"), schema.aggregation("order_items.price")],
        dimensions=[schema.dimension("orders.status")],
    )


def _country_chain(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[
            schema.aggregation("customers.credit_limit"),
            schema.aggregation("orders.total"),
            schema.aggregation("order_items.price"),
        ],
        dimensions=[schema.dimension("customers.country")],
    )


def _tag_limits(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("customers.credit_limit")],
        dimensions=[schema.dimension("tags.label")],
    )


def _roas(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[
            schema.aggregation("orders.total"),
            schema.aggregation("ad_spend.spend"),
            schema.computed(
                "roas",
                "orders_total / NULLIF(ad_spend_spend, 0)",
                ["orders_total", "ad_spend_spend"],
                source="orders",
            ),
        ],
        dimensions=[schema.dimension("orders.order_date")],
    )


def _average_price(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[
            schema.aggregation("order_items.price", "avg"),
            schema.aggregation("order_items.quantity", "max"),
            schema.aggregation("orders.id", "count"),
        ],
        dimensions=[schema.dimension("orders.status")],
    )


def _filtered(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("orders.total"), schema.aggregation("order_items.price")],
        dimensions=[schema.dimension("orders.status", except_=["CA"])],
    )


def _mixed_type_where(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("orders.total"), schema.aggregation("order_items.price")],
        dimensions=[schema.dimension("orders.status", where=(">", 5))],
    )


def _no_dimensions(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("orders.total"), schema.aggregation("order_items.quantity")],
    )


def _two_dimensions(schema: Schema) -> QueryRequest:
    return QueryRequest(
        metrics=[schema.aggregation("order_items.price"), schema.aggregation("orders.total")],
        dimensions=[schema.dimension("orders.status"), schema.dimension("customers.country")],
    )


CASES: dict[str, RequestFactory] = {
    "status_totals": _status_totals,
    "country_chain": _country_chain,
    "tag_limits": _tag_limits,
    "roas": _roas,
    "average_price": _average_price,
    "filtered": _filtered,
    "mixed_type_where": _mixed_type_where,
    "no_dimensions": _no_dimensions,
    "two_dimensions": _two_dimensions,
}


class TestEquivalence:
    @pytest.mark.parametrize("name", list(CASES))
    def test_same_rows_on_both_paths(
        self, name: str, schema: Schema, native_engine: QueryEngine, software_engine: QueryEngine
    ) -> None:
        request = CASES[name](schema)
        native = native_engine.run(request)
        software = software_engine.run(request)

        assert isinstance(native.plan, JoinedBackendPlan)
        assert isinstance(software.plan, SoftwareJoinPlan)
        assert native.rows == software.rows
        assert native.columns == software.columns

    def test_fan_out_is_not_double_counted(
        self, schema: Schema, native_engine: QueryEngine, software_engine: QueryEngine
    ) -> None:
        expected = [{"orders_status": "US", "orders_total": 150, "order_items_price": 85}]
        assert native_engine.run(_status_totals(schema)).rows == expected
        assert software_engine.run(_status_totals(schema)).rows == expected

    def test_text_compares_above_numbers(
        self, schema: Schema, native_engine: QueryEngine, software_engine: QueryEngine
    ) -> None:
        expected = [{"orders_status": "US", "orders_total": 150, "order_items_price": 85}]
        assert native_engine.run(_mixed_type_where(schema)).rows == expected
        assert software_engine.run(_mixed_type_where(schema)).rows == expected

    def test_chain_through_intermediate_source(
        self, schema: Schema, software_engine: QueryEngine
    ) -> None:
        assert software_engine.run(_country_chain(schema)).rows == [
            {
                "customers_country": "DE",
                "customers_credit_limit": 1000,
                "orders_total": 150,
                "order_items_price": 85,
            }
        ]

    def test_pivot_relation(self, schema: Schema, native_engine: QueryEngine) -> None:
        assert native_engine.run(_tag_limits(schema)).rows == [
            {"tags_label": "newsletter", "customers_credit_limit": 1500},
            {"tags_label": "vip", "customers_credit_limit": 1000},
        ]

    def test_division_by_zero_is_null(self, schema: Schema, software_engine: QueryEngine) -> None:
        assert software_engine.run(_roas(schema)).rows == [
            {"orders_order_date": "2024-01-01", "orders_total": 100, "ad_spend_spend": 50, "roas": 2},
            {"orders_order_date": "2024-01-02", "orders_total": 250, "ad_spend_spend": 0, "roas": None},
        ]


class TestTwoOrderDataset:
    """Orders 1 (US, 100) and 2 (CA, 200); only order 1 has items (50 and 25)."""

    @pytest.fixture
    def engines(self, schema: Schema) -> Iterator[tuple[QueryEngine, QueryEngine]]:
        connection = sqlite3.connect(":memory:", check_same_thread=False)
        seed_database(
            connection,
            {
                "orders": (
                    ["id", "customer_id", "total", "status", "created_at", "order_date"],
                    [
                        (1, 10, 100, "US", "2024-01-01 00:00:00", "2024-01-01"),
                        (2, 10, 200, "CA", "2024-01-01 00:00:00", "2024-01-01"),
                    ],
                ),
                "order_items": (["id", "order_id", "price", "quantity"], [(1, 1, 50, 1), (2, 1, 25, 1)]),
            },
        )
        settings = Settings(fetch_timeout_seconds=5.0)
        native = QueryEngine(schema, {"default": SqliteBackend(connection)}, settings)
        software = QueryEngine(
            schema,
            {"default": SqliteBackend(connection, supports_joins=False, supports_staged_computation=False)},
            settings,
        )
        yield native, software
        connection.close()

    def test_unmatched_orders_are_left_out(self, schema: Schema, engines) -> None:
        native, software = engines
        expected = [{"orders_status": "US", "orders_total": 100, "order_items_price": 75}]
        assert native.run(_status_totals(schema)).rows == expected
        assert software.run(_status_totals(schema)).rows == expected
