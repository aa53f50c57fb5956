"""Tests for schema, metric and request models."""

from __future__ import annotations

import pytest

from slice_engine.models.errors import ConfigurationError
from slice_engine.models.metrics import Aggregation, AggregationFunction
from slice_engine.models.query import QueryRequest
from slice_engine.models.schema import Granularity, Relation, Schema, Source


class TestAggregation:
    def test_default_key_for_sum(self) -> None:
        assert Aggregation.make("orders", "total").key == "orders_total"

    def test_default_key_names_the_function(self) -> None:
        assert Aggregation.make("orders", "id", AggregationFunction.COUNT).key == "orders_id_count"

    def test_explicit_key(self) -> None:
        assert Aggregation.make("orders", "total", key="revenue").key == "revenue"


class TestRelation:
    def test_belongs_to_many_expands_through_pivot(self) -> None:
        relation = Relation(
            kind="belongs_to_many",
            target="tags",
            pivot="customer_tags",
            foreign_pivot_key="customer_id",
            related_pivot_key="tag_id",
        )
        edges = relation.edges("customers")
        assert [(e.from_source, e.from_column, e.to_source, e.to_column) for e in edges] == [
            ("customers", "id", "customer_tags", "customer_id"),
            ("customer_tags", "tag_id", "tags", "id"),
        ]

    def test_cross_join_carries_condition(self) -> None:
        relation = Relation(
            kind="cross_join", target="b", left_key="x", right_key="y", condition="b.y > 0"
        )
        (edge,) = relation.edges("a")
        assert edge.condition == "b.y > 0"

    def test_missing_keys(self) -> None:
        with pytest.raises(ValueError, match="missing keys: owner_key"):
            Relation(kind="belongs_to", target="b", foreign_key="b_id")


class TestSchema:
    def test_duplicate_source(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Schema([Source(name="a"), Source(name="a")])
        assert exc_info.value.codes == ["DUPLICATE_SOURCE"]

    def test_unknown_source(self, schema: Schema) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            schema.source("nope")
        assert exc_info.value.codes == ["UNKNOWN_SOURCE"]

    @pytest.mark.parametrize(
        ("reference", "code"),
        [("orders", "INVALID_REFERENCE"), ("orders.nope", "UNKNOWN_COLUMN"), ("x.total", "UNKNOWN_SOURCE")],
    )
    def test_resolve_errors(self, schema: Schema, reference: str, code: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            schema.aggregation(reference)
        assert exc_info.value.codes == [code]

    def test_source_without_declared_columns_accepts_any(self, schema: Schema) -> None:
        source, column = schema.resolve("customer_tags.anything")
        assert (source.name, column) == ("customer_tags", "anything")


class TestDimension:
    def test_alias(self, schema: Schema) -> None:
        assert schema.dimension("orders.status").alias == "orders_status"

    def test_plain_column_dimension(self, schema: Schema) -> None:
        dimension = schema.dimension("orders.customer_id")
        assert dimension.column == "customer_id"
        assert dimension.alias == "orders_customer_id"

    def test_time_dimension_defaults_to_day(self, schema: Schema) -> None:
        dimension = schema.dimension("orders.created_at")
        assert dimension.granularity == Granularity.DAY
        assert dimension.alias == "orders_created_at_day"

    def test_granularity_on_standard_dimension(self, schema: Schema) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            schema.dimension("orders.status", "month")
        assert exc_info.value.codes == ["INVALID_GRANULARITY"]

    def test_unknown_granularity(self, schema: Schema) -> None:
        with pytest.raises(ValueError):
            schema.dimension("orders.created_at", "fortnight")

    def test_unknown_dimension(self, schema: Schema) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            schema.dimension("orders.nope")
        assert exc_info.value.codes == ["UNKNOWN_DIMENSION"]

    def test_filters(self, schema: Schema) -> None:
        dimension = schema.dimension("orders.status", only=["US"], where=(">", "A"))
        assert dimension.filters.only == ["US"]
        assert dimension.filters.where.operator == ">"
        assert not dimension.filters.empty

    def test_invalid_where_operator(self, schema: Schema) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            schema.dimension("orders.status", where=("LIKE", "U%"))
        assert exc_info.value.codes == ["INVALID_FILTER"]


class TestQueryRequest:
    def test_sources_in_first_appearance_order(self, schema: Schema) -> None:
        request = QueryRequest(
            metrics=[
                schema.aggregation("order_items.price"),
                schema.computed("x", "order_items_price * 2", ["order_items_price"], source="customers"),
                schema.aggregation("orders.total"),
            ],
            dimensions=[schema.dimension("customers.country"), schema.dimension("orders.status")],
        )
        assert request.sources == ["order_items", "orders", "customers"]

    def test_duplicate_metric_key(self, schema: Schema) -> None:
        request = QueryRequest(metrics=[schema.aggregation("orders.total")] * 2)
        with pytest.raises(ConfigurationError) as exc_info:
            request.check()
        assert exc_info.value.codes == ["DUPLICATE_METRIC_KEY"]

    def test_metric_key_clashing_with_dimension_alias(self, schema: Schema) -> None:
        request = QueryRequest(
            metrics=[schema.aggregation("orders.total", key="orders_status")],
            dimensions=[schema.dimension("orders.status")],
        )
        with pytest.raises(ConfigurationError) as exc_info:
            request.check()
        assert exc_info.value.codes == ["DUPLICATE_ALIAS"]

    def test_needs_an_aggregation(self, schema: Schema) -> None:
        request = QueryRequest(metrics=[schema.computed("x", "1 + 1", [], source="orders")])
        with pytest.raises(ConfigurationError) as exc_info:
            request.check()
        assert exc_info.value.codes == ["NO_AGGREGATIONS"]

    def test_metrics_parse_from_plain_data(self) -> None:
        request = QueryRequest.model_validate(
            {
                "metrics": [
                    {"kind": "aggregation", "key": "orders_total", "source": "orders", "column": "total"},
                    {
                        "kind": "computed",
                        "key": "double",
                        "expression": "orders_total * 2",
                        "dependencies": ["orders_total"],
                        "source": "orders",
                    },
                ]
            }
        )
        assert [type(m).__name__ for m in request.metrics] == ["Aggregation", "Computed"]
