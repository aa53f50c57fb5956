"""Tests for greedy join-plan construction."""

from __future__ import annotations

from slice_engine.engine.graph import JoinGraphBuilder
from slice_engine.engine.paths import JoinPathFinder
from slice_engine.models.plan import JoinPlan, JoinSpecification
from slice_engine.models.schema import Relation, Schema, Source


def _builder(schema: Schema, symmetric: bool = False) -> JoinGraphBuilder:
    return JoinGraphBuilder(JoinPathFinder(schema, symmetric=symmetric))


class TestJoinGraphBuilder:
    def test_no_sources(self, schema: Schema) -> None:
        plan = _builder(schema).build([])
        assert plan.is_empty()
        assert plan.sources == []

    def test_single_source(self, schema: Schema) -> None:
        plan = _builder(schema).build([schema.source("orders")])
        assert plan.is_empty()
        assert plan.sources == ["orders"]

    def test_two_sources(self, schema: Schema) -> None:
        plan = _builder(schema).build([schema.source("orders"), schema.source("order_items")])
        assert [s.pair for s in plan] == [("orders", "order_items")]
        assert plan.sources == ["orders", "order_items"]

    def test_intermediate_sources_are_connected(self, schema: Schema) -> None:
        plan = _builder(schema).build([schema.source("order_items"), schema.source("customers")])
        assert [s.pair for s in plan] == [("order_items", "orders"), ("orders", "customers")]
        assert plan.sources == ["order_items", "orders", "customers"]

    def test_no_duplicate_pairs(self, schema: Schema) -> None:
        sources = [
            schema.source("customers"),
            schema.source("orders"),
            schema.source("order_items"),
            schema.source("tags"),
        ]
        plan = _builder(schema).build(sources)
        pairs = [s.pair for s in plan]
        assert len(pairs) == len(set(pairs))
        assert set(plan.sources) >= {"customers", "orders", "order_items", "tags", "customer_tags"}

    def test_reuses_connected_intermediate(self, schema: Schema) -> None:
        # customers -> orders -> order_items: orders is reached through the first path
        plan = _builder(schema).build(
            [schema.source("customers"), schema.source("order_items"), schema.source("orders")]
        )
        assert [s.pair for s in plan] == [("customers", "orders"), ("orders", "order_items")]

    def test_unreachable_source_is_left_out(self, schema: Schema) -> None:
        plan = _builder(schema).build([schema.source("orders"), schema.source("shipments")])
        assert plan.sources == ["orders"]
        assert not plan.connects("shipments")

    def test_first_connected_source_with_a_path_wins(self) -> None:
        def belongs_to(target: str) -> Relation:
            return Relation(kind="belongs_to", target=target, foreign_key=f"{target}_id", owner_key="id")

        schema = Schema(
            [
                Source(name="a", relations={"x": belongs_to("x"), "b": belongs_to("b")}),
                Source(name="b", relations={"c": belongs_to("c")}),
                Source(name="x", relations={"c": belongs_to("c")}),
                Source(name="c"),
            ]
        )
        plan = _builder(schema).build([schema.source("a"), schema.source("b"), schema.source("c")])
        # c comes from a's own shortest path (a -> x -> c) even though b -> c needs one edge less
        # in total; greedy, no backtracking
        assert [s.pair for s in plan] == [("a", "b"), ("a", "x"), ("x", "c")]


class TestJoinPlan:
    def test_add_skips_existing_pair(self) -> None:
        relation = Relation(kind="belongs_to", target="b", foreign_key="b_id", owner_key="id")
        plan = JoinPlan()
        first = JoinSpecification("a", "b", relation, "b_id", "id")
        again = JoinSpecification("a", "b", relation, "other", "id")
        assert plan.add(first) is True
        assert plan.add(again) is False
        assert len(plan) == 1
        assert plan.sources == ["a", "b"]

    def test_has_conditions(self) -> None:
        relation = Relation(
            kind="cross_join", target="b", left_key="x", right_key="y", condition="a.x > 0"
        )
        plan = JoinPlan()
        plan.add(JoinSpecification("a", "b", relation, "x", "y", condition=relation.condition))
        assert plan.has_conditions
