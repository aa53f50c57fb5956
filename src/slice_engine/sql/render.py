"""Plans → SQL AST.

Multi-source plans render the same shape the software join computes in
process: each source is aggregated on its own, the legs are joined, and each
aggregation is re-aggregated per output group over the distinct rows of its
own leg. Both paths therefore agree even when a one-to-many join repeats rows.
"""

from __future__ import annotations

from typing import Any

from slice_engine.ast.builder import QueryBuilder, and_, col, eq, func, lit
from slice_engine.ast.nodes import (
    BinaryOp,
    Cast,
    Expr,
    InList,
    IsNull,
    RawSQL,
    Select,
)
from slice_engine.ast.visitor import ASTVisitor
from slice_engine.engine.formula import parse_formula
from slice_engine.grammar.base import Grammar
from slice_engine.models.metrics import Aggregation, AggregationFunction
from slice_engine.models.plan import (
    JoinedBackendPlan,
    SingleSourcePlan,
    SourceQuery,
    StagedBackendPlan,
    join_alias,
    partial_aliases,
)
from slice_engine.models.schema import Dimension, Source
from slice_engine.sql.compiler import SqlCompiler

_SQL_OPERATORS = {"==": "=", "!=": "<>"}
_FLOAT = "REAL"


class _FormulaToSql(ASTVisitor):
    """Rewrites a formula so division is never integer division."""

    def visit_binaryop(self, node: BinaryOp) -> Any:
        left, right = self.visit(node.left), self.visit(node.right)
        if node.op == "/":
            left = Cast(expr=left, type_name=_FLOAT)
        return BinaryOp(left=left, op=node.op, right=right)


def filter_condition(dimension: Dimension, expr: Expr) -> Expr | None:
    """WHERE predicate for a dimension's filters, or None when it has none."""
    filters = dimension.filters
    conditions: list[Expr] = []
    if filters.only is not None:
        conditions.append(InList(expr=expr, values=tuple(lit(v) for v in filters.only)))
    if filters.except_ is not None:
        conditions.append(
            InList(expr=expr, values=tuple(lit(v) for v in filters.except_), negated=True)
        )
    if filters.where is not None:
        op = _SQL_OPERATORS.get(filters.where.operator, filters.where.operator)
        conditions.append(BinaryOp(left=expr, op=op, right=lit(filters.where.value)))
    if not conditions:
        return None
    return and_(*conditions)


class SqlRenderer:
    """Builds backend SQL for every plan a backend can execute."""

    def __init__(self, grammar: Grammar, pretty: bool = False) -> None:
        self.grammar = grammar
        self.compiler = SqlCompiler(grammar, pretty=pretty)

    def render(self, query: Any) -> str:
        match query:
            case SourceQuery():
                ast = self.source_select(query)
            case SingleSourcePlan():
                ast = self.source_select(query.query)
            case StagedBackendPlan():
                ast = self.staged_select(query)
            case JoinedBackendPlan():
                ast = self.joined_select(query)
            case _:
                raise TypeError(f"Cannot render {type(query).__name__} as SQL")
        return self.compiler.compile(ast)

    # -- single source -----------------------------------------------------------

    def dimension_expr(self, source: Source, dimension: Dimension) -> Expr:
        column = col(dimension.column, table=source.name)
        if dimension.is_time and dimension.granularity is not None:
            return RawSQL(
                self.grammar.format_time_bucket(
                    self.compiler.compile_expr(column),
                    dimension.granularity,
                    dimension.precision,
                )
            )
        return column

    def _aggregate_columns(self, query: SourceQuery, metric: Aggregation) -> list[tuple[Expr, str]]:
        column = col(metric.column, table=query.source.name)
        if query.split_averages and metric.function == AggregationFunction.AVG:
            sum_alias, count_alias = partial_aliases(metric)
            return [(func("SUM", column), sum_alias), (func("COUNT", column), count_alias)]
        return [(func(metric.function.value.upper(), column), metric.key)]

    def source_select(self, query: SourceQuery, ordered: bool | None = None) -> Select:
        source = query.source
        builder = QueryBuilder(self.grammar.quote_identifier(source.table_name), alias=source.name)

        dimension_exprs: list[Expr] = []
        for dimension in query.dimensions:
            expr = self.dimension_expr(source, dimension)
            dimension_exprs.append(expr)
            builder.group(expr, dimension.alias)

        for column in query.join_columns:
            builder.group(col(column, table=source.name), join_alias(source.name, column))

        for metric in query.aggregations:
            for expr, alias in self._aggregate_columns(query, metric):
                builder.column(expr, alias)

        for dimension in query.filtered_dimensions:
            builder.filter(filter_condition(dimension, self.dimension_expr(source, dimension)))

        if ordered is None:
            ordered = query.ordered
        if ordered:
            builder.order(*dimension_exprs)

        return builder.build()

    # -- staged ------------------------------------------------------------------

    def staged_select(self, plan: StagedBackendPlan) -> Select:
        quote = self.grammar.quote_identifier
        builder = QueryBuilder().cte("base", self.source_select(plan.query, ordered=False))
        previous = "base"
        for level in plan.stages:
            stage = QueryBuilder(quote(previous)).all_columns()
            for metric in level.metrics:
                stage.column(_FormulaToSql().visit(parse_formula(metric.expression)), metric.key)
            previous = f"stage_{level.index + 1}"
            builder.cte(previous, stage.build())

        builder.source(quote(previous)).all_columns()
        builder.order(*(col(d.alias) for d in plan.query.dimensions))
        return builder.build()

    # -- joined ------------------------------------------------------------------

    def joined_select(self, plan: JoinedBackendPlan) -> Select:
        quote = self.grammar.quote_identifier
        builder = QueryBuilder()

        for name, leg in plan.legs.items():
            builder.cte(f"leg_{name}", self.source_select(leg, ordered=False))

        joined = QueryBuilder(quote(f"leg_{plan.primary}")).all_columns()
        for step in plan.join_sequence():
            condition = eq(col(step.left_column), col(step.right_column))
            if step.condition:
                condition = and_(condition, RawSQL(step.condition))
            if step.source is None:
                joined.filter(condition)
            else:
                joined.join(quote(f"leg_{step.source}"), on=condition)
        for dimension in plan.filters:
            joined.filter(filter_condition(dimension, col(dimension.alias)))
        builder.cte("joined", joined.build())

        dimension_aliases = plan.dimension_order
        owners: list[str] = []
        for metric in plan.aggregations:
            if metric.source not in owners:
                owners.append(metric.source)

        for owner in owners:
            builder.cte(f"agg_{owner}", self._regroup(plan, owner))

        first = f"agg_{owners[0]}"
        builder.source(quote(first))
        for alias in dimension_aliases:
            builder.column(col(alias, table=first), alias)
        for owner in owners[1:]:
            table = f"agg_{owner}"
            matches = [
                self._null_safe_eq(col(a, table=first), col(a, table=table))
                for a in dimension_aliases
            ]
            builder.join(quote(table), on=and_(*matches) if matches else None)
        for metric in plan.aggregations:
            builder.column(col(metric.key, table=f"agg_{metric.source}"), metric.key)
        if not dimension_aliases:
            # an aggregate without GROUP BY returns one row even when nothing joined
            builder.filter(RawSQL(f"EXISTS (SELECT 1 FROM {quote('joined')})"))
        builder.order(*(col(alias, table=first) for alias in dimension_aliases))
        return builder.build()

    def _regroup(self, plan: JoinedBackendPlan, owner: str) -> Select:
        """Re-aggregate one source's partials over its distinct leg rows per dimension group."""
        leg = plan.legs[owner]
        metrics = [m for m in plan.aggregations if m.source == owner]

        distinct_columns: list[str] = []
        for alias in [*plan.dimension_order, *leg.group_aliases, *leg.value_aliases]:
            if alias not in distinct_columns:
                distinct_columns.append(alias)
        rows = (
            QueryBuilder(self.grammar.quote_identifier("joined"), distinct=True)
            .columns(*(col(c) for c in distinct_columns))
            .build()
        )

        builder = QueryBuilder(rows, alias="leg_rows")
        for alias in plan.dimension_order:
            builder.group(col(alias))
        for metric in metrics:
            builder.column(self._reaggregate(leg, metric), metric.key)
        return builder.build()

    def _reaggregate(self, leg: SourceQuery, metric: Aggregation) -> Expr:
        match metric.function:
            case AggregationFunction.AVG if leg.split_averages:
                sum_alias, count_alias = partial_aliases(metric)
                return BinaryOp(
                    left=Cast(expr=func("SUM", col(sum_alias)), type_name=_FLOAT),
                    op="/",
                    right=func("NULLIF", func("SUM", col(count_alias)), lit(0)),
                )
            case AggregationFunction.MIN:
                return func("MIN", col(metric.key))
            case AggregationFunction.MAX:
                return func("MAX", col(metric.key))
            case AggregationFunction.AVG:
                return func("AVG", col(metric.key))
        return func("SUM", col(metric.key))

    @staticmethod
    def _null_safe_eq(left: Expr, right: Expr) -> Expr:
        return BinaryOp(
            left=eq(left, right),
            op="OR",
            right=BinaryOp(left=IsNull(expr=left), op="AND", right=IsNull(expr=right)),
        )
