"""Incremental construction of the SELECT shapes the renderer emits.

A statement is opened on its source (table, CTE name, or subquery) and then
grows column by column. ``group`` selects and groups in one call, ``join``
without a predicate is a CROSS JOIN, and ``filter`` ignores ``None`` so
optional predicates need no branching at the call site.
"""

from __future__ import annotations

from typing import Self

from slice_engine.ast.nodes import (
    CTE,
    AliasedExpr,
    BinaryOp,
    ColumnRef,
    Expr,
    From,
    FunctionCall,
    Join,
    JoinType,
    Literal,
    OrderByItem,
    Select,
    Star,
)


class QueryBuilder:
    def __init__(
        self,
        source: str | Select | None = None,
        alias: str | None = None,
        distinct: bool = False,
    ) -> None:
        self._from = None if source is None else From(source=source, alias=alias)
        self._distinct = distinct
        self._columns: list[Expr] = []
        self._joins: list[Join] = []
        self._conditions: list[Expr] = []
        self._groups: list[Expr] = []
        self._order: list[OrderByItem] = []
        self._ctes: list[CTE] = []

    def cte(self, name: str, query: Select) -> Self:
        self._ctes.append(CTE(name=name, query=query))
        return self

    def source(self, source: str | Select, alias: str | None = None) -> Self:
        self._from = From(source=source, alias=alias)
        return self

    def column(self, expr: Expr, alias: str | None = None) -> Self:
        self._columns.append(expr if alias is None else AliasedExpr(expr=expr, alias=alias))
        return self

    def columns(self, *exprs: Expr) -> Self:
        self._columns.extend(exprs)
        return self

    def all_columns(self) -> Self:
        return self.columns(Star())

    def group(self, expr: Expr, alias: str | None = None) -> Self:
        """Select ``expr`` and group by it."""
        self._groups.append(expr)
        return self.column(expr, alias)

    def join(self, table: str, on: Expr | None = None) -> Self:
        join_type = JoinType.CROSS if on is None else JoinType.INNER
        self._joins.append(Join(join_type=join_type, source=table, on=on))
        return self

    def filter(self, *conditions: Expr | None) -> Self:
        self._conditions.extend(c for c in conditions if c is not None)
        return self

    def order(self, *exprs: Expr) -> Self:
        self._order.extend(OrderByItem(expr=e) for e in exprs)
        return self

    def build(self) -> Select:
        return Select(
            columns=tuple(self._columns),
            from_=self._from,
            joins=tuple(self._joins),
            where=and_(*self._conditions) if self._conditions else None,
            group_by=tuple(self._groups),
            order_by=tuple(self._order),
            distinct=self._distinct,
            ctes=tuple(self._ctes),
        )


def col(name: str, table: str | None = None) -> ColumnRef:
    return ColumnRef(name=name, table=table)


def func(name: str, *args: Expr) -> FunctionCall:
    return FunctionCall(name=name, args=tuple(args))


def lit(value: str | int | float | bool | None) -> Literal:
    return Literal(value=value)


def eq(left: Expr, right: Expr) -> BinaryOp:
    return BinaryOp(left=left, op="=", right=right)


def and_(*conditions: Expr) -> Expr:
    """Left-nested AND of ``conditions``; TRUE when there are none."""
    if not conditions:
        return Literal(value=True)
    result = conditions[0]
    for condition in conditions[1:]:
        result = BinaryOp(left=result, op="AND", right=condition)
    return result
