"""Immutable expression and SQL AST nodes.

Computed-metric formulas parse into the expression nodes; backend queries are
assembled from the statement nodes and rendered by ``SqlCompiler``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class JoinType(StrEnum):
    INNER = "INNER"
    CROSS = "CROSS"


@dataclass(frozen=True)
class Literal:
    """A literal value: number, string, boolean, or NULL."""

    value: str | int | float | bool | None

    @classmethod
    def number(cls, v: int | float) -> Literal:
        return cls(value=v)

    @classmethod
    def null(cls) -> Literal:
        return cls(value=None)


@dataclass(frozen=True)
class Star:
    """SELECT * or table.*"""

    table: str | None = None


@dataclass(frozen=True)
class ColumnRef:
    """Reference to a column or row alias, optionally qualified by table/alias."""

    name: str
    table: str | None = None


@dataclass(frozen=True)
class AliasedExpr:
    expr: Expr
    alias: str


@dataclass(frozen=True)
class FunctionCall:
    """Function call, e.g. SUM(col), NULLIF(a, 0)."""

    name: str
    args: tuple[Expr, ...] = ()


@dataclass(frozen=True)
class BinaryOp:
    left: Expr
    op: str  # + - * / = <> < <= > >= AND OR IS
    right: Expr


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Expr


@dataclass(frozen=True)
class IsNull:
    expr: Expr
    negated: bool = False


@dataclass(frozen=True)
class InList:
    expr: Expr
    values: tuple[Expr, ...] = ()
    negated: bool = False


@dataclass(frozen=True)
class Cast:
    expr: Expr
    type_name: str


@dataclass(frozen=True)
class RawSQL:
    """Dialect-specific fragment produced by a grammar (time buckets, join predicates)."""

    sql: str


Expr = (
    Literal
    | Star
    | ColumnRef
    | AliasedExpr
    | FunctionCall
    | BinaryOp
    | UnaryOp
    | IsNull
    | InList
    | Cast
    | RawSQL
)


@dataclass(frozen=True)
class From:
    """FROM clause: a table name or subquery with optional alias."""

    source: str | Select
    alias: str | None = None


@dataclass(frozen=True)
class Join:
    join_type: JoinType
    source: str | Select
    alias: str | None = None
    on: Expr | None = None


@dataclass(frozen=True)
class OrderByItem:
    expr: Expr
    desc: bool = False


@dataclass(frozen=True)
class CTE:
    name: str
    query: Select


@dataclass(frozen=True)
class Select:
    """A complete SELECT statement."""

    columns: tuple[Expr, ...] = ()
    from_: From | None = None
    joins: tuple[Join, ...] = ()
    where: Expr | None = None
    group_by: tuple[Expr, ...] = ()
    order_by: tuple[OrderByItem, ...] = ()
    distinct: bool = False
    ctes: tuple[CTE, ...] = ()
