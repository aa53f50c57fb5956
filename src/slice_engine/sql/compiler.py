"""SQL AST → SQL text, quoting identifiers through a grammar."""

from __future__ import annotations

import sqlparse

from slice_engine.ast.nodes import (
    AliasedExpr,
    BinaryOp,
    Cast,
    ColumnRef,
    Expr,
    From,
    FunctionCall,
    InList,
    IsNull,
    Join,
    Literal,
    OrderByItem,
    RawSQL,
    Select,
    Star,
    UnaryOp,
)
from slice_engine.grammar.base import Grammar


class SqlCompiler:
    """Renders statements for one grammar. Table names in FROM/JOIN are emitted as given."""

    def __init__(self, grammar: Grammar, pretty: bool = False) -> None:
        self.grammar = grammar
        self.pretty = pretty

    def compile(self, ast: Select) -> str:
        sql = self.compile_select(ast)
        if self.pretty:
            return sqlparse.format(sql, reindent=True, keyword_case="upper")
        return sql

    def compile_select(self, node: Select) -> str:
        parts: list[str] = []

        if node.ctes:
            cte_parts = [
                f"{self.grammar.quote_identifier(cte.name)} AS (\n{self.compile_select(cte.query)}\n)"
                for cte in node.ctes
            ]
            parts.append("WITH " + ",\n".join(cte_parts))

        keyword = "SELECT DISTINCT" if node.distinct else "SELECT"
        if node.columns:
            cols = ", ".join(self.compile_expr(c) for c in node.columns)
            parts.append(f"{keyword} {cols}")
        else:
            parts.append(f"{keyword} *")

        if node.from_:
            parts.append(f"FROM {self.compile_from(node.from_)}")

        for join in node.joins:
            parts.append(self.compile_join(join))

        if node.where:
            parts.append(f"WHERE {self.compile_expr(node.where)}")

        if node.group_by:
            groups = ", ".join(self.compile_expr(g) for g in node.group_by)
            parts.append(f"GROUP BY {groups}")

        if node.order_by:
            orders = ", ".join(self.compile_order_by(o) for o in node.order_by)
            parts.append(f"ORDER BY {orders}")

        return "\n".join(parts)

    def _source(self, source: str | Select, alias: str | None) -> str:
        if isinstance(source, Select):
            result = f"(\n{self.compile_select(source)}\n)"
        else:
            result = source
        if alias:
            result += f" AS {self.grammar.quote_identifier(alias)}"
        return result

    def compile_from(self, node: From) -> str:
        return self._source(node.source, node.alias)

    def compile_join(self, node: Join) -> str:
        source = self._source(node.source, node.alias)
        if node.on is None:
            return f"{node.join_type.value} JOIN {source}"
        return f"{node.join_type.value} JOIN {source} ON {self.compile_expr(node.on)}"

    def compile_order_by(self, node: OrderByItem) -> str:
        direction = "DESC" if node.desc else "ASC"
        return f"{self.compile_expr(node.expr)} {direction}"

    def compile_expr(self, expr: Expr) -> str:
        quote = self.grammar.quote_identifier
        match expr:
            case Literal(value=None):
                return "NULL"
            case Literal(value=True):
                return "TRUE"
            case Literal(value=False):
                return "FALSE"
            case Literal(value=v) if isinstance(v, str):
                escaped = v.replace("'", "''")
                return f"'{escaped}'"
            case Literal(value=v):
                return str(v)
            case Star(table=None):
                return "*"
            case Star(table=t) if t is not None:
                return f"{quote(t)}.*"
            case ColumnRef(name=name, table=None):
                return quote(name)
            case ColumnRef(name=name, table=table) if table is not None:
                return f"{quote(table)}.{quote(name)}"
            case AliasedExpr(expr=inner, alias=alias):
                return f"{self.compile_expr(inner)} AS {quote(alias)}"
            case FunctionCall(name=fname, args=args):
                args_sql = ", ".join(self.compile_expr(a) for a in args)
                return f"{fname}({args_sql})"
            case BinaryOp(left=left, op=op, right=right):
                return f"({self.compile_expr(left)} {op} {self.compile_expr(right)})"
            case UnaryOp(op=op, operand=operand):
                return f"({op} {self.compile_expr(operand)})"
            case IsNull(expr=inner, negated=False):
                return f"({self.compile_expr(inner)} IS NULL)"
            case IsNull(expr=inner, negated=True):
                return f"({self.compile_expr(inner)} IS NOT NULL)"
            case InList(expr=inner, values=values, negated=negated):
                vals = ", ".join(self.compile_expr(v) for v in values)
                op = "NOT IN" if negated else "IN"
                return f"({self.compile_expr(inner)} {op} ({vals}))"
            case Cast(expr=inner, type_name=type_name):
                return f"CAST({self.compile_expr(inner)} AS {type_name})"
            case RawSQL(sql=sql):
                return sql
            case _:
                raise ValueError(f"Unknown AST node type: {type(expr).__name__}")
