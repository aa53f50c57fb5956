"""Evaluation of computed metrics over fetched rows."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from slice_engine.ast.nodes import BinaryOp, ColumnRef, Expr, FunctionCall, Literal, UnaryOp
from slice_engine.ast.visitor import ASTVisitor, collect_references
from slice_engine.engine.dependencies import DependencyResolver
from slice_engine.engine.formula import parse_formula
from slice_engine.engine.values import Row, is_number, normalize, round_half_away
from slice_engine.models.errors import ConfigurationError, ErrorDetail, ExecutionError
from slice_engine.models.metrics import Computed
from slice_engine.models.plan import DependencyLevel

logger = logging.getLogger("slice_engine.engine")


class ExpressionEvaluator(ASTVisitor):
    """Evaluates a formula tree against one row.

    SQL-like null semantics: any null operand yields null, and so does a
    division by zero.
    """

    def __init__(self, row: Row, metric: str) -> None:
        self._row = row
        self._metric = metric

    def generic_visit(self, node: Any) -> Any:
        raise ExecutionError.single(
            "UNSUPPORTED_EXPRESSION",
            f"Cannot evaluate {type(node).__name__} in metric '{self._metric}'",
            metric=self._metric,
        )

    def visit_literal(self, node: Literal) -> Any:
        return node.value

    def visit_columnref(self, node: ColumnRef) -> Any:
        if node.name not in self._row:
            raise ExecutionError.single(
                "MISSING_DEPENDENCY_VALUE",
                f"Value '{node.name}' needed by metric '{self._metric}' is not in the row",
                metric=self._metric,
            )
        return normalize(self._row[node.name])

    def visit_unaryop(self, node: UnaryOp) -> Any:
        value = self.visit(node.operand)
        if value is None:
            return None
        return -self._number(value)

    def visit_binaryop(self, node: BinaryOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if left is None or right is None:
            return None
        left, right = self._number(left), self._number(right)
        match node.op:
            case "+":
                return left + right
            case "-":
                return left - right
            case "*":
                return left * right
            case "/":
                if right == 0:
                    return None
                return left / right
        return self.generic_visit(node)

    def visit_functioncall(self, node: FunctionCall) -> Any:
        args = [self.visit(a) for a in node.args]
        match node.name:
            case "NULLIF":
                first, second = args
                if first is None or first == second:
                    return None
                return first
            case "COALESCE":
                return next((a for a in args if a is not None), None)
            case "ABS":
                return None if args[0] is None else abs(self._number(args[0]))
            case "ROUND":
                if any(a is None for a in args):
                    return None
                digits = int(args[1]) if len(args) > 1 else 0
                return round_half_away(self._number(args[0]), digits)
        return self.generic_visit(node)

    def _number(self, value: Any) -> Any:
        if not is_number(value):
            raise ExecutionError.single(
                "NON_NUMERIC_OPERAND",
                f"Metric '{self._metric}' cannot do arithmetic on {value!r}",
                metric=self._metric,
            )
        return value


class PostProcessor:
    """Computes derived metrics level by level, writing each result back into the row."""

    def __init__(self, resolver: DependencyResolver | None = None) -> None:
        self._resolver = resolver or DependencyResolver()

    def compile(self, computed: Sequence[Computed]) -> dict[str, Expr]:
        """Parse every expression once, rejecting references not declared as dependencies."""
        trees: dict[str, Expr] = {}
        errors: list[ErrorDetail] = []
        for metric in computed:
            tree = parse_formula(metric.expression)
            undeclared = [n for n in collect_references(tree) if n not in metric.dependencies]
            if undeclared:
                errors.append(
                    ErrorDetail(
                        code="UNDECLARED_REFERENCE",
                        message=(
                            f"Metric '{metric.key}' references {', '.join(undeclared)} "
                            "without declaring them as dependencies"
                        ),
                        metric=metric.key,
                        source=metric.source,
                    )
                )
            trees[metric.key] = tree
        if errors:
            raise ConfigurationError(errors)
        return trees

    def process(
        self,
        rows: Sequence[Row],
        computed: Sequence[Computed],
        levels: Sequence[DependencyLevel] | None = None,
    ) -> list[Row]:
        if not computed:
            return [dict(row) for row in rows]

        if levels is None:
            levels = self._resolver.levelize(computed)
        trees = self.compile([m for level in levels for m in level.metrics])

        result: list[Row] = []
        for row in rows:
            out = dict(row)
            for level in levels:
                for metric in level.metrics:
                    value = ExpressionEvaluator(out, metric.key).visit(trees[metric.key])
                    out[metric.key] = normalize(value)
            result.append(out)

        logger.debug(
            "Evaluated %d computed metrics over %d rows in %d levels",
            len(trees),
            len(result),
            len(levels),
        )
        return result
