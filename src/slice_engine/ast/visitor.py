"""Visitor pattern for expression traversal."""

from __future__ import annotations

from typing import Any

from slice_engine.ast.nodes import (
    AliasedExpr,
    BinaryOp,
    Cast,
    ColumnRef,
    FunctionCall,
    InList,
    IsNull,
    UnaryOp,
)


class ASTVisitor:
    """Base visitor for expression trees.

    Override specific visit_* methods to customize behavior.
    The default implementations rebuild the node from visited children.
    """

    def visit(self, node: Any) -> Any:
        """Dispatch to the appropriate visit_* method."""
        method_name = f"visit_{type(node).__name__.lower()}"
        method = getattr(self, method_name, self.generic_visit)
        return method(node)

    def generic_visit(self, node: Any) -> Any:
        return node

    def visit_aliasedexpr(self, node: AliasedExpr) -> Any:
        return AliasedExpr(expr=self.visit(node.expr), alias=node.alias)

    def visit_functioncall(self, node: FunctionCall) -> Any:
        args = tuple(self.visit(a) for a in node.args)
        return FunctionCall(name=node.name, args=args)

    def visit_binaryop(self, node: BinaryOp) -> Any:
        return BinaryOp(left=self.visit(node.left), op=node.op, right=self.visit(node.right))

    def visit_unaryop(self, node: UnaryOp) -> Any:
        return UnaryOp(op=node.op, operand=self.visit(node.operand))

    def visit_cast(self, node: Cast) -> Any:
        return Cast(expr=self.visit(node.expr), type_name=node.type_name)

    def visit_isnull(self, node: IsNull) -> Any:
        return IsNull(expr=self.visit(node.expr), negated=node.negated)

    def visit_inlist(self, node: InList) -> Any:
        return InList(
            expr=self.visit(node.expr),
            values=tuple(self.visit(v) for v in node.values),
            negated=node.negated,
        )


class ReferenceCollector(ASTVisitor):
    """Collects the names of unqualified column references, in first-seen order."""

    def __init__(self) -> None:
        self.names: list[str] = []

    def visit_columnref(self, node: ColumnRef) -> Any:
        if node.table is None and node.name not in self.names:
            self.names.append(node.name)
        return node


def collect_references(node: Any) -> list[str]:
    collector = ReferenceCollector()
    collector.visit(node)
    return collector.names
