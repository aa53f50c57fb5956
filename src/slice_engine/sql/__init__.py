"""SQL generation: AST compilation and plan rendering."""

from slice_engine.sql.compiler import SqlCompiler
from slice_engine.sql.render import SqlRenderer

__all__ = [
    "SqlCompiler",
    "SqlRenderer",
]
