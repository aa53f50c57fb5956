"""slice-engine: analytics query planning and execution over relational sources."""

from slice_engine.engine.pipeline import QueryEngine, QueryResult
from slice_engine.models import QueryRequest, Schema
from slice_engine.parser import SchemaLoader
from slice_engine.settings import Settings, configure_logging

__version__ = "0.1.0"

__all__ = [
    "QueryEngine",
    "QueryRequest",
    "QueryResult",
    "Schema",
    "SchemaLoader",
    "Settings",
    "configure_logging",
]
