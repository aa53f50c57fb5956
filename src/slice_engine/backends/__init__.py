"""Query backends for slice-engine."""

from slice_engine.backends.base import Backend, BackendCapabilities, BackendQuery
from slice_engine.backends.sqlite import SqliteBackend

__all__ = [
    "Backend",
    "BackendCapabilities",
    "BackendQuery",
    "SqliteBackend",
]
