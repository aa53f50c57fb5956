"""Reference SQL backend on the standard-library sqlite3 driver."""

from __future__ import annotations

import logging
import sqlite3
import threading

from slice_engine.backends.base import Backend, BackendCapabilities, BackendQuery
from slice_engine.grammar.base import Grammar
from slice_engine.grammar.registry import GrammarRegistry
from slice_engine.models.errors import ExecutionError
from slice_engine.models.query import Row
from slice_engine.settings import Settings
from slice_engine.sql.render import SqlRenderer

logger = logging.getLogger("slice_engine.backend")


class SqliteBackend(Backend):
    """Executes rendered plans on one sqlite3 connection.

    The connection is shared between fetch threads and guarded by a lock.
    ``supports_joins`` and ``supports_staged_computation`` can be switched
    off to behave like a backend without those features. A running statement
    checks ``cancel_event`` every ``progress_interval`` virtual-machine
    instructions and is interrupted once it is set.
    """

    progress_interval = 1000

    def __init__(
        self,
        connection: sqlite3.Connection,
        grammar: Grammar | None = None,
        supports_joins: bool = True,
        supports_staged_computation: bool = True,
        pretty_sql: bool = False,
    ) -> None:
        self._connection = connection
        self._lock = threading.Lock()
        self._grammar = grammar or GrammarRegistry().get("sqlite")
        self._renderer = SqlRenderer(self._grammar, pretty=pretty_sql)
        self._capabilities = BackendCapabilities(
            name=self._grammar.name,
            supports_joins=supports_joins,
            supports_staged_computation=supports_staged_computation,
        )
        self.executed: list[str] = []

    @classmethod
    def connect(
        cls, database: str = ":memory:", settings: Settings | None = None, **kwargs
    ) -> SqliteBackend:
        if settings is not None:
            kwargs.setdefault("pretty_sql", settings.pretty_sql)
        return cls(sqlite3.connect(database, check_same_thread=False), **kwargs)

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._capabilities

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def render(self, query: BackendQuery) -> str:
        return self._renderer.render(query)

    def execute(
        self, query: BackendQuery, cancel_event: threading.Event | None = None
    ) -> list[Row]:
        sql = self.render(query)
        logger.debug("Executing on sqlite:\n%s", sql)

        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                raise ExecutionError.single("CANCELLED", "Fetch cancelled before it started")
            self.executed.append(sql)
            if cancel_event is not None:
                # a truthy return aborts the running statement
                self._connection.set_progress_handler(cancel_event.is_set, self.progress_interval)
            try:
                cursor = self._connection.execute(sql)
                columns = [d[0] for d in cursor.description]
                rows = [dict(zip(columns, values)) for values in cursor.fetchall()]
            except sqlite3.Error as exc:
                if cancel_event is not None and cancel_event.is_set():
                    raise ExecutionError.single(
                        "CANCELLED", "Fetch was interrupted by cancellation"
                    ) from exc
                raise ExecutionError.single(
                    "BACKEND_ERROR", f"sqlite rejected the query: {exc}"
                ) from exc
            finally:
                if cancel_event is not None:
                    self._connection.set_progress_handler(None, 0)

        logger.debug("sqlite returned %d rows", len(rows))
        return rows
