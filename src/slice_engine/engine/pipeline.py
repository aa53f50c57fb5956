"""Orchestrates one request: Plan → Execute → Post-process → Project."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass

from slice_engine.backends.base import Backend
from slice_engine.engine.dependencies import DependencyResolver
from slice_engine.engine.planner import QueryPlanner
from slice_engine.engine.post_processor import PostProcessor
from slice_engine.engine.software_join import SoftwareJoinExecutor
from slice_engine.engine.values import Row, normalize
from slice_engine.grammar.registry import GrammarRegistry
from slice_engine.models.errors import ConfigurationError, ExecutionError
from slice_engine.models.plan import QueryPlan, SoftwareJoinPlan
from slice_engine.models.query import QueryRequest
from slice_engine.models.schema import Schema
from slice_engine.settings import Settings
from slice_engine.sql.render import SqlRenderer

logger = logging.getLogger("slice_engine.engine")


@dataclass
class QueryResult:
    """Rows keyed by dimension alias and metric key, plus the plan that produced them."""

    rows: list[Row]
    plan: QueryPlan

    @property
    def columns(self) -> list[str]:
        return [*self.plan.dimension_order, *self.plan.metric_keys]


class QueryEngine:
    """Runs requests against the backends of a schema's connections."""

    def __init__(
        self,
        schema: Schema,
        backends: Mapping[str, Backend],
        settings: Settings | None = None,
    ) -> None:
        self._schema = schema
        self._backends = dict(backends)
        self._settings = settings or Settings()
        resolver = DependencyResolver()
        self._planner = QueryPlanner(
            schema, resolver=resolver, symmetric=self._settings.symmetric_join_paths
        )
        self._post_processor = PostProcessor(resolver)
        self._grammars = GrammarRegistry()

    @property
    def schema(self) -> Schema:
        return self._schema

    def backend_for(self, request: QueryRequest) -> Backend:
        """The backend of the request's connection; every source must share it."""
        connections = []
        for name in request.sources:
            connection = self._schema.source(name).connection
            if connection not in connections:
                connections.append(connection)
        if not connections:
            raise ConfigurationError.single("NO_SOURCES", "The request references no source")

        # sources on other connections are rejected by join planning
        backend = self._backends.get(connections[0])
        if backend is None:
            raise ConfigurationError.single(
                "NO_BACKEND",
                f"No backend is configured for connection '{connections[0]}'",
                source=request.sources[0],
            )
        return backend

    def plan(self, request: QueryRequest) -> QueryPlan:
        return self._planner.plan(request, self.backend_for(request).capabilities)

    def explain(self, request: QueryRequest, grammar: str | None = None) -> str:
        """Render the SQL a request's plan sends, in ``grammar`` or ``settings.default_grammar``.

        A software join sends one query per leg; these are separated by blank lines.
        """
        plan = self.plan(request)
        renderer = SqlRenderer(
            self._grammars.get(grammar or self._settings.default_grammar),
            pretty=self._settings.pretty_sql,
        )
        match plan:
            case SoftwareJoinPlan():
                return ";\n\n".join(renderer.render(leg) for leg in plan.legs.values())
            case _:
                return renderer.render(plan)

    def run(self, request: QueryRequest, cancel_event: threading.Event | None = None) -> QueryResult:
        started = time.perf_counter()
        backend = self.backend_for(request)
        plan = self._planner.plan(request, backend.capabilities)

        match plan:
            case SoftwareJoinPlan():
                executor = SoftwareJoinExecutor(
                    backend,
                    max_workers=self._settings.max_fetch_workers,
                    timeout=self._settings.fetch_timeout_seconds,
                )
                rows = executor.execute(plan, cancel_event)
            case _:
                if cancel_event is not None and cancel_event.is_set():
                    raise ExecutionError.single("CANCELLED", "Query was cancelled")
                rows = backend.execute(plan, cancel_event)

        computed = [m for level in plan.post_computed for m in level.metrics]
        rows = self._post_processor.process(rows, computed, plan.post_computed)
        rows = self._project(plan, rows)

        logger.info(
            "Ran %s on '%s': %d rows in %.1f ms",
            type(plan).__name__,
            backend.capabilities.name,
            len(rows),
            (time.perf_counter() - started) * 1000,
        )
        return QueryResult(rows=rows, plan=plan)

    def _project(self, plan: QueryPlan, rows: list[Row]) -> list[Row]:
        projected: list[Row] = []
        for row in rows:
            out: Row = {alias: row.get(alias) for alias in plan.dimension_order}
            for key in plan.metric_keys:
                if key not in row:
                    raise ExecutionError.single(
                        "MISSING_METRIC", f"Metric '{key}' is missing from the result", metric=key
                    )
                out[key] = normalize(row[key])
            projected.append(out)
        return projected
