"""Plan selection: which shape of query answers a request on a given backend."""

from __future__ import annotations

import logging

from slice_engine.backends.base import BackendCapabilities
from slice_engine.engine.dependencies import Classification, DependencyResolver
from slice_engine.engine.graph import JoinGraphBuilder
from slice_engine.engine.paths import JoinPathFinder
from slice_engine.models.errors import ConfigurationError, ErrorDetail, JoinResolutionError
from slice_engine.models.plan import (
    JoinedBackendPlan,
    JoinPlan,
    QueryPlan,
    SingleSourcePlan,
    SoftwareJoinPlan,
    SourceQuery,
    StagedBackendPlan,
)
from slice_engine.models.query import QueryRequest
from slice_engine.models.schema import Schema, Source

logger = logging.getLogger("slice_engine.planner")


class QueryPlanner:
    """Chooses a plan shape from the source count, backend capabilities and metric classification.

    Decision order, first match wins:

    1. Several sources the backend cannot join (no join support, or no join
       plan connects them) with computed metrics → software join.
    2. One source, a backend with staged computation and backend-computable
       computed metrics → staged backend plan, one stage per level.
    3. One source → single-source plan; a joining backend → one joined
       backend query.
    4. Anything else → software join.

    Planning never degrades silently: a source that cannot be connected is
    a ``JoinResolutionError``, not a dropped metric.
    """

    def __init__(
        self,
        schema: Schema,
        resolver: DependencyResolver | None = None,
        symmetric: bool = False,
    ) -> None:
        self._schema = schema
        self._resolver = resolver or DependencyResolver()
        self._builder = JoinGraphBuilder(JoinPathFinder(schema, symmetric=symmetric))

    def plan(self, request: QueryRequest, capabilities: BackendCapabilities) -> QueryPlan:
        request.check()
        self._check_dependencies(request)

        sources = [self._schema.source(name) for name in request.sources]
        classification = self._resolver.classify(request.metrics)
        join_plan = self._builder.build(sources)
        missing = [s.name for s in sources if not join_plan.connects(s.name)]

        plan = self._decide(request, capabilities, sources, classification, join_plan, missing)
        logger.debug(
            "Planned %s over %s on backend '%s': %s",
            type(plan).__name__,
            ", ".join(request.sources),
            capabilities.name,
            plan.reason,
        )
        return plan

    def _decide(
        self,
        request: QueryRequest,
        capabilities: BackendCapabilities,
        sources: list[Source],
        classification: Classification,
        join_plan: JoinPlan,
        missing: list[str],
    ) -> QueryPlan:
        multi = len(sources) > 1

        if multi and (not capabilities.supports_joins or missing) and request.computed:
            if not capabilities.supports_joins:
                reason = "backend cannot join; computed metrics span the joined rows"
            else:
                reason = "no join plan connects every source"
            return self._software(request, join_plan, missing, reason)

        if (
            not multi
            and capabilities.supports_staged_computation
            and classification.backend_computed
        ):
            stages = self._resolver.levelize(classification.backend_computed)
            return StagedBackendPlan(
                query=self._single_query(request, sources[0]),
                stages=stages,
                metric_keys=request.metric_keys,
                post_computed=self._resolver.levelize(classification.software_computed),
                reason=f"single source with {len(stages)} backend computation stage(s)",
            )

        # one source never needs a join, so a backend without join support
        # still gets a SingleSourcePlan rather than a one-leg software join
        if not multi:
            return SingleSourcePlan(
                query=self._single_query(request, sources[0]),
                metric_keys=request.metric_keys,
                post_computed=self._resolver.levelize(request.computed),
                reason="single source",
            )

        if capabilities.supports_joins:
            self._require_connected(join_plan, missing)
            return JoinedBackendPlan(
                **self._multi_source_fields(request, join_plan),
                reason=f"backend joins {len(join_plan.sources)} sources in one query",
            )

        return self._software(
            request, join_plan, missing, "backend cannot join; fetching each source separately"
        )

    def _software(
        self,
        request: QueryRequest,
        join_plan: JoinPlan,
        missing: list[str],
        reason: str,
    ) -> SoftwareJoinPlan:
        self._require_connected(join_plan, missing)
        conditioned = [s for s in join_plan if s.condition]
        if conditioned:
            spec = conditioned[0]
            raise JoinResolutionError.single(
                "UNSUPPORTED_JOIN_CONDITION",
                f"Relation '{spec.relation_name}' from '{spec.from_source}' to "
                f"'{spec.to_source}' has a custom condition that cannot be joined in process",
                source=spec.from_source,
                relation=spec.relation_name,
            )
        return SoftwareJoinPlan(**self._multi_source_fields(request, join_plan), reason=reason)

    def _require_connected(self, join_plan: JoinPlan, missing: list[str]) -> None:
        if not missing:
            return
        raise JoinResolutionError(
            [
                ErrorDetail(
                    code="DISCONNECTED_SOURCE",
                    message=(
                        f"Source '{name}' cannot be joined to "
                        f"{', '.join(repr(s) for s in join_plan.sources)}"
                    ),
                    source=name,
                )
                for name in missing
            ]
        )

    def _single_query(self, request: QueryRequest, source: Source) -> SourceQuery:
        return SourceQuery(
            source=source,
            dimensions=list(request.dimensions),
            aggregations=request.aggregations,
            ordered=True,
        )

    def _multi_source_fields(self, request: QueryRequest, join_plan: JoinPlan) -> dict:
        legs: dict[str, SourceQuery] = {}
        for name in join_plan.sources:
            join_columns: list[str] = []
            for spec in join_plan:
                if spec.from_source == name and spec.from_column not in join_columns:
                    join_columns.append(spec.from_column)
                if spec.to_source == name and spec.to_column not in join_columns:
                    join_columns.append(spec.to_column)
            legs[name] = SourceQuery(
                source=self._schema.source(name),
                dimensions=[d for d in request.dimensions if d.source == name],
                join_columns=join_columns,
                aggregations=[a for a in request.aggregations if a.source == name],
                split_averages=True,
                apply_filters=False,
            )

        return {
            "primary": join_plan.sources[0],
            "legs": legs,
            "join_plan": join_plan,
            "dimensions": list(request.dimensions),
            "aggregations": request.aggregations,
            "metric_keys": request.metric_keys,
            "post_computed": self._resolver.levelize(request.computed),
        }

    def _check_dependencies(self, request: QueryRequest) -> None:
        available = set(request.metric_keys) | set(request.dimension_aliases)
        errors: list[ErrorDetail] = []
        for metric in request.computed:
            if metric.source not in self._schema:
                errors.append(
                    ErrorDetail(
                        code="UNKNOWN_SOURCE",
                        message=f"Metric '{metric.key}' is owned by unknown source '{metric.source}'",
                        metric=metric.key,
                        source=metric.source,
                    )
                )
            for key in metric.dependencies:
                if key not in available:
                    errors.append(
                        ErrorDetail(
                            code="UNKNOWN_DEPENDENCY",
                            message=(
                                f"Metric '{metric.key}' depends on '{key}', which is not "
                                "a metric or dimension of the request"
                            ),
                            metric=metric.key,
                            source=metric.source,
                        )
                    )
        if errors:
            raise ConfigurationError(errors)
