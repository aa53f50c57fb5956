"""Join plans, dependency levels and the query-plan variants produced by the planner."""

from __future__ import annotations

from dataclasses import dataclass, field

from slice_engine.models.errors import JoinResolutionError
from slice_engine.models.metrics import Aggregation, AggregationFunction, Computed
from slice_engine.models.schema import Dimension, Relation, Source


@dataclass(frozen=True)
class JoinSpecification:
    """One traversal of a relation edge: ``from_source.from_column = to_source.to_column``."""

    from_source: str
    to_source: str
    relation: Relation
    from_column: str
    to_column: str
    join_type: str = "inner"
    condition: str | None = None
    reversed: bool = False

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_source, self.to_source)

    @property
    def relation_name(self) -> str:
        return self.relation.name


@dataclass
class JoinPlan:
    """Ordered, deduplicated join specifications and the sources they connect."""

    specifications: list[JoinSpecification] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    def add(self, spec: JoinSpecification) -> bool:
        """Append ``spec`` unless its (from, to) pair is already planned."""
        if any(existing.pair == spec.pair for existing in self.specifications):
            return False
        self.specifications.append(spec)
        for name in spec.pair:
            self.connect(name)
        return True

    def connect(self, name: str) -> None:
        if name not in self.sources:
            self.sources.append(name)

    def connects(self, name: str) -> bool:
        return name in self.sources

    def is_empty(self) -> bool:
        return not self.specifications

    @property
    def has_conditions(self) -> bool:
        return any(spec.condition for spec in self.specifications)

    def __len__(self) -> int:
        return len(self.specifications)

    def __iter__(self):
        return iter(self.specifications)


@dataclass
class DependencyLevel:
    """Computed metrics whose dependencies all live in lower levels."""

    index: int
    metrics: list[Computed] = field(default_factory=list)

    @property
    def keys(self) -> list[str]:
        return [m.key for m in self.metrics]


def join_alias(source: str, column: str) -> str:
    """Row alias of a join-key column fetched for the in-process join."""
    return f"{source}__{column}"


def partial_aliases(metric: Aggregation) -> tuple[str, str]:
    """Row aliases of the sum/count partials an average is fetched as."""
    return f"{metric.key}__sum", f"{metric.key}__count"


@dataclass
class SourceQuery:
    """A push-down query against one source.

    Groups by the requested dimensions of the source plus any join-key
    columns. With ``split_averages`` an AVG is fetched as sum/count partials
    so it can be re-aggregated after a join.
    """

    source: Source
    dimensions: list[Dimension] = field(default_factory=list)
    join_columns: list[str] = field(default_factory=list)
    aggregations: list[Aggregation] = field(default_factory=list)
    split_averages: bool = False
    apply_filters: bool = True
    ordered: bool = False

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def group_aliases(self) -> list[str]:
        aliases = [d.alias for d in self.dimensions]
        aliases.extend(join_alias(self.name, c) for c in self.join_columns)
        return aliases

    @property
    def value_aliases(self) -> list[str]:
        aliases: list[str] = []
        for metric in self.aggregations:
            if self.split_averages and metric.function == AggregationFunction.AVG:
                aliases.extend(partial_aliases(metric))
            else:
                aliases.append(metric.key)
        return aliases

    @property
    def filtered_dimensions(self) -> list[Dimension]:
        if not self.apply_filters:
            return []
        return [d for d in self.dimensions if not d.filters.empty]


@dataclass(frozen=True)
class JoinStep:
    """One step of the in-process or SQL join sequence.

    ``source`` is the leg joined in this step, matched on
    ``left_column = right_column``. When ``source`` is None both columns are
    already present and the step is an equality filter. ``condition`` is an
    extra SQL predicate over joined row aliases, ANDed into the step.
    """

    source: str | None
    left_column: str
    right_column: str
    condition: str | None = None


@dataclass
class SingleSourcePlan:
    """One backend query against a single source."""

    query: SourceQuery
    metric_keys: list[str]
    post_computed: list[DependencyLevel] = field(default_factory=list)
    reason: str = ""

    @property
    def dimension_order(self) -> list[str]:
        return [d.alias for d in self.query.dimensions]


@dataclass
class StagedBackendPlan:
    """A base aggregation query followed by one backend stage per dependency level."""

    query: SourceQuery
    stages: list[DependencyLevel]
    metric_keys: list[str]
    post_computed: list[DependencyLevel] = field(default_factory=list)
    reason: str = ""

    @property
    def dimension_order(self) -> list[str]:
        return [d.alias for d in self.query.dimensions]


@dataclass
class MultiSourcePlan:
    """Per-source legs connected by a join plan, re-aggregated by dimension."""

    primary: str
    legs: dict[str, SourceQuery]
    join_plan: JoinPlan
    dimensions: list[Dimension]
    aggregations: list[Aggregation]
    metric_keys: list[str]
    post_computed: list[DependencyLevel] = field(default_factory=list)
    reason: str = ""

    @property
    def dimension_order(self) -> list[str]:
        return [d.alias for d in self.dimensions]

    @property
    def filters(self) -> list[Dimension]:
        return [d for d in self.dimensions if not d.filters.empty]

    @property
    def join_aliases(self) -> list[str]:
        aliases: list[str] = []
        for leg in self.legs.values():
            aliases.extend(join_alias(leg.name, c) for c in leg.join_columns)
        return aliases

    def join_sequence(self) -> list[JoinStep]:
        """Order the plan's specifications so each step extends the joined set."""
        joined = {self.primary}
        pending = list(self.join_plan.specifications)
        steps: list[JoinStep] = []

        while pending:
            progress = False
            for spec in list(pending):
                from_alias = join_alias(spec.from_source, spec.from_column)
                to_alias = join_alias(spec.to_source, spec.to_column)
                from_joined = spec.from_source in joined
                to_joined = spec.to_source in joined

                if from_joined and to_joined:
                    steps.append(JoinStep(None, from_alias, to_alias, spec.condition))
                elif from_joined:
                    steps.append(JoinStep(spec.to_source, from_alias, to_alias, spec.condition))
                    joined.add(spec.to_source)
                elif to_joined:
                    steps.append(JoinStep(spec.from_source, to_alias, from_alias, spec.condition))
                    joined.add(spec.from_source)
                else:
                    continue

                pending.remove(spec)
                progress = True

            if not progress:
                names = ", ".join(f"{s.from_source}->{s.to_source}" for s in pending)
                raise JoinResolutionError.single(
                    "UNREACHABLE_JOIN",
                    f"Join specifications {names} are not reachable from '{self.primary}'",
                    source=self.primary,
                )

        return steps


@dataclass
class JoinedBackendPlan(MultiSourcePlan):
    """The whole multi-source plan executed as one backend query."""


@dataclass
class SoftwareJoinPlan(MultiSourcePlan):
    """Per-source backend fetches joined and aggregated in process."""


QueryPlan = SingleSourcePlan | StagedBackendPlan | JoinedBackendPlan | SoftwareJoinPlan
