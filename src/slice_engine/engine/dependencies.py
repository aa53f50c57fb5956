"""Backend/software classification and dependency levelling of metrics."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import networkx as nx

from slice_engine.models.errors import ConfigurationError
from slice_engine.models.metrics import Aggregation, Computed, Metric
from slice_engine.models.plan import DependencyLevel


@dataclass
class Classification:
    """Metrics split by where they can be computed, each in request order."""

    backend: list[Metric] = field(default_factory=list)
    software: list[Metric] = field(default_factory=list)

    @property
    def backend_computed(self) -> list[Computed]:
        return [m for m in self.backend if isinstance(m, Computed)]

    @property
    def software_computed(self) -> list[Computed]:
        return [m for m in self.software if isinstance(m, Computed)]


def _cycle_error(cycle: Sequence[str]) -> ConfigurationError:
    path = " -> ".join([*cycle, cycle[0]])
    return ConfigurationError.single(
        "DEPENDENCY_CYCLE",
        f"Computed metrics form a dependency cycle: {path}",
        metric=cycle[0],
    )


class DependencyResolver:
    """Decides which metrics can be pushed into one backend query.

    A computed metric is backend-computable when every dependency is another
    metric of the request, owned by the same source, and itself
    backend-computable. Everything else is computed after fetch.
    """

    def classify(self, metrics: Sequence[Metric]) -> Classification:
        by_key = {m.key: m for m in metrics}
        memo: dict[str, bool] = {}
        visiting: list[str] = []

        def is_backend(metric: Metric) -> bool:
            if metric.key in memo:
                return memo[metric.key]
            if isinstance(metric, Aggregation):
                memo[metric.key] = True
                return True
            if metric.key in visiting:
                raise _cycle_error(visiting[visiting.index(metric.key):])

            visiting.append(metric.key)
            result = True
            # evaluate every dependency so cycles are found even after a miss
            for key in metric.dependencies:
                dependency = by_key.get(key)
                if dependency is None:
                    result = False
                    continue
                backend = is_backend(dependency)
                if not backend or dependency.source != metric.source:
                    result = False
            visiting.pop()

            memo[metric.key] = result
            return result

        classification = Classification()
        for metric in metrics:
            if is_backend(metric):
                classification.backend.append(metric)
            else:
                classification.software.append(metric)
        return classification

    def _graph(self, metrics: Sequence[Metric]) -> nx.DiGraph[str]:
        """Edges point from a dependency to the metric that needs it; only pool members are nodes."""
        graph: nx.DiGraph[str] = nx.DiGraph()
        keys = {m.key for m in metrics}
        for metric in metrics:
            graph.add_node(metric.key)
            for key in metric.dependencies:
                if key in keys:
                    graph.add_edge(key, metric.key)
        return graph

    def _check_acyclic(self, graph: nx.DiGraph[str]) -> None:
        try:
            cycle = nx.find_cycle(graph)
        except nx.NetworkXNoCycle:
            return
        raise _cycle_error([u for u, _ in cycle])

    def levelize(self, computed: Sequence[Computed]) -> list[DependencyLevel]:
        """Partition ``computed`` into dependency levels.

        Dependencies outside the pool (aggregations, dimension aliases, values
        materialised earlier) count as already available, so level 0 holds
        the metrics that depend on nothing inside the pool.
        """
        if not computed:
            return []

        graph = self._graph(computed)
        self._check_acyclic(graph)

        position = {m.key: i for i, m in enumerate(computed)}
        by_key = {m.key: m for m in computed}
        levels: list[DependencyLevel] = []
        for index, generation in enumerate(nx.topological_generations(graph)):
            ordered = sorted(generation, key=position.__getitem__)
            levels.append(DependencyLevel(index=index, metrics=[by_key[k] for k in ordered]))
        return levels

    def order(self, metrics: Sequence[Metric]) -> list[Metric]:
        """All metrics in an order where every dependency precedes its dependents."""
        graph = self._graph(metrics)
        self._check_acyclic(graph)

        position = {m.key: i for i, m in enumerate(metrics)}
        by_key = {m.key: m for m in metrics}
        return [
            by_key[key]
            for key in nx.lexicographical_topological_sort(graph, key=position.__getitem__)
        ]
