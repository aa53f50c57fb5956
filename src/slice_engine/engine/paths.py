"""Shortest join paths between two sources (breadth-first over the relation graph)."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import replace

import networkx as nx

from slice_engine.models.plan import JoinSpecification
from slice_engine.models.schema import Schema, Source


class JoinPathFinder:
    """Finds the shortest relation path (in hops) between two sources.

    Relations are directional. With ``symmetric=True`` every relation can
    also be walked backwards; inverse edges are explored after the declared
    ones so a declared path always wins a tie.
    """

    def __init__(self, schema: Schema, symmetric: bool = False) -> None:
        self._schema = schema
        self._symmetric = symmetric
        self._forward: nx.MultiDiGraph[str] = nx.MultiDiGraph()
        self._inverse: nx.MultiDiGraph[str] = nx.MultiDiGraph()
        self._build(schema)

    def _build(self, schema: Schema) -> None:
        for source in schema:
            self._forward.add_node(source.name)
            self._inverse.add_node(source.name)

        for source in schema:
            for relation in source.relations.values():
                for edge in relation.edges(source.name):
                    spec = JoinSpecification(
                        from_source=edge.from_source,
                        to_source=edge.to_source,
                        relation=relation,
                        from_column=edge.from_column,
                        to_column=edge.to_column,
                        condition=edge.condition,
                    )
                    self._forward.add_edge(edge.from_source, edge.to_source, spec=spec)
                    self._inverse.add_edge(
                        edge.to_source,
                        edge.from_source,
                        spec=replace(
                            spec,
                            from_source=spec.to_source,
                            to_source=spec.from_source,
                            from_column=spec.to_column,
                            to_column=spec.from_column,
                            reversed=True,
                        ),
                    )

    @property
    def graph(self) -> nx.MultiDiGraph[str]:
        return self._forward

    def _outgoing(self, name: str) -> Iterator[JoinSpecification]:
        for _, _, data in self._forward.out_edges(name, data=True):
            yield data["spec"]
        if self._symmetric:
            for _, _, data in self._inverse.out_edges(name, data=True):
                yield data["spec"]

    def find(self, from_source: Source, to_source: Source) -> list[JoinSpecification] | None:
        """Return the shortest path, ``[]`` for the same source, or None if unreachable.

        Sources on different connections are never joinable, whatever the
        relations say.
        """
        if from_source.identifier == to_source.identifier:
            return []
        if not from_source.same_connection(to_source):
            return None

        queue: deque[tuple[Source, list[JoinSpecification]]] = deque([(from_source, [])])
        visited = {from_source.identifier}

        while queue:
            current, path = queue.popleft()
            for spec in self._outgoing(current.name):
                target = self._schema.source(spec.to_source)
                if not current.same_connection(target):
                    continue
                if target.identifier in visited:
                    continue

                new_path = [*path, spec]
                if target.identifier == to_source.identifier:
                    return new_path

                visited.add(target.identifier)
                queue.append((target, new_path))

        return None
