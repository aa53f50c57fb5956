"""Greedy join-graph construction over an arbitrary set of sources."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from slice_engine.engine.paths import JoinPathFinder
from slice_engine.models.plan import JoinPlan
from slice_engine.models.schema import Source

logger = logging.getLogger("slice_engine.planner")


class JoinGraphBuilder:
    """Connects sources into one deduplicated ``JoinPlan``.

    Greedy: the first source seeds the connected set; every other source is
    attached through the first already-connected source that has a path to
    it. Sources that cannot be reached are left out of ``JoinPlan.sources``
    and must be reported by the caller.
    """

    def __init__(self, path_finder: JoinPathFinder) -> None:
        self._path_finder = path_finder

    def build(self, sources: Sequence[Source]) -> JoinPlan:
        plan = JoinPlan()
        if not sources:
            return plan

        plan.connect(sources[0].name)
        if len(sources) == 1:
            return plan

        connected: list[Source] = [sources[0]]

        for target in sources[1:]:
            if plan.connects(target.name):
                # already reached as an intermediate hop of an earlier path
                connected.append(target)
                continue

            for origin in connected:
                path = self._path_finder.find(origin, target)
                if path is None:
                    continue
                for spec in path:
                    plan.add(spec)
                plan.connect(target.name)
                connected.append(target)
                break
            else:
                logger.debug("No join path reaches source '%s'", target.name)

        return plan
