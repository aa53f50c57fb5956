"""In-process join and re-aggregation for backends that cannot join.

Each source is fetched on its own, already grouped by its dimensions and
join keys. The legs are hash-joined in memory, filtered on the dimension
aliases, and every aggregation is re-aggregated per output group over the
distinct rows of its own leg, so rows duplicated by a one-to-many join are
never counted twice.
"""

from __future__ import annotations

import logging
import operator
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any

from slice_engine.backends.base import Backend
from slice_engine.engine.values import Row, is_number, sort_key
from slice_engine.models.errors import ExecutionError
from slice_engine.models.metrics import Aggregation, AggregationFunction
from slice_engine.models.plan import SoftwareJoinPlan, SourceQuery, partial_aliases
from slice_engine.models.schema import Dimension

logger = logging.getLogger("slice_engine.executor")

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


def row_tag(source: str) -> str:
    """Hidden column holding a leg row's position, used to count each leg row once per group."""
    return f"__{source}__row"


def passes_filters(dimension: Dimension, value: Any) -> bool:
    """Apply ``only``/``except``/``where`` the way SQL would: a null value never passes."""
    filters = dimension.filters
    if filters.empty:
        return True
    if value is None:
        return False
    if filters.only is not None and value not in filters.only:
        return False
    if filters.except_ is not None and value in filters.except_:
        return False
    if filters.where is not None:
        target = filters.where.value
        if target is None:
            return False
        # numbers sort before text, as in sqlite
        return _COMPARISONS[filters.where.operator](sort_key([value]), sort_key([target]))
    return True


def reaggregate(metric: Aggregation, rows: Iterable[Row], split_averages: bool = True) -> Any:
    """Combine per-leg partial aggregates into one value."""
    if metric.function == AggregationFunction.AVG and split_averages:
        sum_alias, count_alias = partial_aliases(metric)
        total, count, seen = 0, 0, False
        for row in rows:
            if row.get(sum_alias) is not None:
                total += row[sum_alias]
                seen = True
            count += row.get(count_alias) or 0
        if not seen or count == 0:
            return None
        return total / count

    values = [row[metric.key] for row in rows if row.get(metric.key) is not None]
    if not values:
        return None
    match metric.function:
        case AggregationFunction.MIN:
            return min(values)
        case AggregationFunction.MAX:
            return max(values)
        case AggregationFunction.AVG:
            return sum(values) / len(values)
    return sum(v for v in values if is_number(v))


class SoftwareJoinExecutor:
    """Executes a ``SoftwareJoinPlan`` against one backend."""

    def __init__(
        self,
        backend: Backend,
        max_workers: int = 8,
        timeout: float | None = 30.0,
        poll_interval: float = 0.05,
    ) -> None:
        self._backend = backend
        self._max_workers = max(1, max_workers)
        self._timeout = timeout
        self._poll_interval = poll_interval

    def execute(
        self, plan: SoftwareJoinPlan, cancel_event: threading.Event | None = None
    ) -> list[Row]:
        fetched = self.fetch(plan, cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionError.single("CANCELLED", "Query was cancelled before the join")

        joined = self.join(plan, fetched)
        filtered = [
            row for row in joined
            if all(passes_filters(d, row.get(d.alias)) for d in plan.filters)
        ]
        result = self.aggregate(plan, filtered)
        logger.debug(
            "Software join: %d joined rows, %d after filters, %d groups",
            len(joined),
            len(filtered),
            len(result),
        )
        return result

    # -- step 1: concurrent fetch ------------------------------------------------

    def fetch(
        self, plan: SoftwareJoinPlan, cancel_event: threading.Event | None = None
    ) -> dict[str, list[Row]]:
        """Fetch every leg concurrently; any failure, timeout or cancellation aborts them all."""
        legs = list(plan.legs.values())
        abort = threading.Event()
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        results: dict[str, list[Row]] = {}

        pool = ThreadPoolExecutor(
            max_workers=min(len(legs), self._max_workers) or 1,
            thread_name_prefix="slice-fetch",
        )
        futures: dict[Future[list[Row]], SourceQuery] = {
            pool.submit(self._backend.execute, leg, abort): leg for leg in legs
        }
        pending = set(futures)
        failed = False
        try:
            while pending:
                done, pending = wait(
                    pending, timeout=self._poll_interval, return_when=FIRST_EXCEPTION
                )
                for future in done:
                    leg = futures[future]
                    results[leg.name] = self._collect(future, leg)
                    logger.debug("Fetched %d rows from '%s'", len(results[leg.name]), leg.name)

                if pending and cancel_event is not None and cancel_event.is_set():
                    raise ExecutionError.single(
                        "CANCELLED", "Query was cancelled while fetching sources"
                    )
                if pending and deadline is not None and time.monotonic() >= deadline:
                    names = sorted(futures[f].name for f in pending)
                    raise ExecutionError.single(
                        "FETCH_TIMEOUT",
                        f"Fetching {', '.join(names)} exceeded {self._timeout}s",
                        source=names[0],
                    )
        except ExecutionError as exc:
            failed = True
            abort.set()
            for future in pending:
                future.cancel()
            logger.warning("Aborted %d in-flight fetch(es): %s", len(pending), exc)
            raise
        finally:
            pool.shutdown(wait=not failed, cancel_futures=True)

        return {leg.name: results[leg.name] for leg in legs}

    def _collect(self, future: Future[list[Row]], leg: SourceQuery) -> list[Row]:
        exc = future.exception()
        if isinstance(exc, ExecutionError):
            raise exc
        if exc is not None:
            raise ExecutionError.single(
                "FETCH_FAILED",
                f"Fetching source '{leg.name}' failed: {exc}",
                source=leg.name,
            ) from exc
        tag = row_tag(leg.name)
        return [{**row, tag: i} for i, row in enumerate(future.result())]

    # -- step 2: hash join -------------------------------------------------------

    def join(self, plan: SoftwareJoinPlan, fetched: dict[str, list[Row]]) -> list[Row]:
        """Inner hash join along the plan's join sequence; null keys never match."""
        rows = list(fetched[plan.primary])

        for step in plan.join_sequence():
            if step.source is None:
                rows = [
                    row for row in rows
                    if row.get(step.left_column) is not None
                    and row.get(step.left_column) == row.get(step.right_column)
                ]
                continue

            index: dict[Any, list[Row]] = defaultdict(list)
            for candidate in fetched[step.source]:
                key = candidate.get(step.right_column)
                if key is not None:
                    index[key].append(candidate)

            joined: list[Row] = []
            for row in rows:
                key = row.get(step.left_column)
                if key is None:
                    continue
                for match in index.get(key, ()):
                    joined.append({**row, **match})
            rows = joined

        return rows

    # -- step 4: grouping ----------------------------------------------------------

    def aggregate(self, plan: SoftwareJoinPlan, rows: list[Row]) -> list[Row]:
        aliases = plan.dimension_order
        groups: dict[tuple[Any, ...], list[Row]] = {}
        for row in rows:
            groups.setdefault(tuple(row.get(a) for a in aliases), []).append(row)

        result: list[Row] = []
        for key, members in groups.items():
            out: Row = dict(zip(aliases, key))
            for metric in plan.aggregations:
                tag = row_tag(metric.source)
                distinct = {row[tag]: row for row in members}.values()
                out[metric.key] = reaggregate(metric, distinct, plan.legs[metric.source].split_averages)
            result.append(out)

        result.sort(key=lambda r: sort_key([r[a] for a in aliases]))
        return result
