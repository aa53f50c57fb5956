"""Query request: the normalized metrics and dimensions of one request."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from slice_engine.models.errors import ConfigurationError, ErrorDetail
from slice_engine.models.metrics import Aggregation, Computed, Metric
from slice_engine.models.schema import Dimension

Row = dict[str, Any]
"""A result row: output alias to scalar (number, string or None)."""


class QueryRequest(BaseModel):
    """Metrics and dimensions of one request, already resolved against a schema."""

    metrics: list[Metric]
    dimensions: list[Dimension] = []

    @property
    def aggregations(self) -> list[Aggregation]:
        return [m for m in self.metrics if isinstance(m, Aggregation)]

    @property
    def computed(self) -> list[Computed]:
        return [m for m in self.metrics if isinstance(m, Computed)]

    @property
    def metric_keys(self) -> list[str]:
        return [m.key for m in self.metrics]

    @property
    def dimension_aliases(self) -> list[str]:
        return [d.alias for d in self.dimensions]

    @property
    def sources(self) -> list[str]:
        """Sources that must be fetched, in first-appearance order.

        Aggregation sources come first, then dimension sources. The owning
        source of a computed metric never adds a source on its own.
        """
        names: list[str] = []
        for metric in self.aggregations:
            if metric.source not in names:
                names.append(metric.source)
        for dim in self.dimensions:
            if dim.source not in names:
                names.append(dim.source)
        return names

    def check(self) -> None:
        """Raise ``ConfigurationError`` for duplicate keys or aliases, or no aggregation."""
        errors: list[ErrorDetail] = []
        seen: set[str] = set()
        for metric in self.metrics:
            if metric.key in seen:
                errors.append(
                    ErrorDetail(
                        code="DUPLICATE_METRIC_KEY",
                        message=f"Metric key '{metric.key}' is used more than once",
                        metric=metric.key,
                    )
                )
            seen.add(metric.key)
        for alias in self.dimension_aliases:
            if alias in seen:
                errors.append(
                    ErrorDetail(
                        code="DUPLICATE_ALIAS",
                        message=f"Output alias '{alias}' is used more than once",
                    )
                )
            seen.add(alias)
        if not self.aggregations:
            errors.append(
                ErrorDetail(
                    code="NO_AGGREGATIONS",
                    message="A request needs at least one aggregation metric",
                )
            )
        if errors:
            raise ConfigurationError(errors)
