"""Metric variants: aggregations over one column and computed expressions."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class AggregationFunction(StrEnum):
    SUM = "sum"
    COUNT = "count"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class Aggregation(BaseModel):
    """An aggregate function applied to one column of one source."""

    kind: Literal["aggregation"] = "aggregation"
    key: str
    source: str
    column: str
    function: AggregationFunction = AggregationFunction.SUM

    model_config = {"frozen": True}

    @classmethod
    def make(
        cls,
        source: str,
        column: str,
        function: AggregationFunction = AggregationFunction.SUM,
        key: str | None = None,
    ) -> Aggregation:
        if key is None:
            key = f"{source}_{column}"
            if function != AggregationFunction.SUM:
                key += f"_{function.value}"
        return cls(key=key, source=source, column=column, function=function)

    @property
    def dependencies(self) -> tuple[str, ...]:
        return ()


class Computed(BaseModel):
    """An arithmetic expression over other metrics' result values.

    ``source`` is the owning source, used only to decide plan placement.
    """

    kind: Literal["computed"] = "computed"
    key: str
    expression: str
    dependencies: tuple[str, ...] = ()
    source: str

    model_config = {"frozen": True}


Metric = Annotated[Aggregation | Computed, Field(discriminator="kind")]
