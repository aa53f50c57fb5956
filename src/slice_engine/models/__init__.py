"""Pydantic domain models for slice-engine."""

from slice_engine.models.errors import (
    ConfigurationError,
    EngineError,
    ErrorDetail,
    ExecutionError,
    JoinResolutionError,
)
from slice_engine.models.metrics import Aggregation, AggregationFunction, Computed, Metric
from slice_engine.models.query import QueryRequest, Row
from slice_engine.models.schema import (
    Dimension,
    DimensionFilters,
    DimensionKind,
    Granularity,
    Precision,
    Relation,
    RelationKind,
    Schema,
    Source,
    WhereFilter,
)

__all__ = [
    "Aggregation",
    "AggregationFunction",
    "Computed",
    "ConfigurationError",
    "Dimension",
    "DimensionFilters",
    "DimensionKind",
    "EngineError",
    "ErrorDetail",
    "ExecutionError",
    "Granularity",
    "JoinResolutionError",
    "Metric",
    "Precision",
    "QueryRequest",
    "Relation",
    "RelationKind",
    "Row",
    "Schema",
    "Source",
    "WhereFilter",
]
