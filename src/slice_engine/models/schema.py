"""Schema model: sources, relations, dimension catalogs and the schema registry."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from slice_engine.models.errors import ConfigurationError, ErrorDetail
from slice_engine.models.metrics import Aggregation, AggregationFunction, Computed


class RelationKind(StrEnum):
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"
    CROSS_JOIN = "cross_join"


class Granularity(StrEnum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class Precision(StrEnum):
    TIMESTAMP = "timestamp"
    DATE = "date"


class DimensionKind(StrEnum):
    STANDARD = "standard"
    TIME = "time"


_REQUIRED_KEYS: dict[RelationKind, tuple[str, ...]] = {
    RelationKind.BELONGS_TO: ("foreign_key", "owner_key"),
    RelationKind.HAS_MANY: ("local_key", "foreign_key"),
    RelationKind.BELONGS_TO_MANY: ("pivot", "foreign_pivot_key", "related_pivot_key"),
    RelationKind.CROSS_JOIN: ("left_key", "right_key"),
}


class RelationEdge(BaseModel):
    """One directed column-equality edge produced by expanding a relation."""

    from_source: str
    to_source: str
    from_column: str
    to_column: str
    condition: str | None = None


class Relation(BaseModel):
    """Directed relation from its owning source to ``target``.

    Key fields depend on ``kind``: ``foreign_key``/``owner_key`` for
    belongs-to, ``local_key``/``foreign_key`` for has-many, a pivot table plus
    two key pairs for belongs-to-many, and two equality keys plus an optional
    extra predicate for cross joins.
    """

    name: str = ""
    kind: RelationKind
    target: str
    foreign_key: str | None = Field(None, alias="foreignKey")
    owner_key: str | None = Field(None, alias="ownerKey")
    local_key: str | None = Field(None, alias="localKey")
    pivot: str | None = None
    foreign_pivot_key: str | None = Field(None, alias="foreignPivotKey")
    related_pivot_key: str | None = Field(None, alias="relatedPivotKey")
    parent_key: str = Field("id", alias="parentKey")
    related_key: str = Field("id", alias="relatedKey")
    left_key: str | None = Field(None, alias="leftKey")
    right_key: str | None = Field(None, alias="rightKey")
    condition: str | None = None

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def _check_keys(self) -> Relation:
        missing = [k for k in _REQUIRED_KEYS[self.kind] if getattr(self, k) is None]
        if missing:
            raise ValueError(
                f"Relation '{self.name or self.target}' of kind '{self.kind.value}' "
                f"is missing keys: {', '.join(missing)}"
            )
        return self

    def edges(self, owner: str) -> list[RelationEdge]:
        """Expand into directed edges; a pivot relation becomes owner→pivot→target."""
        match self.kind:
            case RelationKind.BELONGS_TO:
                return [RelationEdge(
                    from_source=owner, to_source=self.target,
                    from_column=self.foreign_key, to_column=self.owner_key,
                )]
            case RelationKind.HAS_MANY:
                return [RelationEdge(
                    from_source=owner, to_source=self.target,
                    from_column=self.local_key, to_column=self.foreign_key,
                )]
            case RelationKind.BELONGS_TO_MANY:
                return [
                    RelationEdge(
                        from_source=owner, to_source=self.pivot,
                        from_column=self.parent_key, to_column=self.foreign_pivot_key,
                    ),
                    RelationEdge(
                        from_source=self.pivot, to_source=self.target,
                        from_column=self.related_pivot_key, to_column=self.related_key,
                    ),
                ]
            case RelationKind.CROSS_JOIN:
                return [RelationEdge(
                    from_source=owner, to_source=self.target,
                    from_column=self.left_key, to_column=self.right_key,
                    condition=self.condition,
                )]
        raise ValueError(f"Unknown relation kind '{self.kind}'")


ComparisonOperator = Literal["=", "==", "!=", "<>", ">", "<", ">=", "<="]


class WhereFilter(BaseModel):
    """Comparison filter: ``value <operator> target``."""

    operator: ComparisonOperator = "="
    value: Any = None

    model_config = {"frozen": True}


class DimensionFilters(BaseModel):
    only: list[Any] | None = None
    except_: list[Any] | None = Field(None, alias="except")
    where: WhereFilter | None = None

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def empty(self) -> bool:
        return self.only is None and self.except_ is None and self.where is None


class Dimension(BaseModel):
    """A grouping/filtering axis bound to a column of one source."""

    name: str = ""
    source: str = ""
    column: str
    kind: DimensionKind = DimensionKind.STANDARD
    granularity: Granularity | None = None
    precision: Precision = Precision.TIMESTAMP
    filters: DimensionFilters = DimensionFilters()

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def alias(self) -> str:
        alias = f"{self.source}_{self.name}"
        if self.granularity is not None:
            alias += f"_{self.granularity.value}"
        return alias

    @property
    def is_time(self) -> bool:
        return self.kind == DimensionKind.TIME


class Source(BaseModel):
    """An immutable relational source with its relations and dimension catalog."""

    name: str
    provider: str = "default"
    connection: str = "default"
    table: str | None = None
    primary_key: list[str] = Field(default_factory=lambda: ["id"], alias="primaryKey")
    columns: list[str] = []
    relations: dict[str, Relation] = {}
    dimensions: dict[str, Dimension] = {}

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _name_children(cls, data: Any) -> Any:
        """Relations and dimensions take their names from the mapping keys."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        source_name = data.get("name", "")
        relations = data.get("relations") or {}
        data["relations"] = {
            key: ({**rel, "name": key} if isinstance(rel, dict) else rel.model_copy(update={"name": key}))
            for key, rel in relations.items()
        }
        dimensions = data.get("dimensions") or {}
        data["dimensions"] = {
            key: (
                {**dim, "name": key, "source": source_name}
                if isinstance(dim, dict)
                else dim.model_copy(update={"name": key, "source": source_name})
            )
            for key, dim in dimensions.items()
        }
        return data

    @property
    def identifier(self) -> str:
        return f"{self.provider}:{self.connection}:{self.name}"

    @property
    def table_name(self) -> str:
        return self.table or self.name

    def same_connection(self, other: Source) -> bool:
        return self.provider == other.provider and self.connection == other.connection

    def has_column(self, column: str) -> bool:
        return not self.columns or column in self.columns


class Schema:
    """Registry of sources, populated once at construction.

    Validates relation targets and synthesises a bare source for every
    belongs-to-many pivot table that is not declared explicitly.
    """

    def __init__(self, sources: Iterable[Source]) -> None:
        self._sources: dict[str, Source] = {}
        errors: list[ErrorDetail] = []

        for source in sources:
            if source.name in self._sources:
                errors.append(
                    ErrorDetail(
                        code="DUPLICATE_SOURCE",
                        message=f"Source '{source.name}' is declared more than once",
                        source=source.name,
                    )
                )
                continue
            self._sources[source.name] = source

        for source in list(self._sources.values()):
            for relation in source.relations.values():
                if relation.kind == RelationKind.BELONGS_TO_MANY and relation.pivot not in self._sources:
                    self._sources[relation.pivot] = Source(
                        name=relation.pivot,
                        provider=source.provider,
                        connection=source.connection,
                        primary_key=[relation.foreign_pivot_key, relation.related_pivot_key],
                    )
                if relation.target not in self._sources:
                    errors.append(
                        ErrorDetail(
                            code="UNKNOWN_RELATION_TARGET",
                            message=(
                                f"Relation '{relation.name}' on '{source.name}' targets "
                                f"unknown source '{relation.target}'"
                            ),
                            source=source.name,
                            relation=relation.name,
                        )
                    )

        if errors:
            raise ConfigurationError(errors)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def __iter__(self):
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def names(self) -> list[str]:
        return list(self._sources)

    def source(self, name: str) -> Source:
        source = self._sources.get(name)
        if source is None:
            raise ConfigurationError.single(
                "UNKNOWN_SOURCE", f"Unknown source '{name}'", source=name
            )
        return source

    def resolve(self, reference: str) -> tuple[Source, str]:
        """Resolve a ``"source.column"`` reference."""
        if "." not in reference:
            raise ConfigurationError.single(
                "INVALID_REFERENCE",
                f"Reference '{reference}' must have the form 'source.column'",
            )
        source_name, column = reference.split(".", 1)
        source = self.source(source_name)
        if not source.has_column(column):
            raise ConfigurationError.single(
                "UNKNOWN_COLUMN",
                f"Source '{source_name}' has no column '{column}'",
                source=source_name,
            )
        return source, column

    # -- request helpers -----------------------------------------------------

    def aggregation(
        self,
        reference: str,
        function: AggregationFunction | str = AggregationFunction.SUM,
        key: str | None = None,
    ) -> Aggregation:
        source, column = self.resolve(reference)
        return Aggregation.make(source.name, column, AggregationFunction(function), key=key)

    def computed(
        self,
        key: str,
        expression: str,
        dependencies: Iterable[str],
        source: str,
    ) -> Computed:
        owner = self.source(source)
        return Computed(
            key=key,
            expression=expression,
            dependencies=tuple(dependencies),
            source=owner.name,
        )

    def dimension(
        self,
        reference: str,
        granularity: Granularity | str | None = None,
        *,
        only: list[Any] | None = None,
        except_: list[Any] | None = None,
        where: WhereFilter | tuple[str, Any] | None = None,
    ) -> Dimension:
        """Resolve a catalog dimension (or a plain column) and apply request options."""
        if "." not in reference:
            raise ConfigurationError.single(
                "INVALID_REFERENCE",
                f"Dimension reference '{reference}' must have the form 'source.name'",
            )
        source_name, name = reference.split(".", 1)
        source = self.source(source_name)
        dimension = source.dimensions.get(name)
        if dimension is None:
            if not source.has_column(name):
                raise ConfigurationError.single(
                    "UNKNOWN_DIMENSION",
                    f"Source '{source_name}' has no dimension or column '{name}'",
                    source=source_name,
                )
            dimension = Dimension(name=name, source=source.name, column=name)

        grain = Granularity(granularity) if granularity is not None else None
        if dimension.is_time:
            grain = grain or dimension.granularity or Granularity.DAY
            if grain == Granularity.HOUR and dimension.precision == Precision.DATE:
                raise ConfigurationError.single(
                    "INVALID_GRANULARITY",
                    f"Dimension '{reference}' has date precision and cannot be bucketed by hour",
                    source=source_name,
                )
        elif grain is not None:
            raise ConfigurationError.single(
                "INVALID_GRANULARITY",
                f"Dimension '{reference}' is not a time dimension",
                source=source_name,
            )

        try:
            if isinstance(where, tuple):
                where = WhereFilter(operator=where[0], value=where[1])
            filters = DimensionFilters(only=only, except_=except_, where=where)
        except ValidationError as exc:
            raise ConfigurationError.single(
                "INVALID_FILTER",
                f"Invalid filter on dimension '{reference}': {exc.errors()[0]['msg']}",
                source=source_name,
            ) from exc
        return dimension.model_copy(update={"granularity": grain, "filters": filters})
