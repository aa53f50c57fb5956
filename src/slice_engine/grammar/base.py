"""Grammar value type: identifier quoting and time-bucket SQL for one dialect."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from slice_engine.models.errors import ConfigurationError
from slice_engine.models.schema import Granularity, Precision

TimeBucket = Callable[[str, Granularity, Precision], str]
Quote = Callable[[str], str]


class UnsupportedGrammarError(Exception):
    """Raised when a requested grammar is not registered."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.grammar_name = name
        self.available = available
        super().__init__(f"Unsupported grammar '{name}'. Available: {', '.join(available)}")


def double_quote(name: str) -> str:
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def backtick_quote(name: str) -> str:
    escaped = name.replace("`", "``")
    return f"`{escaped}`"


def bracket_quote(name: str) -> str:
    escaped = name.replace("]", "]]")
    return f"[{escaped}]"


@dataclass(frozen=True)
class Grammar:
    """Dialect-specific SQL fragments.

    A grammar is a plain value: dialects that share behaviour share the same
    functions rather than subclassing each other.
    """

    name: str
    quote: Quote
    time_bucket: TimeBucket

    def quote_identifier(self, name: str) -> str:
        if name == "*":
            return name
        return self.quote(name)

    def format_time_bucket(
        self,
        column: str,
        granularity: Granularity,
        precision: Precision = Precision.TIMESTAMP,
    ) -> str:
        """SQL expression truncating ``column`` (already quoted) to the start of its bucket."""
        if granularity == Granularity.HOUR and precision == Precision.DATE:
            raise ConfigurationError.single(
                "INVALID_GRANULARITY",
                f"Column {column} holds dates and cannot be bucketed by hour",
            )
        return self.time_bucket(column, granularity, precision)
