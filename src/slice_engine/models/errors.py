"""Structured error details and the exception taxonomy raised by the engine."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """A structured error naming the metric, source or relation that caused it."""

    code: str
    message: str
    metric: str | None = None
    source: str | None = None
    relation: str | None = None


class EngineError(Exception):
    """Base class for fatal, per-request engine errors."""

    def __init__(self, errors: list[ErrorDetail]) -> None:
        self.errors = errors
        messages = "; ".join(e.message for e in errors)
        super().__init__(messages)

    @classmethod
    def single(
        cls,
        code: str,
        message: str,
        *,
        metric: str | None = None,
        source: str | None = None,
        relation: str | None = None,
    ) -> EngineError:
        return cls(
            [
                ErrorDetail(
                    code=code,
                    message=message,
                    metric=metric,
                    source=source,
                    relation=relation,
                )
            ]
        )

    @property
    def codes(self) -> list[str]:
        return [e.code for e in self.errors]


class ConfigurationError(EngineError):
    """Invalid schema or request: cycles, unknown references, bad keys. Never retried."""


class JoinResolutionError(EngineError):
    """A required source cannot be connected into the request's join plan."""


class ExecutionError(EngineError):
    """A fetch failed, timed out or was cancelled; no partial result is returned."""
