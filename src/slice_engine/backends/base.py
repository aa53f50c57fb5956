"""Backend contract: capability flags plus execution of push-down plans."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

from slice_engine.models.plan import (
    JoinedBackendPlan,
    SingleSourcePlan,
    SourceQuery,
    StagedBackendPlan,
)
from slice_engine.models.query import Row

BackendQuery = SourceQuery | SingleSourcePlan | StagedBackendPlan | JoinedBackendPlan


@dataclass(frozen=True)
class BackendCapabilities:
    """What a backend can do in one query."""

    name: str
    supports_joins: bool = True
    supports_staged_computation: bool = True


class Backend(ABC):
    """A query executor for the sources of one connection.

    ``execute`` must be safe to call from several threads at once: the
    software join fetches its legs concurrently. Implementations should
    check ``cancel_event`` where they can and give up early once it is set.
    """

    @property
    @abstractmethod
    def capabilities(self) -> BackendCapabilities: ...

    @abstractmethod
    def execute(
        self, query: BackendQuery, cancel_event: threading.Event | None = None
    ) -> list[Row]: ...
