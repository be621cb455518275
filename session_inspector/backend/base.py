"""Base class for event log backends."""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import (
    AgentScope,
    EventPage,
    FileDiff,
    FileEdit,
    ProjectInfo,
    Scope,
    SearchResponse,
    SessionEvent,
    SessionInfo,
    SessionScope,
)
from ..notifications import NotificationBus


class BackendError(Exception):
    """Raised by a backend for a request it cannot serve."""


class EventBackend(ABC):
    """Abstract source of session event logs.

    Every operation is a coroutine so the engine can keep several requests
    outstanding on one event loop. Change notifications are delivered on
    `self.bus`, keyed by scope.
    """

    name: str = ""
    display_name: str = ""

    def __init__(self, bus: Optional[NotificationBus] = None):
        self.bus = bus or NotificationBus()

    async def list_projects(self) -> list[ProjectInfo]:
        """Projects with session logs, newest activity first. Default: none."""
        return []

    @abstractmethod
    async def list_sessions(self, project: str) -> list[SessionInfo]:
        """Sessions of a project, newest activity first."""
        ...

    @abstractmethod
    async def list_session_events(self, scope: SessionScope, offset: int, limit: int) -> EventPage:
        """One descending page of a main session timeline."""
        ...

    @abstractmethod
    async def list_subagent_events(self, scope: AgentScope, offset: int, limit: int) -> EventPage:
        """One descending page of a sub-agent timeline."""
        ...

    async def list_events(self, scope: Scope, offset: int, limit: int) -> EventPage:
        if isinstance(scope, AgentScope):
            return await self.list_subagent_events(scope, offset, limit)
        return await self.list_session_events(scope, offset, limit)

    @abstractmethod
    async def search_events(self, scope: Scope, query: str, max_results: int) -> SearchResponse:
        """Search the whole log behind `scope`, not just a loaded page."""
        ...

    @abstractmethod
    async def get_events_by_offsets(
        self, scope: Scope, pairs: list[tuple[int, int]]
    ) -> list[SessionEvent]:
        """Full events for (sequence, byte_offset) pairs, in the given order."""
        ...

    @abstractmethod
    async def get_raw_payload(self, scope: Scope, byte_offset: int) -> Optional[str]:
        """The raw JSON line at `byte_offset`, passed through unmodified."""
        ...

    async def list_file_edits(self, scope: Scope) -> list[FileEdit]:
        """Files touched by the session. Default: none."""
        return []

    async def get_file_diffs(self, scope: SessionScope, file_path: str) -> list[FileDiff]:
        """Edit/Write changes applied to one file, in log order. Default: none."""
        return []

    @abstractmethod
    async def watch(self, scope: Scope) -> None:
        """Start publishing change notifications for `scope`. Idempotent."""
        ...

    @abstractmethod
    async def unwatch(self, scope: Scope) -> None:
        """Stop publishing change notifications for `scope`. Idempotent."""
        ...

    async def close(self) -> None:
        """Release watchers and other resources."""
        return None
