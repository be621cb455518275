"""Shared fixtures: an in-memory backend and event factories."""

import asyncio
import json
from typing import Optional

import pytest

from session_inspector.backend.base import EventBackend
from session_inspector.config import InspectorConfig
from session_inspector.models import (
    AgentScope,
    EventPage,
    FileDiff,
    FileEdit,
    ProjectInfo,
    Scope,
    SearchMatch,
    SearchResponse,
    SessionEvent,
    SessionInfo,
    SessionScope,
)

PROJECT = "/home/dev/webapp"
SESSION_A = SessionScope(PROJECT, "aaaaaaaa-0000-0000-0000-000000000001")
SESSION_B = SessionScope(PROJECT, "bbbbbbbb-0000-0000-0000-000000000002")
AGENT_X = AgentScope(PROJECT, "x1")
AGENT_Y = AgentScope(PROJECT, "y2")


def make_event(sequence: int, event_type: str = "user", **kwargs) -> SessionEvent:
    """Event whose byte offset is derived from its sequence."""
    kwargs.setdefault("byte_offset", sequence * 100)
    kwargs.setdefault("preview", f"event {sequence}")
    if event_type == "user":
        kwargs.setdefault("user_type", "external")
    return SessionEvent(sequence=sequence, event_type=event_type, **kwargs)


def make_log(count: int, **kwargs) -> list[SessionEvent]:
    """`count` events, oldest first."""
    return [make_event(i, **kwargs) for i in range(count)]


class FakeBackend(EventBackend):
    """In-memory backend whose calls can be delayed or made to fail.

    `delays` and `failures` are keyed by method name, or by
    (method name, scope) for a single timeline.
    """

    name = "fake"
    display_name = "Fake"

    def __init__(self, logs: Optional[dict[Scope, list[SessionEvent]]] = None):
        super().__init__()
        self.logs: dict[Scope, list[SessionEvent]] = logs or {}
        self.edits: dict[Scope, list[FileEdit]] = {}
        self.diffs: dict[str, list[FileDiff]] = {}
        self.projects: list[ProjectInfo] = []
        self.search_results: dict[str, SearchResponse] = {}
        self.delays: dict = {}
        self.failures: dict = {}
        self.calls: list[tuple] = []
        self.watched: set[Scope] = set()

    async def _checkpoint(self, method: str, scope: Optional[Scope] = None, *args):
        self.calls.append((method, scope) + args)
        delay = self.delays.get((method, scope), self.delays.get(method, 0))
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        error = self.failures.get((method, scope), self.failures.get(method))
        if error is not None:
            raise error

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _page(self, scope: Scope, offset: int, limit: int) -> EventPage:
        events = list(reversed(self.logs.get(scope, [])))
        page = events[offset:offset + limit]
        return EventPage(page, len(events), offset, offset + len(page) < len(events))

    async def list_projects(self) -> list[ProjectInfo]:
        await self._checkpoint("list_projects")
        return list(self.projects)

    async def list_sessions(self, project: str) -> list[SessionInfo]:
        await self._checkpoint("list_sessions")
        return [SessionInfo(s.session_id) for s in self.logs if isinstance(s, SessionScope)]

    async def list_session_events(self, scope: SessionScope, offset: int, limit: int) -> EventPage:
        await self._checkpoint("list_events", scope, offset, limit)
        return self._page(scope, offset, limit)

    async def list_subagent_events(self, scope: AgentScope, offset: int, limit: int) -> EventPage:
        await self._checkpoint("list_events", scope, offset, limit)
        return self._page(scope, offset, limit)

    async def search_events(self, scope: Scope, query: str, max_results: int) -> SearchResponse:
        await self._checkpoint("search_events", scope, query)
        await asyncio.sleep(self.delays.get(("search_events", query), 0))
        if query in self.search_results:
            return self.search_results[query]
        found = [
            SearchMatch(e.sequence, e.byte_offset, e.preview)
            for e in self.logs.get(scope, [])
            if query.lower() in e.preview.lower()
        ]
        return SearchResponse(found[:max_results], len(self.logs.get(scope, [])), len(found) > max_results)

    async def get_events_by_offsets(self, scope: Scope, pairs: list[tuple[int, int]]) -> list[SessionEvent]:
        await self._checkpoint("get_events_by_offsets", scope, tuple(pairs))
        by_offset = {e.byte_offset: e for e in self.logs.get(scope, [])}
        return [by_offset[offset] for _, offset in pairs if offset in by_offset]

    async def get_raw_payload(self, scope: Scope, byte_offset: int) -> Optional[str]:
        await self._checkpoint("get_raw_payload", scope, byte_offset)
        await asyncio.sleep(self.delays.get(("get_raw_payload", byte_offset), 0))
        for event in self.logs.get(scope, []):
            if event.byte_offset == byte_offset:
                return json.dumps({"sequence": event.sequence, "type": event.event_type})
        return None

    async def list_file_edits(self, scope: Scope) -> list[FileEdit]:
        await self._checkpoint("list_file_edits", scope)
        return list(self.edits.get(scope, []))

    async def get_file_diffs(self, scope: SessionScope, file_path: str) -> list[FileDiff]:
        await self._checkpoint("get_file_diffs", scope, file_path)
        await asyncio.sleep(self.delays.get(("get_file_diffs", file_path), 0))
        return list(self.diffs.get(file_path, []))

    async def watch(self, scope: Scope) -> None:
        await self._checkpoint("watch", scope)
        self.watched.add(scope)

    async def unwatch(self, scope: Scope) -> None:
        await self._checkpoint("unwatch", scope)
        self.watched.discard(scope)

    def append(self, scope: Scope, count: int = 1):
        """Grow a log the way a running session does."""
        log = self.logs.setdefault(scope, [])
        start = len(log)
        log.extend(make_event(start + i) for i in range(count))


@pytest.fixture
def backend():
    return FakeBackend({
        SESSION_A: make_log(250),
        SESSION_B: make_log(3),
        AGENT_X: make_log(4),
        AGENT_Y: make_log(2),
    })


@pytest.fixture
def config(tmp_path):
    return InspectorConfig(
        projects_dir=tmp_path,
        page_size=200,
        search_debounce=0.01,
        flash_duration=0.05,
        watch_poll_interval=0.01,
    )
