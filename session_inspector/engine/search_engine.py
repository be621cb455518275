"""Debounced full-text search correlated back into timeline events."""

import asyncio
import logging
from typing import Callable, Optional

from ..backend.base import EventBackend
from ..config import SEARCH_DEBOUNCE_SECONDS, SEARCH_MAX_RESULTS
from ..models import Scope, SearchResponse, SessionEvent

logger = logging.getLogger(__name__)


class SearchCorrelationEngine:
    """Two-phase search: match positions first, then the full events at them.

    Each keystroke restarts the debounce timer, so only the last query of a
    burst reaches the backend. Requests already sent are never cancelled: if
    an older query resolves after a newer one, its result is applied last.
    Results for a previous selection (scope change) or issued before a clear
    are dropped.
    """

    def __init__(
        self,
        backend: EventBackend,
        debounce: float = SEARCH_DEBOUNCE_SECONDS,
        max_results: int = SEARCH_MAX_RESULTS,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.backend = backend
        self.debounce = debounce
        self.max_results = max_results
        self.on_change = on_change

        self.scope: Optional[Scope] = None
        self.query = ""
        self.response: Optional[SearchResponse] = None
        self.correlated_events: list[SessionEvent] = []
        self.last_error: Optional[Exception] = None

        self._generation = 0
        self._in_flight = 0
        self._correlating = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    # -- state --

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    @property
    def correlating(self) -> bool:
        return self._correlating > 0

    @property
    def is_active(self) -> bool:
        """A match list (possibly empty) is held."""
        return self.response is not None

    @property
    def is_correlated(self) -> bool:
        return bool(self.correlated_events)

    @property
    def match_sequences(self) -> Optional[set[int]]:
        if self.response is None:
            return None
        return {m.sequence for m in self.response.matches}

    @property
    def snippet_map(self) -> dict[int, str]:
        if self.response is None:
            return {}
        return {m.sequence: m.snippet for m in self.response.matches}

    @property
    def match_count(self) -> int:
        return len(self.response.matches) if self.response else 0

    @property
    def truncated(self) -> bool:
        return bool(self.response and self.response.truncated)

    def _notify(self):
        if self.on_change:
            self.on_change()

    # -- transitions --

    def set_scope(self, scope: Optional[Scope]):
        """New selection: forget the query and everything in flight."""
        self.scope = scope
        self.query = ""
        self._clear()

    def clear(self):
        self.query = ""
        self._clear()
        self._notify()

    def _clear(self):
        self._cancel_timer()
        self._generation += 1
        self._in_flight = 0
        self._correlating = 0
        self.response = None
        self.correlated_events = []
        self.last_error = None

    def set_query(self, query: str):
        """Record a keystroke; the request goes out after the quiet period."""
        self._cancel_timer()
        if not query.strip() or self.scope is None:
            self.clear()
            return
        self.query = query
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._fire, query)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, query: str):
        self._timer = None
        task = asyncio.ensure_future(self.run_query(query))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_query(self, query: str):
        """Match, then correlate. Errors clear the results and are logged."""
        scope = self.scope
        if scope is None:
            return
        generation = self._generation

        def stale() -> bool:
            return generation != self._generation

        self._in_flight += 1
        self._notify()
        try:
            response = await self.backend.search_events(scope, query, self.max_results)
            if stale():
                logger.debug(f"Discarding stale search results for {query!r}")
                return
            self.response = response
            self.last_error = None

            if not response.matches:
                self.correlated_events = []
                return

            ordered = sorted(response.matches, key=lambda m: m.sequence, reverse=True)
            pairs = [(m.sequence, m.byte_offset) for m in ordered]
            self._correlating += 1
            self._notify()
            try:
                events = await self.backend.get_events_by_offsets(scope, pairs)
            finally:
                if not stale():
                    self._correlating -= 1
            if stale():
                logger.debug(f"Discarding stale correlated events for {query!r}")
                return
            self.correlated_events = sorted(events, key=lambda e: e.sequence, reverse=True)
        except Exception as e:
            if stale():
                return
            logger.warning(f"Search for {query!r} failed: {e}")
            self.last_error = e
            self.response = None
            self.correlated_events = []
        finally:
            if not stale():
                self._in_flight -= 1
                self._notify()

    async def wait_idle(self):
        """Wait until no debounce timer is pending and no request is in flight."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(max(self.debounce / 4, 0.001))
