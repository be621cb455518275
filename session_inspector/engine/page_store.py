"""Paginated window over one timeline's event log."""

import logging
from typing import Callable, Optional

from ..backend.base import EventBackend
from ..config import PAGE_SIZE
from ..models import PageWindow, Scope

logger = logging.getLogger(__name__)


class EventPageStore:
    """Holds the loaded, newest-first prefix of a log plus its cursor.

    Pages are requested in a fixed order (offset 0, then len(events), ...)
    and simply concatenated; page N+1 always holds strictly older events
    than page N.

    Every request captures the selection generation when it is issued. If
    the selection changed before the response arrives, the response is
    dropped and the current window is returned untouched.
    """

    def __init__(
        self,
        backend: EventBackend,
        page_size: int = PAGE_SIZE,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.backend = backend
        self.page_size = page_size
        self.on_change = on_change
        self.scope: Optional[Scope] = None
        self.window = PageWindow.empty()
        self.previous: Optional[PageWindow] = None
        self.loading = False
        self.loading_more = False
        self.loaded = False
        self.last_error: Optional[Exception] = None
        self._generation = 0

    def _notify(self):
        if self.on_change:
            self.on_change()

    def reset(self, scope: Optional[Scope]):
        """Switch to a new selection and drop everything loaded for the old one."""
        self._generation += 1
        self.scope = scope
        self.window = PageWindow.empty()
        self.previous = None
        self.loading = False
        self.loading_more = False
        self.loaded = False
        self.last_error = None

    def _is_stale(self, generation: int, scope: Scope) -> bool:
        return generation != self._generation or scope != self.scope

    async def load_first_page(self, scope: Scope) -> PageWindow:
        """Load the newest page, replacing any prior window. Never raises."""
        self.reset(scope)
        return await self._fetch_first_page(scope)

    async def refresh(self, scope: Scope) -> PageWindow:
        """Reload the newest page; the old window stays in `previous` for diffing."""
        if scope != self.scope:
            return await self.load_first_page(scope)
        return await self._fetch_first_page(scope)

    async def _fetch_first_page(self, scope: Scope) -> PageWindow:
        generation = self._generation
        self.loading = True
        self._notify()
        try:
            page = await self.backend.list_events(scope, 0, self.page_size)
        except Exception as e:
            if self._is_stale(generation, scope):
                return self.window
            logger.warning(f"Failed to load events for {scope.key}: {e}")
            self.last_error = e
            self.previous = self.window
            self.window = PageWindow.empty()
            self.loaded = False
            self.loading = False
            return self.window

        if self._is_stale(generation, scope):
            logger.debug(f"Discarding stale first page for {scope.key}")
            return self.window

        self.previous = self.window
        self.window = PageWindow(
            events=tuple(page.events),
            total_count=page.total_count,
            offset=len(page.events),
            has_more=page.has_more,
        )
        self.loading = False
        self.loaded = True
        self.last_error = None
        return self.window

    async def load_more(self, scope: Scope) -> PageWindow:
        """Append the next older page.

        A no-op when there is nothing more or when another `load_more` for
        this window is still in flight; that second call is dropped, the
        scroll trigger will simply fire again.
        """
        window = self.window
        if scope != self.scope or not window.has_more or self.loading_more:
            return window

        generation = self._generation
        self.loading_more = True
        self._notify()
        try:
            page = await self.backend.list_events(scope, len(window.events), self.page_size)
        except Exception as e:
            if not self._is_stale(generation, scope):
                logger.warning(f"Failed to load more events for {scope.key}: {e}")
                self.last_error = e
                self.loading_more = False
            return self.window

        if self._is_stale(generation, scope):
            logger.debug(f"Discarding stale page for {scope.key}")
            return self.window
        self.loading_more = False
        if self.window is not window:
            # a refresh replaced the window while this page was in flight
            logger.debug(f"Discarding page for replaced window of {scope.key}")
            return self.window

        events = window.events + tuple(page.events)
        self.previous = window
        self.window = PageWindow(
            events=events,
            total_count=page.total_count,
            offset=len(events),
            has_more=page.has_more,
        )
        return self.window
