"""Event stream controller: timelines, selection and the derived view."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ..backend.base import EventBackend
from ..config import InspectorConfig
from ..models import AgentScope, FileDiff, FileEdit, Scope, SessionEvent, SessionScope
from .filters import ALL, FILTER_CATEGORIES, FilterMode, apply_filters, select_base_events
from .flash import FlashTracker
from .layout import Pane, PanelLayout, compute_layout
from .page_store import EventPageStore
from .realtime import RealtimeWatcher
from .search_engine import SearchCorrelationEngine

logger = logging.getLogger(__name__)

EVENTS_TAB = "events"
EDITS_TAB = "edits"

Listener = Callable[[], None]


@dataclass(frozen=True)
class TimelineView:
    """Everything the presentation layer needs to render one timeline."""

    visible_events: Sequence[SessionEvent] = ()
    highlighted_indices: Optional[frozenset[int]] = None
    is_search_mode: bool = False
    total_count: int = 0
    has_more: bool = False
    loading: bool = False
    loading_more: bool = False
    search_loading: bool = False
    snippet_map: dict[int, str] = field(default_factory=dict)
    match_count: int = 0
    truncated: bool = False
    flashing: frozenset[int] = frozenset()


class TimelineController:
    """One timeline (main session or sub-agent) and its three engines."""

    def __init__(
        self,
        backend: EventBackend,
        config: Optional[InspectorConfig] = None,
        on_change: Optional[Listener] = None,
    ):
        config = config or InspectorConfig()
        self.backend = backend
        self.on_change = on_change
        self.scope: Optional[Scope] = None
        self.store = EventPageStore(backend, config.page_size, on_change=self._notify)
        self.search = SearchCorrelationEngine(
            backend,
            debounce=config.search_debounce,
            max_results=config.search_max_results,
            on_change=self._notify,
        )
        self.watcher = RealtimeWatcher(backend, self._on_backend_change)
        self.flash = FlashTracker(config.flash_duration, on_change=self._notify)

        self.active_category = ALL
        self.filter_mode = FilterMode.FILTER
        self.events_tab_active = True
        self.file_edits: list[FileEdit] = []

    def _notify(self):
        if self.on_change:
            self.on_change()

    # -- lifecycle --

    async def open(self, scope: Scope, load_events: bool = True):
        """Select `scope`: subscribe to its changes and (optionally) load it."""
        self.watcher.stop()
        self.scope = scope
        self.store.reset(scope)
        self.search.set_scope(scope)
        self.flash.reset()
        self.file_edits = []
        self._notify()

        await self.watcher.start(scope)
        if self.scope != scope:
            return
        if load_events:
            await self.load_first_page()
        await self.refresh_file_edits()

    def close(self):
        """Drop the selection; in-flight results for it will be discarded."""
        self.watcher.stop()
        self.scope = None
        self.store.reset(None)
        self.search.set_scope(None)
        self.flash.reset()
        self.file_edits = []

    # -- loading --

    async def load_first_page(self):
        scope = self.scope
        if scope is None:
            return
        self.flash.reset()
        window = await self.store.load_first_page(scope)
        if self.scope == scope:
            self.flash.update(window.byte_offsets)
            self._notify()

    async def refresh(self):
        scope = self.scope
        if scope is None:
            return
        window = await self.store.refresh(scope)
        if self.scope == scope:
            self.flash.update(window.byte_offsets)
            self._notify()

    async def load_more(self):
        """Next older page; ignored while search results replace the timeline."""
        scope = self.scope
        if scope is None or self.search.is_correlated:
            return
        before = self.store.window
        window = await self.store.load_more(scope)
        if self.scope == scope:
            if window is not before:
                # older events are not arrivals
                self.flash.update(window.byte_offsets, flash=False)
            self._notify()

    async def refresh_file_edits(self):
        """Reload the file-edit list; sub-agent timelines have none."""
        scope = self.scope
        if not isinstance(scope, SessionScope):
            return
        try:
            edits = await self.backend.list_file_edits(scope)
        except Exception as e:
            if self.scope == scope:
                logger.warning(f"Failed to load file edits for {scope.key}: {e}")
                self.file_edits = []
                self._notify()
            return
        if self.scope == scope:
            self.file_edits = list(edits)
            self._notify()

    async def _on_backend_change(self, scope: Scope):
        """The file behind this timeline changed on disk."""
        if scope != self.scope:
            return
        await self.refresh_file_edits()
        if self.store.loaded or self.events_tab_active:
            await self.refresh()

    # -- filter / search --

    def set_filter(self, category: str):
        if category not in FILTER_CATEGORIES:
            raise ValueError(f"Unknown filter category: {category}")
        self.active_category = category
        self._notify()

    def cycle_filter(self) -> str:
        idx = FILTER_CATEGORIES.index(self.active_category)
        self.set_filter(FILTER_CATEGORIES[(idx + 1) % len(FILTER_CATEGORIES)])
        return self.active_category

    def set_filter_mode(self, mode: FilterMode):
        self.filter_mode = FilterMode(mode)
        self._notify()

    def set_search_query(self, query: str):
        self.search.set_query(query)
        self._notify()

    # -- derived view --

    @property
    def is_search_mode(self) -> bool:
        return self.search.is_correlated

    def view(self) -> TimelineView:
        window = self.store.window
        base = select_base_events(window.events, self.search.correlated_events)
        result = apply_filters(
            base,
            self.active_category,
            self.filter_mode,
            self.search.match_sequences,
            self.search.is_correlated,
        )
        return TimelineView(
            visible_events=result.events,
            highlighted_indices=result.highlighted,
            is_search_mode=self.is_search_mode,
            total_count=window.total_count,
            has_more=window.has_more,
            loading=self.store.loading,
            loading_more=self.store.loading_more,
            search_loading=self.search.loading or self.search.correlating,
            snippet_map=self.search.snippet_map,
            match_count=self.search.match_count,
            truncated=self.search.truncated,
            flashing=self.flash.flashing,
        )

    async def wait_idle(self):
        await self.search.wait_idle()
        await self.watcher.wait_idle()


class EventStreamController:
    """Main timeline, optional sub-agent timeline, and the shared selection.

    At most one event is open in the detail inspector across both
    timelines. The sub-agent timeline can be open without any detail.
    """

    def __init__(self, backend: EventBackend, config: Optional[InspectorConfig] = None):
        self.backend = backend
        self.config = config or InspectorConfig()
        self.main = TimelineController(backend, self.config, on_change=self._notify)
        self.sub: Optional[TimelineController] = None

        self.project: Optional[str] = None
        self.session_id: Optional[str] = None
        self.active_tab = EVENTS_TAB

        self.selected_event: Optional[SessionEvent] = None
        self.selected_subagent_id: Optional[str] = None
        self.selected_subagent_event: Optional[SessionEvent] = None

        self.raw_payload: Optional[str] = None
        self.raw_payload_loading = False
        self._detail_generation = 0

        self.selected_file_edit: Optional[FileEdit] = None
        self.file_diffs: list[FileDiff] = []
        self.file_diffs_loading = False

        self._listeners: list[Listener] = []

    # -- listeners --

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(f"View listener failed: {e}")

    # -- derived state --

    @property
    def detail_open(self) -> bool:
        return (
            self.selected_event is not None
            or self.selected_subagent_event is not None
            or self.selected_file_edit is not None
        )

    @property
    def sub_open(self) -> bool:
        return self.selected_subagent_id is not None

    @property
    def layout(self) -> PanelLayout:
        return compute_layout(self.sub_open, self.detail_open)

    @property
    def detail_event(self) -> Optional[SessionEvent]:
        return self.selected_subagent_event or self.selected_event

    @property
    def summary_map(self) -> dict[str, str]:
        """leaf uuid -> summary text, from summary events loaded so far."""
        summaries = {}
        for event in self.main.store.window.events:
            if event.event_type == "summary" and event.leaf_uuid and event.summary:
                summaries[event.leaf_uuid] = event.summary
        return summaries

    @property
    def file_edits(self) -> list[FileEdit]:
        return self.main.file_edits

    # -- selection --

    async def select_session(self, project: str, session_id: str):
        """Switch the main timeline to another session; closes any sub-agent."""
        self._close_subagent()
        self.selected_subagent_id = None
        self._clear_detail()
        self.project = project
        self.session_id = session_id
        self.main.events_tab_active = self.active_tab == EVENTS_TAB
        await self.main.open(
            SessionScope(project, session_id),
            load_events=self.main.events_tab_active,
        )

    async def set_active_tab(self, tab: str):
        self.active_tab = tab
        self.main.events_tab_active = tab == EVENTS_TAB
        if tab == EVENTS_TAB and self.selected_file_edit is not None:
            self.selected_file_edit = None
            self._cancel_detail()
        self._notify()
        if tab == EVENTS_TAB and self.main.scope is not None and not self.main.store.loaded:
            await self.main.load_first_page()

    async def select_event(self, event: Optional[SessionEvent]):
        """Open a main-timeline event in the detail inspector."""
        self.selected_subagent_event = None
        self.selected_file_edit = None
        self.selected_event = event
        await self._load_detail(self.main.scope, event)

    async def select_subagent_event(self, event: Optional[SessionEvent]):
        """Open a sub-agent event in the detail inspector."""
        self.selected_event = None
        self.selected_file_edit = None
        self.selected_subagent_event = event
        await self._load_detail(self.sub.scope if self.sub else None, event)

    async def select_file_edit(self, edit: Optional[FileEdit]):
        """Open the changes made to one edited file in the detail inspector."""
        self.selected_event = None
        self.selected_subagent_event = None
        self.selected_file_edit = edit
        self._cancel_detail()
        scope = self.main.scope
        if edit is None or not isinstance(scope, SessionScope):
            self._notify()
            return

        generation = self._detail_generation
        self.file_diffs_loading = True
        self._notify()
        try:
            diffs = await self.backend.get_file_diffs(scope, edit.path)
        except Exception as e:
            if generation != self._detail_generation:
                return
            logger.warning(f"Failed to load diffs for {edit.path}: {e}")
            diffs = []
        if generation != self._detail_generation:
            logger.debug(f"Discarding stale diffs for {edit.path}")
            return
        self.file_diffs = list(diffs)
        self.file_diffs_loading = False
        self._notify()

    async def select_subagent(self, agent_id: Optional[str]):
        """Open (or with None, close) the sub-agent timeline.

        The main timeline's detail selection is kept, so opening a sub-agent
        with a main event selected goes straight to the three-pane layout.
        """
        if agent_id == self.selected_subagent_id:
            return
        if self.selected_subagent_event is not None:
            self.selected_subagent_event = None
            self._cancel_detail()
        self._close_subagent()
        self.selected_subagent_id = agent_id

        if agent_id is None or self.project is None:
            self.selected_subagent_id = None
            self._notify()
            return

        self.sub = TimelineController(self.backend, self.config, on_change=self._notify)
        self._notify()
        await self.sub.open(AgentScope(self.project, agent_id))

    async def collapse_pane(self, pane: Pane):
        """A pane was collapsed by hand; turn that into the matching deselection."""
        if pane == Pane.SUB:
            await self.select_subagent(None)
        elif pane == Pane.DETAIL:
            if self.selected_file_edit is not None:
                await self.select_file_edit(None)
            elif self.selected_subagent_event is not None:
                await self.select_subagent_event(None)
            else:
                await self.select_event(None)

    def _close_subagent(self):
        if self.sub is not None:
            self.sub.close()
            self.sub = None

    def _cancel_detail(self):
        self._detail_generation += 1
        self.raw_payload = None
        self.raw_payload_loading = False
        self.file_diffs = []
        self.file_diffs_loading = False

    def _clear_detail(self):
        self.selected_event = None
        self.selected_subagent_event = None
        self.selected_file_edit = None
        self._cancel_detail()

    async def _load_detail(self, scope: Optional[Scope], event: Optional[SessionEvent]):
        self._cancel_detail()
        if event is None or scope is None:
            self._notify()
            return

        generation = self._detail_generation
        self.raw_payload_loading = True
        self._notify()
        try:
            raw = await self.backend.get_raw_payload(scope, event.byte_offset)
        except Exception as e:
            if generation != self._detail_generation:
                return
            logger.warning(f"Failed to load raw payload at {event.byte_offset} for {scope.key}: {e}")
            raw = None
        if generation != self._detail_generation:
            logger.debug(f"Discarding stale raw payload at {event.byte_offset}")
            return
        self.raw_payload = raw
        self.raw_payload_loading = False
        self._notify()

    # -- passthroughs used by the presentation layer --

    def set_filter(self, category: str):
        self.main.set_filter(category)

    def set_filter_mode(self, mode: FilterMode):
        self.main.set_filter_mode(mode)

    def set_search_query(self, query: str):
        self.main.set_search_query(query)

    async def load_more(self):
        await self.main.load_more()

    async def load_more_subagent(self):
        sub = self.sub
        if sub is not None:
            await sub.load_more()

    async def close(self):
        """Tear down both timelines and wait for their unwatch requests."""
        sub = self.sub
        self._close_subagent()
        self.main.close()
        self._clear_detail()
        if sub is not None:
            await sub.wait_idle()
        await self.main.wait_idle()
