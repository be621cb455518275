"""Session Inspector TUI application."""

import logging
from typing import Optional

from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header, Input, ListView, Static

from .backend import EventBackend, get_backend
from .config import InspectorConfig
from .engine.controller import EDITS_TAB, EVENTS_TAB, EventStreamController, TimelineView
from .engine.filters import ALL, FilterMode
from .engine.layout import Pane
from .models import ProjectInfo, SessionInfo
from .ui import APP_CSS, DetailPanel, EventItem, FileEditItem

logger = logging.getLogger(__name__)

CONTAINERS = {
    Pane.MAIN: "#main-container",
    Pane.SUB: "#sub-container",
    Pane.DETAIL: "#detail-container",
}


class SessionInspectorApp(App):
    """TUI for following one session's event log, its sub-agents and raw records."""

    CSS = APP_CSS

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("slash", "activate_search", "Search"),
        Binding("escape", "back", "Back"),
        Binding("f", "cycle_filter", "Filter"),
        Binding("m", "toggle_filter_mode", "Highlight"),
        Binding("a", "open_subagent", "Sub-agent"),
        Binding("tab", "switch_pane", "Tab: Panes", priority=True),
        Binding("r", "refresh", "Refresh"),
        Binding("e", "toggle_edits", "Edits"),
        Binding("s", "next_session", "Next Session"),
        Binding("p", "next_project", "Next Project"),
    ]

    def __init__(
        self,
        project: str,
        session_id: Optional[str] = None,
        backend: Optional[EventBackend] = None,
        config: Optional[InspectorConfig] = None,
    ):
        super().__init__()
        self.config = config or InspectorConfig.from_env()
        self.backend = backend or get_backend("claude-code", config=self.config)
        self.controller = EventStreamController(self.backend, self.config)
        self.project = project
        self.initial_session_id = session_id
        self.sessions: list[SessionInfo] = []
        self.projects: list[ProjectInfo] = []
        self.focus_pane = Pane.MAIN

        self._render_pending = False
        self._main_keys: tuple = ()
        self._sub_keys: tuple = ()
        self._edit_keys: tuple = ()
        self._detail_key: Optional[tuple] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="filter-bar")
        yield Input(placeholder="Search events... (terms, AND, OR; Escape to clear)", id="search-input")
        with Horizontal(id="panes"):
            with Vertical(id="main-container"):
                yield Static("[bold]Events[/]", id="main-header", classes="list-header")
                yield ListView(id="main-list")
                yield ListView(id="edits-list")
            with Vertical(id="sub-container"):
                yield Static("[bold]Sub-agent[/]", id="sub-header", classes="list-header")
                yield ListView(id="sub-list")
            with Vertical(id="detail-container"):
                yield DetailPanel(id="detail-panel")
        yield Footer()

    def on_mount(self):
        self.title = "Session Inspector"
        self.sub_title = self.project
        self.controller.add_listener(self._schedule_render)
        self._update_filter_bar()
        self.query_one("#main-list", ListView).focus()
        self._load_sessions()

    async def on_unmount(self):
        self.controller.remove_listener(self._schedule_render)
        await self.controller.close()
        await self.backend.close()

    # -- sessions --

    @work(group="sessions")
    async def _load_sessions(self):
        await self._open_project_sessions()

    async def _open_project_sessions(self):
        self.sessions = await self.backend.list_sessions(self.project)
        if not self.sessions:
            self.query_one("#main-header", Static).update(
                f"[bold red]No sessions found[/] [dim]for {self.project}[/]"
            )
            return

        session_id = self.initial_session_id or self.sessions[0].id
        if session_id not in {s.id for s in self.sessions}:
            self.notify(f"Session {session_id} not found, opening latest", severity="warning")
            session_id = self.sessions[0].id
        await self._open_session(session_id)

    async def _open_session(self, session_id: str):
        self.sub_title = f"{self.project} / {session_id}"
        self.query_one("#search-input", Input).value = ""
        self._main_keys = ()
        self._sub_keys = ()
        await self.controller.select_session(self.project, session_id)

    @work(group="sessions")
    async def _switch_project(self):
        if not self.projects:
            self.projects = await self.backend.list_projects()
        paths = [p.path for p in self.projects]
        if not paths:
            self.notify("No projects found", severity="warning")
            return
        idx = paths.index(self.project) if self.project in paths else -1
        self.project = paths[(idx + 1) % len(paths)]
        self.initial_session_id = None
        self.sub_title = self.project
        await self._open_project_sessions()

    def action_next_project(self):
        self._switch_project()

    @work(group="sessions")
    async def _switch_session(self, session_id: str):
        await self._open_session(session_id)

    def action_next_session(self):
        if len(self.sessions) < 2 or not self.controller.session_id:
            return
        ids = [s.id for s in self.sessions]
        try:
            idx = ids.index(self.controller.session_id)
        except ValueError:
            idx = -1
        self._switch_session(ids[(idx + 1) % len(ids)])

    # -- rendering --

    def _schedule_render(self):
        """Coalesce controller notifications into one render per refresh."""
        if self._render_pending:
            return
        self._render_pending = True
        self.call_after_refresh(self._render)

    def _render(self):
        self._render_pending = False
        if not self.is_running:
            return
        controller = self.controller

        self._apply_layout()
        self._update_filter_bar()

        main_view = controller.main.view()
        self._update_main_header(main_view)
        if controller.active_tab == EVENTS_TAB:
            self._main_keys = self._render_timeline(
                self.query_one("#main-list", ListView), main_view, self._main_keys
            )
        else:
            self._render_edits()

        if controller.sub is not None:
            sub_view = controller.sub.view()
            self.query_one("#sub-header", Static).update(
                f"[bold]Sub-agent[/] [white]{controller.selected_subagent_id}[/] "
                f"[dim]({len(sub_view.visible_events)}/{sub_view.total_count})[/]"
            )
            self._sub_keys = self._render_timeline(
                self.query_one("#sub-list", ListView), sub_view, self._sub_keys
            )
        elif self._sub_keys:
            self.query_one("#sub-list", ListView).clear()
            self._sub_keys = ()

        self._render_detail()

    def _apply_layout(self):
        layout = self.controller.layout
        for pane, selector in CONTAINERS.items():
            container = self.query_one(selector)
            size = layout.size_of(pane)
            container.display = size > 0
            if size:
                container.styles.width = f"{size}%"

        if layout.is_collapsed(self.focus_pane):
            self.focus_pane = Pane.MAIN
            self._focus_pane_widget()

    def _render_timeline(self, lv: ListView, view: TimelineView, previous_keys: tuple) -> tuple:
        """Rebuild `lv` when its rows changed; otherwise only restyle them."""
        keys = (
            view.is_search_mode,
            tuple(e.byte_offset for e in view.visible_events),
        )
        if keys != previous_keys:
            highlighted_offset = None
            if isinstance(lv.highlighted_child, EventItem):
                highlighted_offset = lv.highlighted_child.event.byte_offset

            lv.clear()
            items = [
                EventItem(
                    event,
                    snippet=view.snippet_map.get(event.sequence) if view.is_search_mode else None,
                )
                for event in view.visible_events
            ]
            if items:
                lv.mount(*items)

            if highlighted_offset is not None:
                for idx, item in enumerate(items):
                    if item.event.byte_offset == highlighted_offset:
                        lv.index = idx
                        break
        else:
            items = [child for child in lv.children if isinstance(child, EventItem)]

        highlighted = view.highlighted_indices or frozenset()
        for idx, item in enumerate(items):
            item.set_class(item.event.byte_offset in view.flashing, "flash")
            item.set_class(idx in highlighted, "match")
        return keys

    def _render_edits(self):
        edits = self.controller.file_edits
        keys = tuple(edits)
        if keys == self._edit_keys:
            return
        self._edit_keys = keys
        lv = self.query_one("#edits-list", ListView)
        lv.clear()
        if edits:
            lv.mount(*[FileEditItem(edit) for edit in edits])

    def _render_detail(self):
        controller = self.controller
        detail = self.query_one("#detail-panel", DetailPanel)
        edit = controller.selected_file_edit
        if edit is not None:
            key = (edit, tuple(controller.file_diffs), controller.file_diffs_loading)
            if key != self._detail_key:
                self._detail_key = key
                detail.show_file_diffs(edit, controller.file_diffs, loading=controller.file_diffs_loading)
            return
        event = controller.detail_event
        if event is None:
            if detail.event is not None or detail.file_edit is not None:
                detail.clear_display()
            self._detail_key = None
            return
        summaries = controller.summary_map
        summary = summaries.get(event.uuid) or summaries.get(event.logical_parent_uuid)
        key = (event, controller.raw_payload, controller.raw_payload_loading, summary)
        if key == self._detail_key:
            return
        self._detail_key = key
        detail.show_event(
            event,
            controller.raw_payload,
            loading=controller.raw_payload_loading,
            summary=summary,
        )

    def _update_main_header(self, view: TimelineView):
        header = self.query_one("#main-header", Static)
        if self.controller.active_tab == EDITS_TAB:
            header.update(f"[bold]File Edits[/] [dim]({len(self.controller.file_edits)})[/]")
            return

        text = Text()
        text.append("Events ", style="bold")
        text.append(f"({len(view.visible_events)}/{view.total_count})", style="dim")
        if view.loading:
            text.append("  loading...", style="dim")
        elif view.loading_more:
            text.append("  loading more...", style="dim")
        if view.search_loading:
            text.append("  searching...", style="yellow")
        elif self.controller.main.search.is_active:
            text.append(f"  {view.match_count} matches", style="bold yellow")
            if view.truncated:
                text.append(" (truncated)", style="yellow")
        header.update(text)

    def _update_filter_bar(self):
        main = self.controller.main
        text = Text()
        text.append("Filter: ", style="dim")
        text.append(f"[{main.active_category}] ", style="bold cyan" if main.active_category != ALL else "dim")
        text.append("Mode: ", style="dim")
        text.append(f"[{main.filter_mode.value}] ", style="bold cyan")
        text.append("Tab: ", style="dim")
        text.append(f"[{self.controller.active_tab}]", style="bold")
        if self.sessions:
            text.append(f" | {len(self.sessions)} sessions", style="dim")
        self.query_one("#filter-bar", Static).update(text)

    # -- selection --

    @on(ListView.Selected, "#main-list")
    def on_main_selected(self, event: ListView.Selected):
        if isinstance(event.item, EventItem):
            self._select_event(event.item.event)

    @on(ListView.Selected, "#edits-list")
    def on_edit_selected(self, event: ListView.Selected):
        if isinstance(event.item, FileEditItem):
            self._select_file_edit(event.item.edit)

    @on(ListView.Selected, "#sub-list")
    def on_sub_selected(self, event: ListView.Selected):
        if isinstance(event.item, EventItem):
            self._select_subagent_event(event.item.event)

    def _near_end(self, lv: ListView, timeline) -> bool:
        """Whether the cursor is close enough to the last row to fetch the next page."""
        if lv.index is None or timeline is None:
            return False
        view = timeline.view()
        if view.is_search_mode or not view.has_more:
            return False
        return lv.index >= len(lv.children) - self.config.load_more_threshold

    @on(ListView.Highlighted, "#main-list")
    def on_main_highlighted(self, event: ListView.Highlighted):
        if self._near_end(event.list_view, self.controller.main):
            self._load_more()

    @on(ListView.Highlighted, "#sub-list")
    def on_sub_highlighted(self, event: ListView.Highlighted):
        if self._near_end(event.list_view, self.controller.sub):
            self._load_more_subagent()

    @work(group="detail")
    async def _select_event(self, event):
        await self.controller.select_event(event)

    @work(group="detail")
    async def _select_subagent_event(self, event):
        await self.controller.select_subagent_event(event)

    @work(group="detail")
    async def _select_file_edit(self, edit):
        await self.controller.select_file_edit(edit)

    @work(group="pages")
    async def _load_more(self):
        await self.controller.load_more()

    @work(group="subagent-pages")
    async def _load_more_subagent(self):
        await self.controller.load_more_subagent()

    @work(group="subagent")
    async def _select_subagent(self, agent_id: Optional[str]):
        await self.controller.select_subagent(agent_id)

    @work(group="pages")
    async def _collapse(self, pane: Pane):
        await self.controller.collapse_pane(pane)

    def action_open_subagent(self):
        lv = self.query_one("#main-list", ListView)
        item = lv.highlighted_child
        if not isinstance(item, EventItem) or not item.event.launched_agent_id:
            self.notify("Highlighted event did not launch a sub-agent", severity="warning")
            return
        self._select_subagent(item.event.launched_agent_id)

    # -- filter / search --

    def action_cycle_filter(self):
        self.controller.main.cycle_filter()

    def action_toggle_filter_mode(self):
        mode = self.controller.main.filter_mode
        self.controller.set_filter_mode(
            FilterMode.HIGHLIGHT if mode == FilterMode.FILTER else FilterMode.FILTER
        )

    def action_activate_search(self):
        search_input = self.query_one("#search-input", Input)
        search_input.add_class("visible")
        search_input.focus()

    @on(Input.Changed, "#search-input")
    def on_search_changed(self, event: Input.Changed):
        self.controller.set_search_query(event.value)

    @on(Input.Submitted, "#search-input")
    def on_search_submitted(self, event: Input.Submitted):
        self.focus_pane = Pane.MAIN
        self._focus_pane_widget()

    def _clear_search(self):
        search_input = self.query_one("#search-input", Input)
        search_input.remove_class("visible")
        search_input.value = ""
        self.controller.set_search_query("")
        self.focus_pane = Pane.MAIN
        self._focus_pane_widget()

    # -- navigation --

    def action_back(self):
        """Escape: leave search, then close detail, then the sub-agent."""
        search_input = self.query_one("#search-input", Input)
        if search_input.has_focus or search_input.value:
            self._clear_search()
            return
        if self.controller.detail_open:
            self._collapse(Pane.DETAIL)
        elif self.controller.sub_open:
            self._collapse(Pane.SUB)
        else:
            self.action_quit()

    def action_switch_pane(self):
        layout = self.controller.layout
        order = [p for p in (Pane.MAIN, Pane.SUB, Pane.DETAIL) if not layout.is_collapsed(p)]
        idx = order.index(self.focus_pane) if self.focus_pane in order else -1
        self.focus_pane = order[(idx + 1) % len(order)]
        self._focus_pane_widget()

    def _focus_pane_widget(self):
        if self.focus_pane == Pane.SUB:
            self.query_one("#sub-list", ListView).focus()
        elif self.focus_pane == Pane.DETAIL:
            self.query_one("#detail-panel", DetailPanel).focus()
        elif self.controller.active_tab == EDITS_TAB:
            self.query_one("#edits-list", ListView).focus()
        else:
            self.query_one("#main-list", ListView).focus()

    def action_refresh(self):
        self._refresh()

    @work(group="pages")
    async def _refresh(self):
        await self.controller.main.refresh()
        await self.controller.main.refresh_file_edits()

    def action_toggle_edits(self):
        self._toggle_edits()

    @work(group="tabs")
    async def _toggle_edits(self):
        tab = EDITS_TAB if self.controller.active_tab == EVENTS_TAB else EVENTS_TAB
        self.query_one("#main-list", ListView).display = tab == EVENTS_TAB
        self.query_one("#edits-list", ListView).display = tab == EDITS_TAB
        self._edit_keys = ()
        self._main_keys = ()
        self.focus_pane = Pane.MAIN
        self._focus_pane_widget()
        await self.controller.set_active_tab(tab)
