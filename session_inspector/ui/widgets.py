"""UI widgets for the session inspector TUI."""

import json
from typing import Optional

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import ScrollableContainer
from textual.widgets import ListItem, Static

from ..engine.filters import ASSISTANT, COMPACTION, CONTEXT, ME, SUBAGENT, SYSTEM, classify, display_label
from ..models import FileDiff, FileEdit, SessionEvent

CATEGORY_STYLES = {
    ME: "bold green",
    CONTEXT: "dim cyan",
    ASSISTANT: "bold magenta",
    SYSTEM: "yellow",
    COMPACTION: "bold red",
    SUBAGENT: "bold blue",
}


def truncate(text: str, max_len: int = 100) -> str:
    """Truncate text with ellipsis."""
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."


def format_timestamp(timestamp: Optional[str]) -> str:
    """HH:MM:SS out of an ISO-8601 timestamp."""
    if not timestamp or "T" not in timestamp:
        return "--:--:--"
    return timestamp.split("T", 1)[1][:8]


def format_raw_payload(raw: Optional[str]) -> str:
    if raw is None:
        return "{}"
    try:
        return json.dumps(json.loads(raw), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return raw


class EventItem(ListItem):
    """One row of a timeline."""

    def __init__(self, event: SessionEvent, snippet: Optional[str] = None):
        super().__init__()
        self.event = event
        self.snippet = snippet
        self._static: Optional[Static] = None

    def compose(self) -> ComposeResult:
        self._static = Static(self._build_text(100))
        yield self._static

    def on_resize(self, event) -> None:
        if self._static:
            self._static.update(self._build_text(self.size.width))

    def _build_text(self, width: int) -> Text:
        event = self.event
        label = display_label(event)
        style = CATEGORY_STYLES.get(classify(event), "dim")
        if event.launched_agent_id:
            style = CATEGORY_STYLES[SUBAGENT]

        text = Text()
        text.append(f"{event.sequence:>5}", style="dim")
        text.append(" │ ", style="dim")
        text.append(format_timestamp(event.timestamp), style="cyan")
        text.append(" │ ", style="dim")
        text.append(f"{truncate(label, 18):<18}", style=style)
        text.append(" │ ", style="dim")

        prefix_width = 40  # seq(5) + sep(3) + time(8) + sep(3) + label(18) + sep(3)
        body = self.snippet or event.preview or event.launched_agent_description or ""
        body = body.replace("\n", " ").strip()
        if event.launched_agent_id:
            text.append("▶ ", style="bold blue")
            prefix_width += 2
        text.append(truncate(body, max(20, width - prefix_width)), style="white")
        return text


class FileEditItem(ListItem):
    """One row of the file edits tab."""

    def __init__(self, edit: FileEdit):
        super().__init__()
        self.edit = edit

    def compose(self) -> ComposeResult:
        text = Text()
        style = "bold green" if self.edit.edit_type == "added" else "bold yellow"
        text.append(f"{self.edit.edit_type:<8}", style=style)
        text.append(" │ ", style="dim")
        text.append(format_timestamp(self.edit.last_edited_at), style="cyan")
        text.append(" │ ", style="dim")
        text.append(self.edit.path)
        yield Static(text)


class DetailPanel(ScrollableContainer, can_focus=True):
    """Scrollable inspector for the selected event and its raw JSON line."""

    def __init__(self, id: str = None):
        super().__init__(id=id)
        self.event: Optional[SessionEvent] = None
        self.file_edit: Optional[FileEdit] = None

    def update(self, text: Text) -> None:
        """Replace all content."""
        for child in list(self.children):
            child.remove()
        self.mount(Static(text, markup=False))

    def show_event(
        self,
        event: SessionEvent,
        raw: Optional[str],
        loading: bool = False,
        summary: Optional[str] = None,
    ):
        changed = event is not self.event
        self.event = event
        self.file_edit = None

        text = Text()
        text.append("━━━ Event Details ━━━\n", style="bold cyan")
        text.append("\n")
        text.append("Type: ", style="bold")
        text.append(f"{display_label(event)}", style=CATEGORY_STYLES.get(classify(event), "white"))
        text.append(f" ({event.event_type})\n", style="dim")
        text.append("Line: ", style="bold")
        text.append(f"{event.sequence}  ")
        text.append("Offset: ", style="bold")
        text.append(f"{event.byte_offset}\n")
        if event.timestamp:
            text.append("Time: ", style="bold")
            text.append(f"{event.timestamp}\n")
        if event.uuid:
            text.append("UUID: ", style="bold")
            text.append(f"{event.uuid}\n", style="dim")

        if event.compact_metadata:
            text.append("Compaction: ", style="bold")
            text.append(
                f"{event.compact_metadata.trigger}, {event.compact_metadata.pre_tokens} tokens before\n",
                style="red",
            )
        if summary:
            text.append("Summary: ", style="bold")
            text.append(f"{summary}\n", style="yellow")

        if event.launched_agent_id:
            text.append("\n")
            text.append("┌─ Sub-agent ───────────────────────────\n", style="bold blue")
            text.append("│ ", style="blue")
            text.append(f"agent-{event.launched_agent_id}")
            if event.launched_agent_status:
                text.append(f"  [{event.launched_agent_status}]", style="dim")
            if event.launched_agent_is_async:
                text.append("  async", style="dim")
            text.append("\n")
            if event.launched_agent_description:
                text.append("│ ", style="blue")
                text.append(f"{event.launched_agent_description}\n", style="bold")
            if event.launched_agent_prompt:
                for line in truncate(event.launched_agent_prompt, 1000).split("\n"):
                    text.append("│ ", style="blue")
                    text.append(f"{line}\n")
            text.append("└ press ", style="blue")
            text.append("a", style="bold")
            text.append(" to open\n", style="blue")

        text.append("\n")
        text.append("━━━ Raw JSON ━━━\n", style="bold cyan")
        if loading:
            text.append("Loading...\n", style="dim")
        else:
            text.append(format_raw_payload(raw))

        self.update(text)
        if changed:
            self.scroll_home(animate=False)

    def show_file_diffs(self, edit: FileEdit, diffs: list[FileDiff], loading: bool = False):
        """Replaced and new text of every Edit/Write applied to one file."""
        changed = edit != self.file_edit
        self.event = None
        self.file_edit = edit

        text = Text()
        text.append(f"━━━ {edit.path} ━━━\n", style="bold cyan")
        text.append(f"{edit.edit_type}", style="green" if edit.edit_type == "added" else "yellow")
        if edit.last_edited_at:
            text.append(f"  last edited {edit.last_edited_at}", style="dim")
        text.append("\n")

        if loading:
            text.append("\nLoading...\n", style="dim")
        elif not diffs:
            text.append("\nNo changes recorded\n", style="dim")
        for diff in diffs:
            kind = "Write" if not diff.old_string else "Edit"
            text.append(f"\n#{diff.sequence} {kind}", style="bold")
            if diff.timestamp:
                text.append(f"  {format_timestamp(diff.timestamp)}", style="dim")
            text.append("\n")
            for line in diff.old_string.splitlines():
                text.append(f"- {line}\n", style="red")
            for line in diff.new_string.splitlines():
                text.append(f"+ {line}\n", style="green")

        self.update(text)
        if changed:
            self.scroll_home(animate=False)

    def clear_display(self):
        self.event = None
        self.file_edit = None
        self.update(Text("Select an event to inspect it", style="dim"))
