"""Claude Code session log backend."""

import asyncio
import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..cache import LineIndexCache
from ..config import BACKEND_SEARCH_MAX_RESULTS, PREVIEW_MAX_CHARS, InspectorConfig
from ..models import (
    AgentScope,
    ChangeNotification,
    CompactMetadata,
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
from ..search import search_file
from . import register_backend
from .base import BackendError, EventBackend

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
TEMP_PROJECT_MARKER = "private-var-folders"


def encode_project_path(project: str) -> str:
    """Encode a project path the way Claude Code names its project directories."""
    return project.replace("/", "-").replace(" ", "-")


def make_relative_path(file_path: str, project: str) -> str:
    """Strip the project prefix from an absolute path, if it has one."""
    root = project.rstrip("/")
    if root and file_path.startswith(root):
        return file_path[len(root):].lstrip("/")
    return file_path


def truncate(text: str, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def extract_preview(content) -> str:
    """Preview text for message content: text, then thinking, then tool info."""
    if isinstance(content, str):
        return truncate(content)
    if not isinstance(content, list):
        return truncate(json.dumps(content))

    blocks = [item for item in content if isinstance(item, dict)]
    for item in blocks:
        if item.get("type") == "text" and isinstance(item.get("text"), str):
            return truncate(item["text"])
    for item in blocks:
        if item.get("type") == "thinking" and isinstance(item.get("thinking"), str):
            return truncate(item["thinking"])
    for item in blocks:
        if item.get("type") == "tool_use" and isinstance(item.get("name"), str):
            return f"[Tool: {item['name']}]"
        if item.get("type") == "tool_result" and isinstance(item.get("content"), str):
            return truncate(item["content"])
    if content:
        return truncate(json.dumps(content[0], separators=(",", ":")))
    return ""


def is_tool_result_content(content) -> bool:
    if not isinstance(content, list):
        return False
    return any(isinstance(item, dict) and item.get("type") == "tool_result" for item in content)


def extract_tool_names(content) -> Optional[str]:
    """Comma-joined labels for an assistant message: "thinking" then tool names."""
    if not isinstance(content, list):
        return None
    blocks = [item for item in content if isinstance(item, dict)]
    labels = []
    if any(item.get("type") == "thinking" for item in blocks):
        labels.append("thinking")
    for item in blocks:
        if item.get("type") == "tool_use" and isinstance(item.get("name"), str):
            labels.append(item["name"])
    return ", ".join(labels) if labels else None


def parse_session_event(line: str, sequence: int, byte_offset: int) -> Optional[SessionEvent]:
    """Parse one JSONL line into an event; None if the line is not a JSON object."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    event_type = data.get("type") or "unknown"
    message = data.get("message") if isinstance(data.get("message"), dict) else {}
    content = message.get("content")

    if event_type in ("user", "assistant"):
        preview = extract_preview(content) if content is not None else ""
    elif event_type == "system":
        preview = data.get("content") or ""
    elif event_type == "summary":
        preview = data.get("summary") or ""
    else:
        preview = ""

    tool_name = extract_tool_names(content) if event_type == "assistant" else None

    compact_metadata = None
    if isinstance(data.get("compactMetadata"), dict):
        cm = data["compactMetadata"]
        compact_metadata = CompactMetadata(
            trigger=cm.get("trigger") or "unknown",
            pre_tokens=cm.get("preTokens") or 0,
        )

    # Both async launches and completions of Task carry agentId in toolUseResult
    tool_result = data.get("toolUseResult") if isinstance(data.get("toolUseResult"), dict) else {}

    return SessionEvent(
        sequence=sequence,
        byte_offset=byte_offset,
        event_type=event_type,
        uuid=data.get("uuid"),
        timestamp=data.get("timestamp"),
        subtype=data.get("subtype"),
        tool_name=tool_name,
        preview=preview if isinstance(preview, str) else str(preview),
        compact_metadata=compact_metadata,
        summary=data.get("summary") if isinstance(data.get("summary"), str) else None,
        logical_parent_uuid=data.get("logicalParentUuid"),
        leaf_uuid=data.get("leafUuid"),
        launched_agent_id=tool_result.get("agentId"),
        launched_agent_description=tool_result.get("description"),
        launched_agent_prompt=tool_result.get("prompt"),
        launched_agent_is_async=tool_result.get("isAsync"),
        launched_agent_status=tool_result.get("status"),
        user_type=data.get("userType"),
        is_compact_summary=data.get("isCompactSummary"),
        is_tool_result=is_tool_result_content(content),
        is_meta=bool(data.get("isMeta", False)),
    )


def read_line_at(path: Path, offset: int) -> Optional[str]:
    """Read one line starting at `offset`, without its trailing newline."""
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            raw = f.readline()
    except OSError:
        return None
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


def read_event_page(path: Path, offset: int, limit: int) -> EventPage:
    """Descending page: offset 0 is the newest `limit` lines of the file."""
    index = LineIndexCache().get(path)
    if index is None:
        return EventPage([], 0, 0, False)

    total = len(index)
    if offset >= total:
        return EventPage([], total, offset, False)

    take = min(limit, total - offset)
    start = total - offset - 1
    end = start - take + 1

    events = []
    try:
        with open(path, "rb") as f:
            for idx in range(start, end - 1, -1):
                byte_offset, length = index.lines[idx]
                f.seek(byte_offset)
                line = f.read(length).decode("utf-8", errors="replace").rstrip("\r\n")
                event = parse_session_event(line, idx, byte_offset)
                if event is None:
                    # keep one event per line so offset == len(events) holds
                    event = SessionEvent(sequence=idx, byte_offset=byte_offset, preview=truncate(line))
                events.append(event)
    except OSError as e:
        logger.warning(f"Failed to read events from {path}: {e}")
        return EventPage([], 0, 0, False)

    return EventPage(events, total, offset, offset + take < total)


def read_events_at(path: Path, pairs: list[tuple[int, int]]) -> list[SessionEvent]:
    events = []
    for sequence, byte_offset in pairs:
        line = read_line_at(path, byte_offset)
        if line is None:
            continue
        event = parse_session_event(line, sequence, byte_offset)
        if event:
            events.append(event)
    return events


def extract_file_edits(path: Path, project: str) -> list[FileEdit]:
    """Files added or modified by Edit/Write tool calls, sorted by path."""
    operations: dict[str, str] = {}
    prior_content: set[str] = set()
    timestamps: dict[str, str] = {}

    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                if '"tool_use"' not in line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict) or data.get("type") != "assistant":
                    continue
                message = data.get("message")
                content = message.get("content") if isinstance(message, dict) else None
                if not isinstance(content, list):
                    continue

                timestamp = data.get("timestamp")
                for item in content:
                    if not isinstance(item, dict) or item.get("type") != "tool_use":
                        continue
                    inp = item.get("input")
                    if not isinstance(inp, dict) or not isinstance(inp.get("file_path"), str):
                        continue
                    rel_path = make_relative_path(inp["file_path"], project)

                    if item.get("name") == "Edit":
                        if inp.get("old_string"):
                            prior_content.add(rel_path)
                        operations[rel_path] = "modified"
                    elif item.get("name") == "Write":
                        operations.setdefault(rel_path, "added")
                    else:
                        continue

                    if timestamp:
                        timestamps[rel_path] = timestamp
    except OSError as e:
        logger.warning(f"Failed to read file edits from {path}: {e}")
        return []

    edits = []
    for rel_path, edit_type in operations.items():
        # An Edit never seen with prior content created the file
        if edit_type == "modified" and rel_path not in prior_content:
            edit_type = "added"
        edits.append(FileEdit(rel_path, edit_type, timestamps.get(rel_path)))
    edits.sort(key=lambda e: e.path)
    return edits



def extract_file_diffs(path: Path, project: str, file_path: str) -> list[FileDiff]:
    """Every Edit and Write applied to `file_path`, in log order."""
    target = make_relative_path(file_path, project)
    diffs: list[FileDiff] = []

    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                if '"tool_use"' not in line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict) or data.get("type") != "assistant":
                    continue
                message = data.get("message")
                content = message.get("content") if isinstance(message, dict) else None
                if not isinstance(content, list):
                    continue

                for item in content:
                    if not isinstance(item, dict) or item.get("type") != "tool_use":
                        continue
                    inp = item.get("input")
                    if not isinstance(inp, dict) or not isinstance(inp.get("file_path"), str):
                        continue
                    if make_relative_path(inp["file_path"], project) != target:
                        continue

                    if item.get("name") == "Edit":
                        old, new = inp.get("old_string") or "", inp.get("new_string") or ""
                    elif item.get("name") == "Write":
                        old, new = "", inp.get("content") or ""
                    else:
                        continue
                    diffs.append(FileDiff(old, new, len(diffs), data.get("timestamp")))
    except OSError as e:
        logger.warning(f"Failed to read file diffs from {path}: {e}")
        return []

    return diffs


def extract_project_path(path: Path, max_lines: int = 100) -> Optional[str]:
    """The working directory recorded in the first lines of a session log."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for i, line in enumerate(f):
                if i >= max_lines:
                    break
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(data, dict) and isinstance(data.get("cwd"), str):
                    return data["cwd"]
    except OSError:
        return None
    return None

@register_backend
class ClaudeCodeBackend(EventBackend):
    """Backend for Claude Code JSONL logs under ~/.claude/projects."""

    name = "claude-code"
    display_name = "Claude Code"

    def __init__(self, config: Optional[InspectorConfig] = None, bus: Optional[NotificationBus] = None):
        super().__init__(bus)
        self.config = config or InspectorConfig.from_env()
        self._watchers: dict[Scope, asyncio.Task] = {}

    def get_sessions_dir(self) -> Path:
        return self.config.projects_dir

    def project_dir(self, project: str) -> Path:
        return self.get_sessions_dir() / encode_project_path(project)

    def file_for(self, scope: Scope) -> Path:
        if isinstance(scope, AgentScope):
            return self.project_dir(scope.project) / f"agent-{scope.agent_id}.jsonl"
        if isinstance(scope, SessionScope):
            return self.project_dir(scope.project) / f"{scope.session_id}.jsonl"
        raise BackendError(f"Unknown scope: {scope!r}")

    # -- reads --

    def _list_sessions_sync(self, project: str) -> list[SessionInfo]:
        project_dir = self.project_dir(project)
        if not project_dir.is_dir():
            return []

        sessions = []
        for path in project_dir.glob("*.jsonl"):
            stem = path.stem
            if stem.startswith("agent-") or not UUID_RE.match(stem):
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            sessions.append(SessionInfo(id=stem, last_activity=datetime.fromtimestamp(mtime)))

        sessions.sort(key=lambda s: s.last_activity or datetime.min, reverse=True)
        return sessions

    def _list_projects_sync(self) -> list[ProjectInfo]:
        root = self.get_sessions_dir()
        if not root.is_dir():
            return []

        projects = {}
        for project_dir in root.iterdir():
            if not project_dir.is_dir() or TEMP_PROJECT_MARKER in project_dir.name:
                continue
            project = self._read_project_dir(project_dir)
            if project:
                projects[project.path] = project

        return sorted(
            projects.values(),
            key=lambda p: p.last_activity or datetime.min,
            reverse=True,
        )

    def _read_project_dir(self, project_dir: Path) -> Optional[ProjectInfo]:
        """Summarize a project directory from file names and mtimes only."""
        session_files = []
        subagent_count = 0
        latest = None
        for path in project_dir.glob("*.jsonl"):
            if path.stem.startswith("agent-"):
                subagent_count += 1
                continue
            if not UUID_RE.match(path.stem):
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            latest = mtime if latest is None else max(latest, mtime)
            session_files.append(path)

        # the encoded directory name is lossy; the real path comes from the logs
        project_path = None
        for path in session_files:
            project_path = extract_project_path(path)
            if project_path:
                break
        if not project_path:
            return None

        return ProjectInfo(
            path=project_path,
            name=Path(project_path).name or project_path,
            session_count=len(session_files),
            subagent_count=subagent_count,
            last_activity=datetime.fromtimestamp(latest) if latest is not None else None,
        )

    async def list_projects(self) -> list[ProjectInfo]:
        return await asyncio.to_thread(self._list_projects_sync)

    async def list_sessions(self, project: str) -> list[SessionInfo]:
        return await asyncio.to_thread(self._list_sessions_sync, project)

    async def list_session_events(self, scope: SessionScope, offset: int, limit: int) -> EventPage:
        return await asyncio.to_thread(read_event_page, self.file_for(scope), offset, limit)

    async def list_subagent_events(self, scope: AgentScope, offset: int, limit: int) -> EventPage:
        return await asyncio.to_thread(read_event_page, self.file_for(scope), offset, limit)

    async def search_events(
        self, scope: Scope, query: str, max_results: int = BACKEND_SEARCH_MAX_RESULTS
    ) -> SearchResponse:
        return await asyncio.to_thread(search_file, self.file_for(scope), query, max_results)

    async def get_events_by_offsets(
        self, scope: Scope, pairs: list[tuple[int, int]]
    ) -> list[SessionEvent]:
        return await asyncio.to_thread(read_events_at, self.file_for(scope), list(pairs))

    async def get_raw_payload(self, scope: Scope, byte_offset: int) -> Optional[str]:
        return await asyncio.to_thread(read_line_at, self.file_for(scope), byte_offset)

    async def list_file_edits(self, scope: Scope) -> list[FileEdit]:
        path = self.file_for(scope)
        if not path.exists():
            return []
        return await asyncio.to_thread(extract_file_edits, path, scope.project)

    async def get_file_diffs(self, scope: SessionScope, file_path: str) -> list[FileDiff]:
        path = self.file_for(scope)
        if not path.exists():
            return []
        return await asyncio.to_thread(extract_file_diffs, path, scope.project, file_path)

    # -- change notifications --

    async def watch(self, scope: Scope) -> None:
        if scope in self._watchers:
            return
        path = self.file_for(scope)
        if not path.exists():
            raise BackendError(f"Session file not found: {path}")
        self._watchers[scope] = asyncio.create_task(self._poll(scope, path))
        logger.debug(f"Watching {path}")

    async def unwatch(self, scope: Scope) -> None:
        task = self._watchers.pop(scope, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped watching {scope.key}")

    def is_watching(self, scope: Scope) -> bool:
        return scope in self._watchers

    async def _poll(self, scope: Scope, path: Path):
        """Publish a notification whenever (mtime, size) of `path` changes."""
        last = _stat_key(path)
        while True:
            await asyncio.sleep(self.config.watch_poll_interval)
            current = _stat_key(path)
            if current != last:
                last = current
                self.bus.publish(ChangeNotification(scope))

    async def close(self) -> None:
        for scope in list(self._watchers):
            await self.unwatch(scope)


def _stat_key(path: Path) -> Optional[tuple[int, int]]:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size
