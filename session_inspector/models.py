"""Data model for session event logs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True)
class SessionScope:
    """A main session timeline: (project, session)."""

    project: str
    session_id: str

    @property
    def key(self) -> str:
        return f"{self.project}:{self.session_id}"


@dataclass(frozen=True)
class AgentScope:
    """A sub-agent timeline: (project, agent)."""

    project: str
    agent_id: str

    @property
    def key(self) -> str:
        return f"{self.project}:agent-{self.agent_id}"


Scope = Union[SessionScope, AgentScope]


@dataclass(frozen=True)
class CompactMetadata:
    """Metadata attached to compaction boundary events."""

    trigger: str = "unknown"  # "auto" or "manual"
    pre_tokens: int = 0


@dataclass(frozen=True)
class SessionEvent:
    """One immutable record of a session log.

    Only the fields the classifier and the timeline need are typed here;
    the full JSON line is fetched lazily by byte offset.
    """

    # Identity
    sequence: int  # 0-indexed line number
    byte_offset: int
    event_type: str = "unknown"
    uuid: Optional[str] = None
    timestamp: Optional[str] = None

    # Display
    subtype: Optional[str] = None
    tool_name: Optional[str] = None
    preview: str = ""

    # Compaction / summary linkage
    compact_metadata: Optional[CompactMetadata] = None
    summary: Optional[str] = None
    logical_parent_uuid: Optional[str] = None
    leaf_uuid: Optional[str] = None

    # Sub-agent linkage (from toolUseResult)
    launched_agent_id: Optional[str] = None
    launched_agent_description: Optional[str] = None
    launched_agent_prompt: Optional[str] = None
    launched_agent_is_async: Optional[bool] = None
    launched_agent_status: Optional[str] = None

    # Classifier markers
    user_type: Optional[str] = None
    is_compact_summary: Optional[bool] = None
    is_tool_result: bool = False
    is_meta: bool = False


@dataclass
class EventPage:
    """One page of events as returned by a backend (newest first)."""

    events: list[SessionEvent]
    total_count: int
    offset: int
    has_more: bool


@dataclass(frozen=True)
class PageWindow:
    """The loaded prefix of a timeline plus its pagination cursor.

    `offset` is the offset of the next page request and always equals
    `len(events)`.
    """

    events: tuple[SessionEvent, ...] = ()
    total_count: int = 0
    offset: int = 0
    has_more: bool = False

    @classmethod
    def empty(cls) -> "PageWindow":
        return cls()

    @property
    def byte_offsets(self) -> set[int]:
        return {e.byte_offset for e in self.events}


@dataclass(frozen=True)
class SearchMatch:
    """A search hit: where it is and a snippet of context around it."""

    sequence: int
    byte_offset: int
    snippet: str


@dataclass
class SearchResponse:
    matches: list[SearchMatch] = field(default_factory=list)
    total_searched: int = 0
    truncated: bool = False


@dataclass(frozen=True)
class FileEdit:
    """A file touched by Edit/Write tool calls in a session."""

    path: str  # relative to the project when possible
    edit_type: str  # "added" or "modified"
    last_edited_at: Optional[str] = None


@dataclass(frozen=True)
class FileDiff:
    """One Edit or Write applied to a file. Writes have an empty `old_string`."""

    old_string: str
    new_string: str
    sequence: int  # order among the diffs of this file
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class ProjectInfo:
    """A project directory found under the projects dir."""

    path: str
    name: str
    session_count: int = 0
    subagent_count: int = 0
    last_activity: Optional[datetime] = None


@dataclass(frozen=True)
class SessionInfo:
    """Lightweight session listing entry (no content parsing)."""

    id: str
    last_activity: Optional[datetime] = None


@dataclass(frozen=True)
class ChangeNotification:
    """Push notification that the file behind `scope` changed on disk."""

    scope: Scope
