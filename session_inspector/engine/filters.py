"""Event classification and filter/highlight predicates."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from ..models import SessionEvent

ALL = "all"
ME = "me"
CONTEXT = "context"
ASSISTANT = "assistant"
SYSTEM = "system"
COMPACTION = "compaction"
SUBAGENT = "subagent"

# Order used by the UI when cycling filters
FILTER_CATEGORIES = (ALL, ME, CONTEXT, ASSISTANT, SYSTEM, COMPACTION, SUBAGENT)

COMMAND_MESSAGE_MARKER = "<command-message>"


class FilterMode(str, Enum):
    FILTER = "filter"  # drop non-matching events
    HIGHLIGHT = "highlight"  # keep everything, mark matches


@dataclass(frozen=True)
class FilterResult:
    events: Sequence[SessionEvent]
    highlighted: Optional[frozenset[int]] = None  # indices into `events`


def classify(event: SessionEvent) -> str:
    """Primary category of an event; first matching rule wins."""
    if event.subtype == "compact_boundary":
        return COMPACTION
    if event.event_type == "user":
        if (
            event.is_compact_summary
            or event.is_meta
            or event.is_tool_result
            or event.preview.startswith(COMMAND_MESSAGE_MARKER)
        ):
            return CONTEXT
        if event.user_type == "external":
            return ME
        return CONTEXT
    return event.event_type


def is_subagent_launch(event: SessionEvent) -> bool:
    return event.launched_agent_id is not None


def matches_category(event: SessionEvent, category: str) -> bool:
    if category == ALL:
        return True
    if category == SUBAGENT:
        return is_subagent_launch(event)
    if category == COMPACTION:
        # summary lines are the other half of a compaction
        return classify(event) == COMPACTION or event.event_type == "summary"
    return classify(event) == category


def is_filter_active(active_category: str, search_match_sequences: Optional[set[int]], search_correlated: bool) -> bool:
    search_active = search_match_sequences is not None and not search_correlated
    return active_category != ALL or search_active


def matches_filter(
    event: SessionEvent,
    active_category: str = ALL,
    search_match_sequences: Optional[set[int]] = None,
    search_correlated: bool = False,
) -> bool:
    """Category test, then (outside search-correlated mode) search membership.

    `search_match_sequences` is None when no search is active.
    """
    if active_category != ALL and not matches_category(event, active_category):
        return False
    if not search_correlated and search_match_sequences is not None:
        return event.sequence in search_match_sequences
    return True


def apply_filters(
    base_events: Sequence[SessionEvent],
    active_category: str = ALL,
    mode: FilterMode = FilterMode.FILTER,
    search_match_sequences: Optional[set[int]] = None,
    search_correlated: bool = False,
) -> FilterResult:
    """Derive the visible events (filter mode) or highlight indices (highlight mode).

    With nothing active, filter mode hands back `base_events` itself and
    highlight mode produces no index set at all.
    """
    active = is_filter_active(active_category, search_match_sequences, search_correlated)

    if mode == FilterMode.HIGHLIGHT:
        if not active:
            return FilterResult(base_events, None)
        indices = frozenset(
            i
            for i, event in enumerate(base_events)
            if matches_filter(event, active_category, search_match_sequences, search_correlated)
        )
        return FilterResult(base_events, indices or None)

    if not active:
        return FilterResult(base_events, None)
    kept = [
        event
        for event in base_events
        if matches_filter(event, active_category, search_match_sequences, search_correlated)
    ]
    return FilterResult(kept, None)


def select_base_events(
    window_events: Sequence[SessionEvent],
    correlated_events: Sequence[SessionEvent],
) -> Sequence[SessionEvent]:
    """Search results take over the timeline while there are any."""
    if correlated_events:
        return correlated_events
    return window_events


def display_label(event: SessionEvent) -> str:
    """Short badge text for a timeline row."""
    category = classify(event)
    if category == ME:
        return "You"
    if category == CONTEXT:
        if event.is_compact_summary:
            return "Compact Summary"
        if event.is_tool_result:
            return "Tool Result"
        return "Context"
    if category == COMPACTION:
        return "Compaction"
    if category == ASSISTANT:
        return event.tool_name or "Assistant"
    if event.event_type == "summary":
        return "Summary"
    if category == SYSTEM:
        return f"System: {event.subtype}" if event.subtype else "System"
    return category
