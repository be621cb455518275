"""Tests for event classification and the filter engine."""

import pytest

from session_inspector.engine.filters import (
    ALL,
    ASSISTANT,
    COMPACTION,
    CONTEXT,
    FILTER_CATEGORIES,
    ME,
    SUBAGENT,
    SYSTEM,
    FilterMode,
    apply_filters,
    classify,
    display_label,
    matches_filter,
    select_base_events,
)

from conftest import make_event


class TestClassify:
    """Tests for the category rules."""

    def test_compact_boundary_wins(self):
        """A compact_boundary subtype is compaction whatever the type."""
        event = make_event(0, "system", subtype="compact_boundary")
        assert classify(event) == COMPACTION

    def test_external_user_is_me(self):
        assert classify(make_event(0, "user", user_type="external")) == ME

    def test_user_context_markers(self):
        """Meta, tool results, compact summaries and commands are context."""
        assert classify(make_event(0, "user", is_meta=True)) == CONTEXT
        assert classify(make_event(1, "user", is_tool_result=True)) == CONTEXT
        assert classify(make_event(2, "user", is_compact_summary=True)) == CONTEXT
        assert classify(make_event(3, "user", preview="<command-message>init</command-message>")) == CONTEXT

    def test_non_external_user_is_context(self):
        assert classify(make_event(0, "user", user_type="internal")) == CONTEXT

    def test_other_types_use_event_type(self):
        assert classify(make_event(0, "assistant")) == ASSISTANT
        assert classify(make_event(1, "system")) == SYSTEM
        assert classify(make_event(2, "summary")) == "summary"

    def test_deterministic(self):
        """Repeated calls on the same event agree."""
        event = make_event(0, "user", is_meta=True)
        assert {classify(event) for _ in range(5)} == {CONTEXT}


class TestMatchesFilter:
    """Tests for the single-event predicate."""

    def test_subagent_category(self):
        launch = make_event(0, "user", is_tool_result=True, launched_agent_id="x1")
        assert matches_filter(launch, SUBAGENT)
        assert not matches_filter(make_event(1, "assistant"), SUBAGENT)

    def test_compaction_includes_summaries(self):
        assert matches_filter(make_event(0, "summary"), COMPACTION)
        assert matches_filter(make_event(1, "system", subtype="compact_boundary"), COMPACTION)
        assert not matches_filter(make_event(2, "system"), COMPACTION)

    def test_search_membership(self):
        """Outside correlated mode, only matching sequences pass."""
        event = make_event(4)
        assert matches_filter(event, ALL, {4})
        assert not matches_filter(event, ALL, {5})

    def test_search_ignored_when_correlated(self):
        assert matches_filter(make_event(4), ALL, {5}, search_correlated=True)

    def test_category_and_search_combined(self):
        event = make_event(4, "assistant")
        assert matches_filter(event, ASSISTANT, {4})
        assert not matches_filter(event, ME, {4})


class TestApplyFilters:
    """Tests for the derived visible events."""

    @pytest.fixture
    def events(self):
        return [
            make_event(3, "assistant"),
            make_event(2, "user"),
            make_event(1, "system"),
            make_event(0, "user", is_meta=True),
        ]

    def test_nothing_active_returns_same_object(self, events):
        """Filter mode with nothing active hands back the input itself."""
        result = apply_filters(events, ALL, FilterMode.FILTER)
        assert result.events is events
        assert result.highlighted is None

    def test_filter_mode_drops(self, events):
        result = apply_filters(events, ME, FilterMode.FILTER)
        assert [e.sequence for e in result.events] == [2]

    def test_highlight_nothing_active(self, events):
        result = apply_filters(events, ALL, FilterMode.HIGHLIGHT)
        assert result.events is events
        assert result.highlighted is None

    def test_highlight_marks_indices(self, events):
        result = apply_filters(events, CONTEXT, FilterMode.HIGHLIGHT)
        assert result.events is events
        assert result.highlighted == frozenset({3})

    def test_highlight_no_matches_is_none(self, events):
        result = apply_filters(events, COMPACTION, FilterMode.HIGHLIGHT)
        assert result.highlighted is None

    def test_search_membership_filters(self, events):
        result = apply_filters(events, ALL, FilterMode.FILTER, {1, 3})
        assert [e.sequence for e in result.events] == [3, 1]

    def test_empty_match_set_hides_everything(self, events):
        """A search with zero matches is still an active search."""
        result = apply_filters(events, ALL, FilterMode.FILTER, set())
        assert result.events == []

    def test_order_preserved(self, events):
        result = apply_filters(events, ALL, FilterMode.FILTER, {0, 1, 2, 3})
        assert [e.sequence for e in result.events] == [3, 2, 1, 0]


class TestBaseEvents:
    """Tests for search results taking over the timeline."""

    def test_window_without_correlation(self):
        window = [make_event(1), make_event(0)]
        assert select_base_events(window, []) is window

    def test_correlated_replace_window(self):
        window = [make_event(1), make_event(0)]
        correlated = [make_event(9)]
        assert select_base_events(window, correlated) is correlated


class TestDisplayLabel:
    """Tests for row badges."""

    def test_labels(self):
        assert display_label(make_event(0, "user")) == "You"
        assert display_label(make_event(1, "user", is_tool_result=True)) == "Tool Result"
        assert display_label(make_event(2, "assistant", tool_name="thinking, Bash")) == "thinking, Bash"
        assert display_label(make_event(3, "assistant")) == "Assistant"
        assert display_label(make_event(4, "system", subtype="init")) == "System: init"
        assert display_label(make_event(5, "summary")) == "Summary"

    def test_every_category_cycles(self):
        assert FILTER_CATEGORIES[0] == ALL
        assert len(set(FILTER_CATEGORIES)) == 7
