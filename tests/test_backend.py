"""Tests for the Claude Code JSONL backend."""

import asyncio
import json
import os

import pytest

from session_inspector.backend import BackendError, get_backend, get_backend_names
from session_inspector.backend.claude_code import (
    ClaudeCodeBackend,
    encode_project_path,
    extract_preview,
    make_relative_path,
    parse_session_event,
)
from session_inspector.models import AgentScope, ChangeNotification, SessionScope

PROJECT = "/home/dev/webapp"
SESSION_ID = "12345678-1234-1234-1234-123456789abc"
OTHER_ID = "87654321-4321-4321-4321-cba987654321"


def user_line(text, uuid="u1", **extra):
    data = {
        "type": "user",
        "uuid": uuid,
        "timestamp": "2025-01-15T10:30:00.000Z",
        "userType": "external",
        "message": {"role": "user", "content": text},
    }
    data.update(extra)
    return json.dumps(data)


def assistant_line(blocks, uuid="a1"):
    return json.dumps({
        "type": "assistant",
        "uuid": uuid,
        "timestamp": "2025-01-15T10:30:05.000Z",
        "message": {"role": "assistant", "content": blocks},
    })


def tool_use(name, **inp):
    return {"type": "tool_use", "id": f"tu-{name}", "name": name, "input": inp}


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / encode_project_path(PROJECT)
    path.mkdir()
    return path


@pytest.fixture
def claude_backend(tmp_path, config):
    return ClaudeCodeBackend(config=config)


def write_log(path, lines):
    path.write_text("".join(line + "\n" for line in lines))


class TestRegistry:
    def test_claude_code_registered(self):
        assert "claude-code" in get_backend_names()

    def test_get_backend(self, config):
        backend = get_backend("claude-code", config=config)
        assert isinstance(backend, ClaudeCodeBackend)
        assert get_backend("nope") is None


class TestHelpers:
    """Tests for path and preview helpers."""

    def test_encode_project_path(self):
        assert encode_project_path("/Users/me/my app") == "-Users-me-my-app"

    def test_make_relative_path(self):
        assert make_relative_path("/home/dev/webapp/src/main.py", PROJECT) == "src/main.py"
        assert make_relative_path("/etc/hosts", PROJECT) == "/etc/hosts"

    def test_preview_prefers_text(self):
        blocks = [{"type": "thinking", "thinking": "hmm"}, {"type": "text", "text": "Done."}]
        assert extract_preview(blocks) == "Done."

    def test_preview_tool_use(self):
        assert extract_preview([tool_use("Bash", command="ls")]) == "[Tool: Bash]"

    def test_preview_truncated(self):
        assert extract_preview("x" * 600) == "x" * 500 + "..."


class TestParseSessionEvent:
    """Tests for turning one JSONL line into an event."""

    def test_user_message(self):
        event = parse_session_event(user_line("Fix the login bug"), 0, 0)
        assert event.event_type == "user"
        assert event.user_type == "external"
        assert event.preview == "Fix the login bug"
        assert not event.is_tool_result

    def test_assistant_tool_names(self):
        line = assistant_line([
            {"type": "thinking", "thinking": "plan"},
            tool_use("Read", file_path="/a"),
            tool_use("Edit", file_path="/a"),
        ])
        event = parse_session_event(line, 3, 120)
        assert event.tool_name == "thinking, Read, Edit"
        assert event.sequence == 3
        assert event.byte_offset == 120

    def test_tool_result_with_subagent(self):
        line = user_line(
            [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}],
            toolUseResult={"agentId": "abc123", "description": "Explore", "status": "completed"},
        )
        event = parse_session_event(line, 0, 0)
        assert event.is_tool_result
        assert event.launched_agent_id == "abc123"
        assert event.launched_agent_description == "Explore"
        assert event.launched_agent_status == "completed"

    def test_compact_boundary(self):
        line = json.dumps({
            "type": "system",
            "subtype": "compact_boundary",
            "content": "Conversation compacted",
            "compactMetadata": {"trigger": "auto", "preTokens": 155000},
            "logicalParentUuid": "p1",
        })
        event = parse_session_event(line, 0, 0)
        assert event.subtype == "compact_boundary"
        assert event.compact_metadata.trigger == "auto"
        assert event.compact_metadata.pre_tokens == 155000
        assert event.logical_parent_uuid == "p1"
        assert event.preview == "Conversation compacted"

    def test_summary(self):
        line = json.dumps({"type": "summary", "summary": "Login fix", "leafUuid": "leaf-1"})
        event = parse_session_event(line, 0, 0)
        assert event.summary == "Login fix"
        assert event.leaf_uuid == "leaf-1"

    def test_invalid_lines(self):
        assert parse_session_event("not json", 0, 0) is None
        assert parse_session_event("[1, 2]", 0, 0) is None


class TestEventPages:
    """Tests for descending pagination over a log file."""

    @pytest.mark.asyncio
    async def test_descending_pages(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line(f"msg {i}", uuid=f"u{i}") for i in range(5)])
        scope = SessionScope(PROJECT, SESSION_ID)

        page = await claude_backend.list_events(scope, 0, 2)
        assert [e.sequence for e in page.events] == [4, 3]
        assert page.total_count == 5
        assert page.has_more

        page = await claude_backend.list_events(scope, 4, 2)
        assert [e.sequence for e in page.events] == [0]
        assert not page.has_more

    @pytest.mark.asyncio
    async def test_offset_past_end(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("only")])
        page = await claude_backend.list_events(SessionScope(PROJECT, SESSION_ID), 5, 10)
        assert page.events == []
        assert page.total_count == 1
        assert not page.has_more

    @pytest.mark.asyncio
    async def test_missing_file(self, claude_backend):
        page = await claude_backend.list_events(SessionScope(PROJECT, SESSION_ID), 0, 10)
        assert page.events == []
        assert page.total_count == 0

    @pytest.mark.asyncio
    async def test_malformed_line_kept_as_unknown(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("a"), "{broken", user_line("b")])
        page = await claude_backend.list_events(SessionScope(PROJECT, SESSION_ID), 0, 10)
        assert [e.event_type for e in page.events] == ["user", "unknown", "user"]
        assert page.events[1].preview == "{broken"

    @pytest.mark.asyncio
    async def test_byte_offsets(self, claude_backend, project_dir):
        lines = [user_line("first"), user_line("second")]
        write_log(project_dir / f"{SESSION_ID}.jsonl", lines)
        page = await claude_backend.list_events(SessionScope(PROJECT, SESSION_ID), 0, 10)
        assert [e.byte_offset for e in page.events] == [len(lines[0]) + 1, 0]

    @pytest.mark.asyncio
    async def test_subagent_file(self, claude_backend, project_dir):
        write_log(project_dir / "agent-abc123.jsonl", [user_line("task", isSidechain=True)])
        page = await claude_backend.list_events(AgentScope(PROJECT, "abc123"), 0, 10)
        assert [e.preview for e in page.events] == ["task"]

    @pytest.mark.asyncio
    async def test_appended_lines_show_up(self, claude_backend, project_dir):
        path = project_dir / f"{SESSION_ID}.jsonl"
        write_log(path, [user_line("one")])
        scope = SessionScope(PROJECT, SESSION_ID)
        await claude_backend.list_events(scope, 0, 10)

        with open(path, "a") as f:
            f.write(user_line("two") + "\n")
        page = await claude_backend.list_events(scope, 0, 10)
        assert [e.preview for e in page.events] == ["two", "one"]


class TestRawPayloadAndOffsets:
    @pytest.mark.asyncio
    async def test_raw_payload(self, claude_backend, project_dir):
        lines = [user_line("first"), user_line("second")]
        write_log(project_dir / f"{SESSION_ID}.jsonl", lines)
        scope = SessionScope(PROJECT, SESSION_ID)

        assert await claude_backend.get_raw_payload(scope, len(lines[0]) + 1) == lines[1]
        assert await claude_backend.get_raw_payload(scope, 10_000) is None

    @pytest.mark.asyncio
    async def test_events_by_offsets(self, claude_backend, project_dir):
        lines = [user_line("first"), "garbage", user_line("third")]
        write_log(project_dir / f"{SESSION_ID}.jsonl", lines)
        scope = SessionScope(PROJECT, SESSION_ID)
        second = len(lines[0]) + 1
        third = second + len(lines[1]) + 1

        events = await claude_backend.get_events_by_offsets(scope, [(2, third), (1, second), (0, 0)])
        assert [e.sequence for e in events] == [2, 0]
        assert events[0].preview == "third"


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_events(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [
            user_line("the quick brown fox"),
            user_line("lazy dog"),
            user_line("another fox"),
        ])
        response = await claude_backend.search_events(SessionScope(PROJECT, SESSION_ID), "fox", 100)
        assert [m.sequence for m in response.matches] == [0, 2]
        assert response.matches[0].snippet == "the quick brown fox"
        assert response.total_searched == 3
        assert not response.truncated


class TestSessionsAndEdits:
    @pytest.mark.asyncio
    async def test_list_sessions_newest_first(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("old")])
        write_log(project_dir / f"{OTHER_ID}.jsonl", [user_line("new")])
        write_log(project_dir / "agent-abc123.jsonl", [user_line("agent")])
        write_log(project_dir / "notes.jsonl", [user_line("x")])
        os.utime(project_dir / f"{SESSION_ID}.jsonl", (1_000_000, 1_000_000))

        sessions = await claude_backend.list_sessions(PROJECT)
        assert [s.id for s in sessions] == [OTHER_ID, SESSION_ID]

    @pytest.mark.asyncio
    async def test_list_sessions_unknown_project(self, claude_backend):
        assert await claude_backend.list_sessions("/nowhere") == []

    @pytest.mark.asyncio
    async def test_file_edits(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [
            assistant_line([tool_use("Write", file_path=f"{PROJECT}/new.py", content="x")]),
            assistant_line([tool_use("Edit", file_path=f"{PROJECT}/app.py", old_string="a", new_string="b")]),
            assistant_line([tool_use("Edit", file_path=f"{PROJECT}/new.py", old_string="x", new_string="y")]),
            assistant_line([tool_use("Edit", file_path=f"{PROJECT}/empty.py", old_string="", new_string="z")]),
            assistant_line([tool_use("Read", file_path=f"{PROJECT}/README.md")]),
        ])

        edits = await claude_backend.list_file_edits(SessionScope(PROJECT, SESSION_ID))
        assert [(e.path, e.edit_type) for e in edits] == [
            ("app.py", "modified"),
            ("empty.py", "added"),
            ("new.py", "modified"),
        ]

    @pytest.mark.asyncio
    async def test_file_edits_missing_file(self, claude_backend):
        assert await claude_backend.list_file_edits(SessionScope(PROJECT, SESSION_ID)) == []

    @pytest.mark.asyncio
    async def test_file_diffs(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [
            assistant_line([tool_use("Write", file_path=f"{PROJECT}/new.py", content="x = 1\n")]),
            assistant_line([tool_use("Edit", file_path=f"{PROJECT}/app.py", old_string="a", new_string="b")]),
            assistant_line([tool_use("Edit", file_path=f"{PROJECT}/new.py", old_string="x = 1", new_string="x = 2")]),
            user_line("thanks"),
        ])
        scope = SessionScope(PROJECT, SESSION_ID)

        diffs = await claude_backend.get_file_diffs(scope, "new.py")
        assert [(d.sequence, d.old_string, d.new_string) for d in diffs] == [
            (0, "", "x = 1\n"),
            (1, "x = 1", "x = 2"),
        ]
        assert diffs[0].timestamp == "2025-01-15T10:30:05.000Z"

        # absolute paths are made relative to the project first
        absolute = await claude_backend.get_file_diffs(scope, f"{PROJECT}/app.py")
        assert [(d.old_string, d.new_string) for d in absolute] == [("a", "b")]

    @pytest.mark.asyncio
    async def test_file_diffs_unknown_file(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("hi")])
        scope = SessionScope(PROJECT, SESSION_ID)
        assert await claude_backend.get_file_diffs(scope, "missing.py") == []
        assert await claude_backend.get_file_diffs(SessionScope(PROJECT, OTHER_ID), "app.py") == []


class TestProjects:
    """Tests for project discovery."""

    @pytest.mark.asyncio
    async def test_list_projects(self, claude_backend, tmp_path, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("hi", cwd=PROJECT)])
        write_log(project_dir / f"{OTHER_ID}.jsonl", [user_line("again", cwd=PROJECT)])
        write_log(project_dir / "agent-abc123.jsonl", [user_line("agent", cwd=PROJECT)])
        os.utime(project_dir / f"{SESSION_ID}.jsonl", (1_000_000, 1_000_000))
        os.utime(project_dir / f"{OTHER_ID}.jsonl", (1_000_000, 1_000_000))

        other = tmp_path / encode_project_path("/home/dev/my api")
        other.mkdir()
        write_log(other / f"{SESSION_ID}.jsonl", [
            json.dumps({"type": "summary", "summary": "setup"}),
            user_line("hello", cwd="/home/dev/my api"),
        ])

        projects = await claude_backend.list_projects()

        assert [p.path for p in projects] == ["/home/dev/my api", PROJECT]
        api, webapp = projects
        assert api.name == "my api"
        assert (webapp.name, webapp.session_count, webapp.subagent_count) == ("webapp", 2, 1)
        assert webapp.last_activity is not None

    @pytest.mark.asyncio
    async def test_skips_temp_and_unidentified_dirs(self, claude_backend, tmp_path):
        temp = tmp_path / "-private-var-folders-xy-T-tmp1"
        temp.mkdir()
        write_log(temp / f"{SESSION_ID}.jsonl", [user_line("hi", cwd="/private/var/folders/xy/T/tmp1")])
        no_cwd = tmp_path / "-home-dev-unknown"
        no_cwd.mkdir()
        write_log(no_cwd / f"{SESSION_ID}.jsonl", [user_line("hi")])
        (tmp_path / "stray.txt").write_text("not a project")

        assert await claude_backend.list_projects() == []

    @pytest.mark.asyncio
    async def test_missing_projects_dir(self, tmp_path, config):
        config.projects_dir = tmp_path / "absent"
        assert await ClaudeCodeBackend(config=config).list_projects() == []


class TestWatch:
    """Tests for change polling."""

    @pytest.mark.asyncio
    async def test_watch_missing_file_raises(self, claude_backend):
        with pytest.raises(BackendError):
            await claude_backend.watch(SessionScope(PROJECT, SESSION_ID))

    @pytest.mark.asyncio
    async def test_append_publishes(self, claude_backend, project_dir):
        path = project_dir / f"{SESSION_ID}.jsonl"
        write_log(path, [user_line("one")])
        scope = SessionScope(PROJECT, SESSION_ID)
        received = []
        claude_backend.bus.subscribe(scope, received.append)

        await claude_backend.watch(scope)
        await claude_backend.watch(scope)
        with open(path, "a") as f:
            f.write(user_line("two") + "\n")
        await asyncio.sleep(0.1)
        await claude_backend.close()

        assert received
        assert all(n == ChangeNotification(scope) for n in received)
        assert not claude_backend.is_watching(scope)

    @pytest.mark.asyncio
    async def test_unwatch_is_idempotent(self, claude_backend, project_dir):
        write_log(project_dir / f"{SESSION_ID}.jsonl", [user_line("one")])
        scope = SessionScope(PROJECT, SESSION_ID)
        await claude_backend.watch(scope)
        await claude_backend.unwatch(scope)
        await claude_backend.unwatch(scope)
        assert not claude_backend.is_watching(scope)
