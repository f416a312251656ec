# tests/test_backend_claude.py
"""Tests for the Claude adapter, provider and interactive session."""

from dataclasses import dataclass, field
from typing import Any

import pytest

from sauna.backends import (
    InteractiveSessionConfig,
    ProviderUnavailableError,
    ResultEvent,
    SessionClosedError,
    SessionConfig,
    SessionPhase,
    SummaryInfo,
    TextDelta,
    ToolEnd,
    ToolStart,
)
from sauna.backends.claude import (
    ClaudeAdapterState,
    ClaudeInteractiveSession,
    ClaudeProvider,
    adapt_claude_message,
)

# --- Mock SDK types ---


@dataclass
class MockStreamEvent:
    event: dict[str, Any]
    session_id: str = "sess-1"


@dataclass
class MockResultMessage:
    subtype: str = "success"
    result: str | None = None
    usage: dict[str, Any] | None = field(default_factory=lambda: {"input_tokens": 100, "output_tokens": 50})
    num_turns: int = 1
    duration_ms: int = 1500
    session_id: str = "sess-1"
    errors: list[str] | None = None


@dataclass
class MockSystemMessage:
    subtype: str = "init"
    data: dict[str, Any] = field(default_factory=lambda: {"session_id": "sess-1"})


class MockOptions:
    def __init__(self, **kwargs: Any):
        self.__dict__.update(kwargs)


def text(value: str) -> MockStreamEvent:
    return MockStreamEvent({"type": "content_block_delta", "delta": {"type": "text_delta", "text": value}})


def tool_start(name: str) -> MockStreamEvent:
    return MockStreamEvent({"type": "content_block_start", "content_block": {"type": "tool_use", "name": name}})


def tool_json(partial: str) -> MockStreamEvent:
    return MockStreamEvent({
        "type": "content_block_delta",
        "delta": {"type": "input_json_delta", "partial_json": partial},
    })


def block_stop() -> MockStreamEvent:
    return MockStreamEvent({"type": "content_block_stop"})


class MockClaudeSDKClient:
    """Mock client that yields a configurable message sequence."""

    script: list[Any] = []
    instances: list["MockClaudeSDKClient"] = []

    def __init__(self, options: Any = None):
        self.options = options
        self.queries: list[tuple[str, str]] = []
        self.connected = False
        self.disconnected = 0
        self.stream_finalized = False
        MockClaudeSDKClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.disconnected += 1

    async def query(self, prompt: str, session_id: str = "default"):
        self.queries.append((prompt, session_id))

    async def receive_response(self):
        for message in self.script:
            yield message

    async def receive_messages(self):
        try:
            for message in self.script:
                yield message
        finally:
            self.stream_finalized = True


@pytest.fixture
def patch_sdk(monkeypatch):
    """Return a function that patches the SDK imports in claude.py."""
    def _patch(script: list[Any]):
        MockClaudeSDKClient.script = script
        MockClaudeSDKClient.instances = []
        monkeypatch.setattr("sauna.backends.claude.ClaudeSDKClient", MockClaudeSDKClient)
        monkeypatch.setattr("sauna.backends.claude.ClaudeAgentOptions", MockOptions)
        monkeypatch.setattr("sauna.backends.claude.StreamEvent", MockStreamEvent)
        monkeypatch.setattr("sauna.backends.claude.ResultMessage", MockResultMessage)
        monkeypatch.setattr(ClaudeProvider, "_find_claude", lambda self: "/usr/local/bin/claude")
    return _patch


def adapt_all(messages: list[Any], state: ClaudeAdapterState | None = None) -> list[Any]:
    state = state or ClaudeAdapterState()
    events = []
    for message in messages:
        events.extend(adapt_claude_message(message, state))
    return events


# --- Adapter ---


def test_adapt_text_delta(patch_sdk):
    patch_sdk([])
    state = ClaudeAdapterState()
    assert adapt_claude_message(text("Hello"), state) == [TextDelta(text="Hello")]
    assert state.has_emitted_text is True


def test_adapt_empty_text_delta_is_dropped(patch_sdk):
    patch_sdk([])
    state = ClaudeAdapterState()
    assert adapt_claude_message(text(""), state) == []
    assert state.has_emitted_text is False


def test_adapt_tool_with_streamed_arguments(patch_sdk):
    patch_sdk([])
    events = adapt_all([
        tool_start("Read"),
        tool_json('{"file_pa'),
        tool_json('th": "src/main.py"}'),
        block_stop(),
    ])
    assert events == [ToolStart(name="Read"), ToolEnd(name="Read", detail="src/main.py")]


def test_adapt_tool_command_is_redacted(patch_sdk):
    patch_sdk([])
    events = adapt_all([
        tool_start("Bash"),
        tool_json('{"command": "export TOKEN=abc123 && run"}'),
        block_stop(),
    ])
    assert events[-1] == ToolEnd(name="Bash", detail="export TOKEN=*** && run")


def test_adapt_tool_malformed_json_yields_bare_end(patch_sdk):
    patch_sdk([])
    events = adapt_all([tool_start("Bash"), tool_json('{"command": "ls'), block_stop()])
    assert events == [ToolStart(name="Bash"), ToolEnd(name="Bash")]


def test_adapt_tool_without_arguments(patch_sdk):
    patch_sdk([])
    events = adapt_all([tool_start("TodoWrite"), block_stop()])
    assert events == [ToolStart(name="TodoWrite"), ToolEnd(name="TodoWrite")]


def test_adapt_second_tool_start_abandons_first(patch_sdk):
    """A superseded tool never gets a synthetic ToolEnd."""
    patch_sdk([])
    events = adapt_all([
        tool_start("Read"),
        tool_json('{"file_path": "a.py"}'),
        tool_start("Grep"),
        tool_json('{"pattern": "TODO"}'),
        block_stop(),
    ])
    assert events == [ToolStart(name="Read"), ToolStart(name="Grep"), ToolEnd(name="Grep", detail="TODO")]


def test_adapt_block_stop_without_pending_tool(patch_sdk):
    patch_sdk([])
    state = ClaudeAdapterState()
    assert adapt_claude_message(block_stop(), state) == []


def test_adapt_json_delta_without_pending_tool_is_ignored(patch_sdk):
    patch_sdk([])
    state = ClaudeAdapterState()
    assert adapt_claude_message(tool_json('{"x": 1}'), state) == []
    assert state.pending_tool_json == ""


def test_adapt_success_result(patch_sdk):
    patch_sdk([])
    state = ClaudeAdapterState(has_emitted_text=True)
    events = adapt_claude_message(MockResultMessage(result="Done", num_turns=3, duration_ms=4200), state)
    assert events == [ResultEvent.ok(SummaryInfo(input_tokens=100, output_tokens=50, num_turns=3, duration_ms=4200))]


def test_adapt_success_result_text_fallback(patch_sdk):
    """The result text is emitted when no text streamed."""
    patch_sdk([])
    events = adapt_all([MockResultMessage(result="Final answer")])
    assert events[0] == TextDelta(text="Final answer")
    assert isinstance(events[1], ResultEvent)
    assert events[1].success is True


def test_adapt_success_result_missing_usage(patch_sdk):
    patch_sdk([])
    events = adapt_all([MockResultMessage(usage=None)])
    assert events == [ResultEvent.ok(SummaryInfo(input_tokens=0, output_tokens=0, num_turns=1, duration_ms=1500))]


def test_adapt_error_result(patch_sdk):
    patch_sdk([])
    events = adapt_all([MockResultMessage(subtype="error_max_turns", errors=["Reached max turns"])])
    assert events == [ResultEvent.failed(["Reached max turns"])]


def test_adapt_error_result_falls_back_to_subtype(patch_sdk):
    patch_sdk([])
    events = adapt_all([MockResultMessage(subtype="error_during_execution")])
    assert events == [ResultEvent.failed(["error_during_execution"])]


def test_adapt_ignores_other_messages(patch_sdk):
    patch_sdk([])
    assert adapt_all([MockSystemMessage(), object()]) == []


# --- Provider ---


def test_provider_unavailable_without_executable(monkeypatch):
    monkeypatch.setattr("sauna.backends.claude.shutil.which", lambda name: None)
    provider = ClaudeProvider()
    assert provider.is_available() is False


def test_provider_available_when_executable_resolves(monkeypatch, tmp_path):
    exe = tmp_path / "claude"
    exe.write_text("#!/bin/sh\n")
    monkeypatch.setattr("sauna.backends.claude.shutil.which", lambda name: str(exe))
    assert ClaudeProvider().is_available() is True


def test_provider_unavailable_when_executable_is_dangling(monkeypatch, tmp_path):
    link = tmp_path / "claude"
    link.symlink_to(tmp_path / "missing")
    monkeypatch.setattr("sauna.backends.claude.shutil.which", lambda name: str(link))
    assert ClaudeProvider().is_available() is False


@pytest.mark.asyncio
async def test_create_session_raises_when_unavailable(monkeypatch):
    monkeypatch.setattr("sauna.backends.claude.shutil.which", lambda name: None)
    provider = ClaudeProvider()
    with pytest.raises(ProviderUnavailableError, match="install Claude Code"):
        async for _ in provider.create_session(SessionConfig(prompt="hi")):
            pass


@pytest.mark.asyncio
async def test_create_session_yields_events(patch_sdk):
    patch_sdk([
        MockSystemMessage(),
        text("Hello"),
        text(" world"),
        tool_start("Bash"),
        tool_json('{"command": "ls -la"}'),
        block_stop(),
        MockResultMessage(result="Hello world"),
    ])
    provider = ClaudeProvider()
    events = [
        event
        async for event in provider.create_session(
            SessionConfig(prompt="Say hello", model="claude-sonnet-4-20250514", context=["README.md"])
        )
    ]

    assert events[:4] == [
        TextDelta(text="Hello"),
        TextDelta(text=" world"),
        ToolStart(name="Bash"),
        ToolEnd(name="Bash", detail="ls -la"),
    ]
    assert events[4].success is True
    # Text already streamed, so no fallback delta
    assert len(events) == 5

    client = MockClaudeSDKClient.instances[0]
    assert client.queries[0][0] == "Context: README.md\n\nSay hello"
    assert client.options.include_partial_messages is True
    assert client.options.model == "claude-sonnet-4-20250514"
    assert client.options.cli_path == "/usr/local/bin/claude"


# --- Interactive session ---


def _session() -> ClaudeInteractiveSession:
    return ClaudeInteractiveSession(InteractiveSessionConfig(context=["src"]), MockOptions())


@pytest.mark.asyncio
async def test_interactive_two_turns_share_connection(patch_sdk):
    patch_sdk([
        MockSystemMessage(),
        text("First"),
        MockResultMessage(),
        text("Second"),
        MockResultMessage(),
    ])
    session = _session()

    await session.send("hello")
    first = [event async for event in session.stream()]
    assert first[0] == TextDelta(text="First")
    assert isinstance(first[-1], ResultEvent)
    assert session.phase is SessionPhase.IDLE

    client = MockClaudeSDKClient.instances[0]
    assert client.stream_finalized is False

    await session.send("again")
    second = [event async for event in session.stream()]
    assert second[0] == TextDelta(text="Second")

    assert client.queries == [("Context: src\n\nhello", "default"), ("again", "sess-1")]
    assert session.session_id == "sess-1"
    assert client.connected is True

    await session.close()
    assert client.disconnected == 1
    assert client.stream_finalized is True


@pytest.mark.asyncio
async def test_interactive_turn_closed_early_does_not_leak(patch_sdk):
    patch_sdk([
        text("First"),
        text(" more"),
        MockResultMessage(),
        text("Second"),
        MockResultMessage(),
    ])
    session = _session()

    await session.send("hello")
    stream = session.stream()
    assert await anext(stream) == TextDelta(text="First")
    await stream.aclose()
    assert session.phase is SessionPhase.IDLE

    await session.send("again")
    second = [event async for event in session.stream()]
    assert second[0] == TextDelta(text="Second")
    assert len(second) == 2
    assert second[1].success is True
    assert MockClaudeSDKClient.instances[0].stream_finalized is False


@pytest.mark.asyncio
async def test_interactive_unstreamed_turn_is_skipped(patch_sdk):
    patch_sdk([
        text("First"),
        MockResultMessage(),
        text("Second"),
        MockResultMessage(),
    ])
    session = _session()

    await session.send("hello")
    await session.send("again")
    events = [event async for event in session.stream()]
    assert events[0] == TextDelta(text="Second")
    assert isinstance(events[-1], ResultEvent)


@pytest.mark.asyncio
async def test_interactive_stream_without_send_yields_nothing(patch_sdk):
    patch_sdk([text("unused"), MockResultMessage()])
    session = _session()
    assert [event async for event in session.stream()] == []


@pytest.mark.asyncio
async def test_interactive_stream_ends_before_result(patch_sdk):
    patch_sdk([text("partial")])
    session = _session()
    await session.send("hello")
    events = [event async for event in session.stream()]
    assert events[0] == TextDelta(text="partial")
    assert events[-1].success is False


@pytest.mark.asyncio
async def test_interactive_close_is_idempotent(patch_sdk):
    patch_sdk([MockResultMessage()])
    session = _session()
    await session.send("hello")
    _ = [event async for event in session.stream()]
    await session.close()
    await session.close()
    assert MockClaudeSDKClient.instances[0].disconnected == 1
    assert session.phase is SessionPhase.CLOSED


@pytest.mark.asyncio
async def test_interactive_send_after_close_raises(patch_sdk):
    patch_sdk([])
    session = _session()
    await session.close()
    with pytest.raises(SessionClosedError):
        await session.send("hello")


def test_create_interactive_session_raises_when_unavailable(monkeypatch):
    monkeypatch.setattr("sauna.backends.claude.shutil.which", lambda name: None)
    with pytest.raises(ProviderUnavailableError):
        ClaudeProvider().create_interactive_session(InteractiveSessionConfig())
