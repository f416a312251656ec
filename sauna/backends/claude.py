"""Claude Agent SDK backend for sauna.

Runs sessions through the Claude Agent SDK with partial messages enabled and
translates the raw Anthropic stream events into canonical ProviderEvents.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient
from claude_agent_sdk.types import ResultMessage, StreamEvent

from sauna.agent import _log_debug
from sauna.backends import (
    InteractiveSessionConfig,
    ProviderEvent,
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
from sauna.backends.details import tool_detail
from sauna.config import CLAUDE_EXECUTABLE
from sauna.prompt import build_prompt

CLAUDE_ALIASES: Mapping[str, str] = MappingProxyType({
    "sonnet": "claude-sonnet-4-20250514",
    "opus": "claude-opus-4-20250514",
    "haiku": "claude-haiku-4-20250414",
})


@dataclass
class ClaudeAdapterState:
    """Mutable state threaded through adapt_claude_message for one session.

    Attributes:
        pending_tool_name: Tool from the latest tool_use block start, awaiting its stop.
        pending_tool_json: Accumulated input_json_delta fragments for the pending tool.
        has_emitted_text: Whether a non-empty text delta has been emitted yet.

    """

    pending_tool_name: str | None = None
    pending_tool_json: str = ""
    has_emitted_text: bool = False


def adapt_claude_message(message: Any, state: ClaudeAdapterState) -> list[ProviderEvent]:
    """Convert one Claude SDK message into zero or more ProviderEvents.

    Pure translation: no I/O and no formatting. Mutates ``state`` to correlate
    tool start/argument/stop blocks and to track text emission.

    Args:
        message: A message yielded by the Claude SDK client.
        state: Adapter state for the current session.

    Returns:
        The canonical events for this message, possibly empty.

    """
    if isinstance(message, ResultMessage):
        return _adapt_result(message, state)
    if isinstance(message, StreamEvent):
        return _adapt_stream_event(message.event or {}, state)
    # System, assistant and user messages duplicate what the stream events carry
    return []


def _adapt_result(message: Any, state: ClaudeAdapterState) -> list[ProviderEvent]:
    if message.subtype != "success":
        errors = list(getattr(message, "errors", None) or [])
        if not errors:
            errors = [message.result] if message.result else [message.subtype]
        return [ResultEvent.failed(errors)]

    events: list[ProviderEvent] = []
    # Some runs return the whole answer only in the result message
    if not state.has_emitted_text and message.result:
        state.has_emitted_text = True
        events.append(TextDelta(text=message.result))

    usage = message.usage or {}
    events.append(ResultEvent.ok(SummaryInfo(
        input_tokens=usage.get("input_tokens", 0) or 0,
        output_tokens=usage.get("output_tokens", 0) or 0,
        num_turns=message.num_turns,
        duration_ms=message.duration_ms,
    )))
    return events


def _adapt_stream_event(event: dict[str, Any], state: ClaudeAdapterState) -> list[ProviderEvent]:
    event_type = event.get("type")
    delta = event.get("delta") or {}
    block = event.get("content_block") or {}

    if event_type == "content_block_delta" and delta.get("type") == "text_delta":
        text = delta.get("text") or ""
        if not text:
            return []
        state.has_emitted_text = True
        return [TextDelta(text=text)]

    if event_type == "content_block_start" and block.get("type") == "tool_use":
        # A new tool abandons any accumulation still pending
        state.pending_tool_name = block.get("name", "")
        state.pending_tool_json = ""
        return [ToolStart(name=state.pending_tool_name)]

    if (
        event_type == "content_block_delta"
        and delta.get("type") == "input_json_delta"
        and state.pending_tool_name is not None
    ):
        state.pending_tool_json += delta.get("partial_json", "")
        return []

    if event_type == "content_block_stop" and state.pending_tool_name is not None:
        name = state.pending_tool_name
        raw = state.pending_tool_json
        state.pending_tool_name = None
        state.pending_tool_json = ""

        detail: str | None = None
        if raw:
            try:
                arguments = json.loads(raw)
            except json.JSONDecodeError:
                arguments = None
            if isinstance(arguments, dict):
                detail = tool_detail(arguments)
        return [ToolEnd(name=name, detail=detail)]

    return []


def _capture_session_id(message: Any) -> str | None:
    """Return the session id carried by a message, if any."""
    session_id = getattr(message, "session_id", None)
    if not session_id:
        data = getattr(message, "data", None)
        if isinstance(data, dict):
            session_id = data.get("session_id")
    return session_id or None


class ClaudeInteractiveSession:
    """Multi-turn conversation over one connected ClaudeSDKClient.

    The client's message stream is shared by every turn, so it is pulled one
    message at a time and never iterated with a construct that would finalize
    it when a turn ends.
    """

    def __init__(self, config: InteractiveSessionConfig, options: ClaudeAgentOptions):
        self._config = config
        self._client = ClaudeSDKClient(options=options)
        self._messages: AsyncIterator[Any] | None = None
        self._turn_pending = False
        self._abandoned_turns = 0
        self.session_id: str | None = None
        self.is_first_turn = True
        self.phase = SessionPhase.IDLE

    async def send(self, message: str) -> None:
        """Submit a user turn. The first turn is prefixed with the context paths."""
        if self.phase is SessionPhase.CLOSED:
            raise SessionClosedError("Interactive session is closed")

        self.phase = SessionPhase.SENDING
        if self.is_first_turn:
            message = build_prompt(message, self._config.context)
            self.is_first_turn = False

        if self._messages is None:
            await self._client.connect()
            self._messages = self._client.receive_messages()

        _log_debug(f"[TURN] session_id={self.session_id}\n{message}\n")
        await self._client.query(message, session_id=self.session_id or "default")
        if self._turn_pending:
            # The previous turn was never streamed
            self._abandoned_turns += 1
        self._turn_pending = True

    async def _next_message(self) -> Any:
        message = await anext(self._messages)
        session_id = _capture_session_id(message)
        if session_id:
            self.session_id = session_id
        return message

    async def _discard_abandoned_turns(self) -> None:
        """Skip what is left of turns whose streams were closed before their result."""
        while self._abandoned_turns:
            try:
                message = await self._next_message()
            except StopAsyncIteration:
                self._abandoned_turns = 0
                return
            _log_debug(f"[DISCARD] {type(message).__name__}\n")
            if isinstance(message, ResultMessage):
                self._abandoned_turns -= 1

    async def stream(self) -> AsyncIterator[ProviderEvent]:
        """Yield one turn's events, stopping after its ResultEvent.

        A turn abandoned by an earlier consumer is read to its result first,
        so its leftovers never show up in this turn.
        """
        if not self._turn_pending or self._messages is None:
            return
        self._turn_pending = False
        self.phase = SessionPhase.STREAMING
        state = ClaudeAdapterState()
        finished = False

        try:
            await self._discard_abandoned_turns()

            while True:
                try:
                    message = await self._next_message()
                except StopAsyncIteration:
                    finished = True
                    yield ResultEvent.failed(["Claude session ended before the turn completed"])
                    return

                events = adapt_claude_message(message, state)
                finished = any(isinstance(event, ResultEvent) for event in events)
                for event in events:
                    _log_debug(f"[EVENT] {event!r}\n")
                    yield event
                if finished:
                    return
        finally:
            if not finished:
                self._abandoned_turns += 1
            if self.phase is SessionPhase.STREAMING:
                self.phase = SessionPhase.IDLE

    async def close(self) -> None:
        """Disconnect the client. Safe to call more than once."""
        if self.phase is SessionPhase.CLOSED:
            return
        self.phase = SessionPhase.CLOSED
        messages, self._messages = self._messages, None
        if messages is not None:
            await messages.aclose()
            await self._client.disconnect()


class ClaudeProvider:
    """Provider backed by Claude Code through the Claude Agent SDK.

    Locates the ``claude`` executable on PATH and runs sessions with partial
    messages enabled so text and tool arguments stream incrementally.
    """

    name = "claude"
    install_hint = (
        "Claude Code is not available: install Claude Code and ensure "
        "`claude` is in your PATH"
    )

    def _find_claude(self) -> str | None:
        """Return the resolved path of the claude executable, or None."""
        which = shutil.which(CLAUDE_EXECUTABLE)
        if which is None:
            return None
        try:
            return str(Path(which).resolve(strict=True))
        except OSError:
            return None

    def is_available(self) -> bool:
        return self._find_claude() is not None

    def resolve_model(self, alias: str | None = None) -> str | None:
        if not alias:
            return None
        return CLAUDE_ALIASES.get(alias, alias)

    def known_aliases(self) -> Mapping[str, str]:
        return CLAUDE_ALIASES

    def _options(self, model: str | None) -> ClaudeAgentOptions:
        cli_path = self._find_claude()
        if cli_path is None:
            raise ProviderUnavailableError(self.install_hint)
        return ClaudeAgentOptions(
            cwd=str(Path.cwd()),
            cli_path=cli_path,
            system_prompt={"type": "preset", "preset": "claude_code"},
            setting_sources=["user", "project"],
            permission_mode="bypassPermissions",
            include_partial_messages=True,
            model=model,
        )

    async def create_session(self, config: SessionConfig) -> AsyncIterator[ProviderEvent]:
        """Run a single-turn session and yield canonical events.

        Args:
            config: Prompt, model and context paths for the session.

        Yields:
            ProviderEvent instances in backend order.

        Raises:
            ProviderUnavailableError: If the claude executable cannot be found.

        """
        options = self._options(config.model)
        prompt = build_prompt(config.prompt, config.context)
        _log_debug(f"[PROMPT] provider=claude model={config.model}\n{prompt}\n")

        state = ClaudeAdapterState()
        async with ClaudeSDKClient(options=options) as client:
            await client.query(prompt)
            async for message in client.receive_response():
                for event in adapt_claude_message(message, state):
                    _log_debug(f"[EVENT] {event!r}\n")
                    yield event

    def create_interactive_session(
        self, config: InteractiveSessionConfig
    ) -> ClaudeInteractiveSession:
        return ClaudeInteractiveSession(config, self._options(config.model))


CLAUDE_PROVIDER = ClaudeProvider()
