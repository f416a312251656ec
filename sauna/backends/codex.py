"""Codex CLI subprocess backend for sauna.

Spawns `codex exec --experimental-json` as an async subprocess, writes the
prompt to stdin, reads JSONL events from stdout, and translates them into
canonical ProviderEvents.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import time
from collections import deque
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from sauna.agent import _log_debug
from sauna.backends import (
    ErrorEvent,
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
from sauna.backends.details import extract_first_line, redact_secrets, tool_detail
from sauna.config import (
    CODEX_API_KEY_VARS,
    CODEX_AUTH_FILE,
    CODEX_DIAGNOSTIC_LINES,
    CODEX_EXECUTABLE,
    CODEX_HOME_VAR,
    CODEX_SANDBOX,
    CODEX_TERMINATE_TIMEOUT,
)
from sauna.prompt import build_prompt

CODEX_ALIASES: Mapping[str, str] = MappingProxyType({
    "codex": "gpt-5.2-codex",
    "codex-mini": "codex-mini-latest",
})

_SHELL_WRAPPER_RE = re.compile(r"/bin/(?:zsh|bash|sh)\s+-lc\s+(.+)$", re.DOTALL)
_CD_PREFIX_RE = re.compile(r"^cd\s+\S+\s*&&\s*")

_AUTH_ERROR_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b401\b",
        r"incorrect api key",
        r"invalid api key",
        r"api key.*(?:invalid|expired)",
        r"authentication.*failed",
        r"\bunauthorized\b",
    )
]
_RATE_LIMIT_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (r"\b429\b", r"rate.?limit", r"too many requests")
]
_NETWORK_ERROR_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ECONNREFUSED",
        r"ENOTFOUND",
        r"ETIMEDOUT",
        r"EHOSTUNREACH",
        r"fetch failed",
        r"failed to fetch",
    )
]


def _unwrap_shell_command(command: str) -> str:
    """Strip the shell wrapper from Codex command_execution commands.

    Codex wraps commands in three forms::

        /bin/zsh -lc 'actual command'      (single-quoted)
        /bin/zsh -lc "actual command"      (double-quoted)
        /bin/zsh -lc actual command         (unquoted)

    This extracts just the inner command for display purposes.
    """
    m = _SHELL_WRAPPER_RE.match(command)
    if not m:
        return command
    inner = m.group(1)
    if (inner.startswith('"') and inner.endswith('"')) or (
        inner.startswith("'") and inner.endswith("'")
    ):
        inner = inner[1:-1]
    inner = _CD_PREFIX_RE.sub("", inner)
    return inner.strip()


def _extract_text(item: dict[str, Any]) -> str:
    """Extract text from a Codex item.

    Items carry text either as a top-level ``text`` field or inside
    ``content`` blocks of type ``text`` or ``output_text``.
    """
    top = item.get("text")
    if isinstance(top, str) and top:
        return top
    parts = []
    for block in item.get("content") or []:
        if isinstance(block, dict) and block.get("type") in ("text", "output_text"):
            parts.append(block.get("text", ""))
    return "".join(parts)


def classify_codex_error(message: str) -> str:
    """Turn a raw Codex/OpenAI failure message into actionable text.

    Recognizes authentication, rate-limit and network failures; any other
    message is returned unchanged.
    """
    if any(p.search(message) for p in _AUTH_ERROR_RES):
        return (
            "OpenAI authentication failed. Your API key may be invalid or expired.\n\n"
            "Check your key at https://platform.openai.com/api-keys"
        )
    if any(p.search(message) for p in _RATE_LIMIT_RES):
        return (
            "OpenAI rate limit reached.\n\n"
            "Tip: Use a different model or wait a moment before retrying."
        )
    if any(p.search(message) for p in _NETWORK_ERROR_RES):
        return "Could not connect to OpenAI API. Check your internet connection."
    return message


class CodexError(Exception):
    """Raised when the codex process cannot be started."""


@dataclass
class CodexAdapterState:
    """Mutable state threaded through adapt_codex_event for one turn.

    Attributes:
        pending_tool_name: Tool announced by item.started, awaiting item.completed.
        partial_text: Latest agent_message text from item.updated, keyed by item id.
        has_emitted_text: Whether a non-empty text delta has been emitted yet.
        thread_id: Thread id from thread.started, used to resume the conversation.

    """

    pending_tool_name: str | None = None
    partial_text: dict[str, str] = field(default_factory=dict)
    has_emitted_text: bool = False
    thread_id: str | None = None


def adapt_codex_event(
    event: dict[str, Any],
    state: CodexAdapterState,
    duration_ms: int = 0,
) -> list[ProviderEvent]:
    """Convert one decoded Codex JSONL event into zero or more ProviderEvents.

    Pure translation: no I/O. Mutates ``state``.

    Args:
        event: A decoded JSONL event from ``codex exec --experimental-json``.
        state: Adapter state for the current turn.
        duration_ms: Time since the turn started, reported on turn.completed.

    Returns:
        The canonical events for this Codex event, possibly empty.

    """
    event_type = event.get("type", "")

    if event_type == "thread.started":
        state.thread_id = event.get("thread_id") or state.thread_id
        return []

    if event_type == "item.started":
        return _adapt_item_started(event.get("item") or {}, state)

    if event_type == "item.updated":
        item = event.get("item") or {}
        if item.get("type") == "agent_message" and item.get("id"):
            text = _extract_text(item)
            if text:
                state.partial_text[item["id"]] = text
        return []

    if event_type == "item.completed":
        return _adapt_item_completed(event.get("item") or {}, state)

    if event_type == "turn.completed":
        usage = event.get("usage") or {}
        return [ResultEvent.ok(SummaryInfo(
            input_tokens=usage.get("input_tokens", 0) or 0,
            output_tokens=usage.get("output_tokens", 0) or 0,
            num_turns=1,
            duration_ms=duration_ms,
        ))]

    if event_type == "turn.failed":
        error = event.get("error") or {}
        return [ResultEvent.failed([classify_codex_error(error.get("message") or "Turn failed")])]

    if event_type == "error":
        return [ErrorEvent(message=classify_codex_error(event.get("message") or "Unknown Codex error"))]

    # turn.started and unknown event types
    return []


def _adapt_item_started(item: dict[str, Any], state: CodexAdapterState) -> list[ProviderEvent]:
    item_type = item.get("type")
    if item_type == "command_execution":
        name = "Bash"
    elif item_type == "file_change":
        name = "Edit"
    elif item_type == "mcp_tool_call":
        name = item.get("tool") or "mcp_tool"
    else:
        # agent_message, reasoning, todo_list: nothing to announce
        return []
    state.pending_tool_name = name
    return [ToolStart(name=name)]


def _adapt_item_completed(item: dict[str, Any], state: CodexAdapterState) -> list[ProviderEvent]:
    item_type = item.get("type")

    if item_type == "command_execution":
        state.pending_tool_name = None
        detail = extract_first_line(_unwrap_shell_command(item.get("command") or ""))
        return [ToolEnd(name="Bash", detail=redact_secrets(detail) if detail else None)]

    if item_type == "file_change":
        state.pending_tool_name = None
        paths = [
            change["path"]
            for change in item.get("changes") or []
            if isinstance(change, dict) and change.get("path")
        ]
        return [ToolEnd(name="Edit", detail=paths[0] if paths else None)]

    if item_type == "mcp_tool_call":
        state.pending_tool_name = None
        arguments = item.get("arguments")
        detail = tool_detail(arguments) if isinstance(arguments, dict) else None
        return [ToolEnd(name=item.get("tool") or "mcp_tool", detail=detail)]

    if item_type == "web_search":
        return [
            ToolStart(name="WebSearch"),
            ToolEnd(name="WebSearch", detail=extract_first_line(item.get("query"))),
        ]

    if item_type == "agent_message":
        buffered = state.partial_text.pop(item.get("id", ""), "")
        text = _extract_text(item) or buffered
        if not text:
            return []
        state.has_emitted_text = True
        return [TextDelta(text=text)]

    if item_type == "error":
        return [ErrorEvent(message=item.get("message") or "Unknown Codex error")]

    # reasoning, todo_list and unknown item types
    return []


class CodexTurn:
    """One ``codex exec`` subprocess streaming the JSONL events of a single turn."""

    def __init__(self, args: list[str], prompt: str):
        self.args = args
        self.prompt = prompt
        self.diagnostics: deque[str] = deque(maxlen=CODEX_DIAGNOSTIC_LINES)
        self._process: asyncio.subprocess.Process | None = None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Start the process and yield decoded JSONL events until stdout closes.

        Raises:
            CodexError: If the codex executable cannot be started.

        """
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise CodexError(f"Could not start {self.args[0]}: {e}") from e

        try:
            # Write prompt to stdin and close immediately
            if self._process.stdin:
                self._process.stdin.write(self.prompt.encode())
                self._process.stdin.close()

            while self._process.stdout is not None:
                line = await self._process.stdout.readline()
                if not line:
                    break

                raw_line = line.decode(errors="replace").strip()
                if not raw_line:
                    continue
                try:
                    event = json.loads(raw_line)
                except json.JSONDecodeError:
                    _log_debug(f"[CODEX_RAW] unparseable: {raw_line[:500]}\n")
                    self.diagnostics.append(raw_line)
                    continue

                _log_debug(f"[CODEX_RAW] {raw_line[:1000]}\n")
                if isinstance(event, dict):
                    yield event

            await self._process.wait()
        finally:
            await self.terminate()

    async def terminate(self) -> None:
        """Stop the process: SIGTERM, then SIGKILL if it does not exit in time."""
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=CODEX_TERMINATE_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
        except ProcessLookupError:
            pass

    def failure_message(self) -> str:
        """Describe why the turn ended without a terminal event."""
        if self.diagnostics:
            return classify_codex_error("\n".join(self.diagnostics))
        return f"codex exited with status {self.returncode} before the turn completed"


async def _run_turn(turn: CodexTurn, state: CodexAdapterState) -> AsyncIterator[ProviderEvent]:
    """Adapt one turn's events, stopping after the first ResultEvent.

    The raw event reader is pulled one event at a time and closed explicitly,
    which terminates the turn's process if it is still running.
    """
    started = time.monotonic()
    raw_events = turn.events()
    finished = False
    try:
        while not finished:
            try:
                raw = await anext(raw_events)
            except StopAsyncIteration:
                break
            duration_ms = int((time.monotonic() - started) * 1000)
            for event in adapt_codex_event(raw, state, duration_ms):
                _log_debug(f"[EVENT] {event!r}\n")
                yield event
                if isinstance(event, ResultEvent):
                    finished = True
    finally:
        await raw_events.aclose()

    if not finished:
        yield ResultEvent.failed([turn.failure_message()])


class CodexInteractiveSession:
    """Multi-turn conversation on one Codex thread.

    Each turn runs its own ``codex exec`` process; turns after the first
    resume the thread id captured from ``thread.started``.
    """

    def __init__(self, provider: CodexProvider, config: InteractiveSessionConfig):
        self._provider = provider
        self._config = config
        self._pending: str | None = None
        self._turn: CodexTurn | None = None
        self.session_id: str | None = None
        self.is_first_turn = True
        self.phase = SessionPhase.IDLE

    async def send(self, message: str) -> None:
        """Queue a user turn. The first turn is prefixed with the context paths."""
        if self.phase is SessionPhase.CLOSED:
            raise SessionClosedError("Interactive session is closed")
        self.phase = SessionPhase.SENDING
        if self.is_first_turn:
            message = build_prompt(message, self._config.context)
            self.is_first_turn = False
        _log_debug(f"[TURN] thread_id={self.session_id}\n{message}\n")
        self._pending = message

    async def stream(self) -> AsyncIterator[ProviderEvent]:
        """Run the queued turn and yield its events, ending after the ResultEvent."""
        if self._pending is None:
            return
        message, self._pending = self._pending, None
        self.phase = SessionPhase.STREAMING

        state = CodexAdapterState(thread_id=self.session_id)
        self._turn = CodexTurn(
            self._provider.build_args(self._config.model, self.session_id),
            message,
        )
        try:
            async with aclosing(_run_turn(self._turn, state)) as events:
                async for event in events:
                    if state.thread_id:
                        self.session_id = state.thread_id
                    yield event
        finally:
            if state.thread_id:
                self.session_id = state.thread_id
            self._turn = None
            if self.phase is SessionPhase.STREAMING:
                self.phase = SessionPhase.IDLE

    async def close(self) -> None:
        """Terminate any running turn. Safe to call more than once."""
        if self.phase is SessionPhase.CLOSED:
            return
        self.phase = SessionPhase.CLOSED
        self._pending = None
        if self._turn is not None:
            await self._turn.terminate()


class CodexProvider:
    """Provider backed by the OpenAI Codex CLI.

    Requires the ``codex`` executable and credentials: OPENAI_API_KEY or
    CODEX_API_KEY in the environment, or a ``codex login`` auth file.
    """

    name = "codex"
    install_hint = (
        "Codex is not available: install the codex CLI and set OPENAI_API_KEY "
        "or CODEX_API_KEY, or run `codex login` to authenticate"
    )

    def _has_credentials(self) -> bool:
        if any(os.environ.get(var, "").strip() for var in CODEX_API_KEY_VARS):
            return True
        codex_home = os.environ.get(CODEX_HOME_VAR) or str(Path.home() / ".codex")
        return (Path(codex_home) / CODEX_AUTH_FILE).exists()

    def is_available(self) -> bool:
        try:
            return shutil.which(CODEX_EXECUTABLE) is not None and self._has_credentials()
        except (OSError, RuntimeError):
            return False

    def resolve_model(self, alias: str | None = None) -> str | None:
        if not alias:
            return None
        return CODEX_ALIASES.get(alias, alias)

    def known_aliases(self) -> Mapping[str, str]:
        return CODEX_ALIASES

    def build_args(self, model: str | None = None, thread_id: str | None = None) -> list[str]:
        """Build the ``codex exec`` command line for one turn.

        Args:
            model: Model id, or None for the CLI default.
            thread_id: Thread to resume, or None to start a new one.

        Returns:
            The argument vector.

        """
        args = [
            CODEX_EXECUTABLE, "exec", "--experimental-json",
            "--sandbox", CODEX_SANDBOX,
            "--cd", str(Path.cwd()),
        ]
        if model:
            args.extend(["--model", model])
        if thread_id:
            args.extend(["resume", thread_id])
        return args

    async def create_session(self, config: SessionConfig) -> AsyncIterator[ProviderEvent]:
        """Run a single-turn session and yield canonical events.

        Args:
            config: Prompt, model and context paths for the session.

        Yields:
            ProviderEvent instances in backend order.

        Raises:
            ProviderUnavailableError: If codex or its credentials are missing.
            CodexError: If the codex process cannot be started.

        """
        if not self.is_available():
            raise ProviderUnavailableError(self.install_hint)

        prompt = build_prompt(config.prompt, config.context)
        _log_debug(f"[PROMPT] provider=codex model={config.model}\n{prompt}\n")
        turn = CodexTurn(self.build_args(config.model), prompt)
        async with aclosing(_run_turn(turn, CodexAdapterState())) as events:
            async for event in events:
                yield event

    def create_interactive_session(
        self, config: InteractiveSessionConfig
    ) -> CodexInteractiveSession:
        if not self.is_available():
            raise ProviderUnavailableError(self.install_hint)
        return CodexInteractiveSession(self, config)


CODEX_PROVIDER = CodexProvider()
