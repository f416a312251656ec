"""Streaming output formatting for sauna.

Pure formatting functions build the plain text of tags, summaries, errors
and loop dividers. render_event() writes canonical events to a Rich console
in real time, tracking newline position in a RenderState so tool tags and
summaries always start on their own line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rich.console import Console

from sauna.backends import (
    ErrorEvent,
    ProviderEvent,
    ResultEvent,
    SummaryInfo,
    TextDelta,
    ToolEnd,
    ToolStart,
)
from sauna.config import LOOP_HEADER_WIDTH
from sauna.ui import write_plain

_LEADING_BLANK_LINES_RE = re.compile(r"^(?:[ \t]*\r?\n)+")
_BAR = "━"


@dataclass
class RenderState:
    """Formatting state for one run (loop iteration or interactive turn).

    Attributes:
        last_char_was_newline: Whether the last character written to the
            primary console was a newline. Styling codes never count.
        is_first_text_output: Whether no agent text has been written yet;
            leading blank lines are stripped from the first text.

    """

    last_char_was_newline: bool = True
    is_first_text_output: bool = True


def format_tool_tag(name: str, detail: str | None = None) -> str:
    """Format a tool tag, e.g. ``[Read] src/main.py``."""
    if detail:
        return f"[{name}] {detail}"
    return f"[{name}]"


def format_summary(summary: SummaryInfo) -> str:
    """Format a success summary with tokens, turns and duration."""
    total_tokens = summary.input_tokens + summary.output_tokens
    turn_word = "turn" if summary.num_turns == 1 else "turns"
    seconds = summary.duration_ms / 1000
    return f"{total_tokens} tokens · {summary.num_turns} {turn_word} · {seconds:.1f}s"


def format_error(errors: list[str]) -> str:
    """Format one ``error: ...`` line per error message."""
    if not errors:
        return "error: session failed"
    return "\n".join(f"error: {error}" for error in errors)


def format_loop_header(
    iteration: int,
    total: int | None = None,
    columns: int = LOOP_HEADER_WIDTH,
) -> str:
    """Format a loop divider: ``━━ loop N ━━`` or ``━━ loop N / X ━━``.

    The label is centered in ``columns`` characters; an odd remainder puts
    the extra bar on the right. When there is no room for bars the bare
    label is returned.
    """
    label = f"loop {iteration} / {total}" if total is not None else f"loop {iteration}"
    padded = f" {label} "
    remaining = columns - len(padded)
    if remaining < 2:
        return label
    left = remaining // 2
    return _BAR * left + padded + _BAR * (remaining - left)


def print_loop_header(console: Console, iteration: int, total: int | None = None) -> None:
    """Write a bold loop divider line."""
    write_plain(console, format_loop_header(iteration, total), style="sauna.header")
    write_plain(console, "\n")


def _write(console: Console, state: RenderState, text: str, style: str | None = None) -> None:
    if not text:
        return
    write_plain(console, text, style=style)
    state.last_char_was_newline = text.endswith("\n")


def _render_error(
    text: str,
    console: Console,
    state: RenderState,
    err_console: Console | None,
) -> None:
    sep = "" if state.last_char_was_newline else "\n"
    if err_console is None:
        _write(console, state, sep)
        _write(console, state, text, style="sauna.error")
        _write(console, state, "\n")
        return
    # The primary console is untouched, so its state stays as it was
    write_plain(err_console, sep)
    write_plain(err_console, text, style="sauna.error")
    write_plain(err_console, "\n")


def render_event(
    event: ProviderEvent,
    console: Console,
    state: RenderState,
    err_console: Console | None = None,
) -> None:
    """Write one canonical event to the console.

    Args:
        event: The event to render.
        console: Primary output console.
        state: Render state for the current run; updated in place.
        err_console: Console for failures and errors. Falls back to
            ``console`` when not supplied.

    """
    if isinstance(event, TextDelta):
        text = event.text
        if state.is_first_text_output:
            text = _LEADING_BLANK_LINES_RE.sub("", text)
            if not text:
                return
            state.is_first_text_output = False
        _write(console, state, text, style="sauna.agent")

    elif isinstance(event, ToolStart):
        # Progress only; the tag is written when the tool ends
        return

    elif isinstance(event, ToolEnd):
        if not state.last_char_was_newline:
            _write(console, state, "\n")
        _write(console, state, format_tool_tag(event.name, event.detail), style="sauna.tool")
        _write(console, state, "\n")

    elif isinstance(event, ResultEvent):
        if not event.success:
            _render_error(format_error(event.errors), console, state, err_console)
            return
        if event.summary is None:
            return
        if not state.last_char_was_newline:
            _write(console, state, "\n")
        _write(console, state, format_summary(event.summary), style="sauna.summary")
        _write(console, state, "\n")

    elif isinstance(event, ErrorEvent):
        _render_error(f"error: {event.message}", console, state, err_console)


def render_exception(
    exc: BaseException,
    console: Console,
    state: RenderState,
    err_console: Console | None = None,
) -> None:
    """Report an exception raised while a run was streaming."""
    _render_error(f"error: {exc}", console, state, err_console)
