"""Interactive multi-turn REPL for sauna.

Provider-agnostic: drives the conversation through the InteractiveSession
contract, so any provider implementing create_interactive_session() can
power it. The ``> `` prompt is written to the error console so it does not
mix with agent output on standard output.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field

import anyio
from rich.console import Console

from sauna.agent import _log_debug
from sauna.backends import (
    InteractiveSession,
    InteractiveSessionConfig,
    Provider,
    SessionClosedError,
)
from sauna.stream import RenderState, render_event, render_exception
from sauna.ui import print_prompt, read_input_line

ReadLine = Callable[[], Awaitable[str | None]]


@dataclass
class InteractiveConfig:
    """Settings for an interactive session.

    Attributes:
        provider: Provider that creates the session.
        prompt: Optional first message; read from input when absent.
        model: Resolved model id, or None for the provider default.
        context: Context paths attached to the first turn.

    """

    provider: Provider
    prompt: str | None = None
    model: str | None = None
    context: list[str] = field(default_factory=list)


async def _read_stdin_line() -> str | None:
    """Read a line from stdin without blocking the event loop."""
    return await anyio.to_thread.run_sync(read_input_line, abandon_on_cancel=True)


async def run_interactive(
    config: InteractiveConfig,
    console: Console,
    err_console: Console | None = None,
    read_line: ReadLine | None = None,
    session: InteractiveSession | None = None,
) -> None:
    """Run the interactive REPL until empty input or EOF.

    - The first message comes from ``config.prompt`` or the first input line.
    - Each turn is sent with session.send() and rendered from session.stream()
      with a fresh RenderState.
    - A failing turn is reported on the error console; the session stays open.
    - The session is always closed on exit, including on KeyboardInterrupt.

    Args:
        config: Provider, first prompt, model and context.
        console: Primary output console for agent output.
        err_console: Console for the prompt and errors; falls back to ``console``.
        read_line: Async line reader returning None on EOF. Defaults to stdin.
        session: Pre-built session, bypassing the provider.

    """
    read = read_line or _read_stdin_line
    prompt_console = err_console or console

    if session is None:
        session = config.provider.create_interactive_session(
            InteractiveSessionConfig(model=config.model, context=list(config.context))
        )

    try:
        message = config.prompt
        if not message:
            print_prompt(prompt_console, after_newline=True)
            line = await read()
            if line is None or not line.strip():
                return
            message = line

        while True:
            state = RenderState()
            try:
                await session.send(message)
                async with aclosing(session.stream()) as events:
                    async for event in events:
                        render_event(event, console, state, err_console)
            except SessionClosedError as exc:
                render_exception(exc, console, state, err_console)
                break
            except Exception as exc:
                _log_debug(f"[EXECUTE_ERROR] {type(exc).__name__}: {exc}\n")
                render_exception(exc, console, state, err_console)

            print_prompt(prompt_console, after_newline=state.last_char_was_newline)
            line = await read()
            # Empty input or EOF ends the session
            if line is None or not line.strip():
                break
            message = line
    finally:
        await session.close()
