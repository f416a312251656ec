"""Loop orchestration for sauna.

Handles single-run vs loop mode, iteration headers, cooperative
cancellation and error isolation between iterations. Takes a session
factory and Rich consoles, so it has no direct backend or stdout dependency.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass

import anyio
from rich.console import Console

from sauna.agent import _log_debug
from sauna.backends import ProviderEvent, ResultEvent
from sauna.stream import RenderState, print_loop_header, render_event, render_exception
from sauna.ui import write_plain

SessionFactory = Callable[[], AsyncIterator[ProviderEvent]]


@dataclass
class LoopConfig:
    """Iteration mode for run_loop.

    Attributes:
        forever: Repeat until cancelled.
        count: Run exactly this many iterations (at least 1).

    """

    forever: bool = False
    count: int | None = None


async def _run_once(
    create_session: SessionFactory,
    console: Console,
    err_console: Console | None,
) -> tuple[bool, RenderState]:
    """Run one session to completion with a fresh RenderState.

    Returns:
        Tuple of (succeeded, final render state). A raised exception or a
        failed ResultEvent counts as failure.

    """
    state = RenderState()
    succeeded = True
    try:
        async with aclosing(create_session()) as events:
            async for event in events:
                render_event(event, console, state, err_console)
                if isinstance(event, ResultEvent) and not event.success:
                    succeeded = False
    except Exception as exc:
        _log_debug(f"[EXECUTE_ERROR] {type(exc).__name__}: {exc}\n")
        render_exception(exc, console, state, err_console)
        succeeded = False
    return succeeded, state


async def run_loop(
    config: LoopConfig,
    create_session: SessionFactory,
    console: Console,
    cancel: anyio.Event | None = None,
    err_console: Console | None = None,
) -> bool:
    """Run the session once, a fixed number of times, or until cancelled.

    - Forever: ``loop N`` headers until ``cancel`` is set.
    - Fixed count: ``loop i / N`` headers for N iterations.
    - Single run: no header; failure is propagated to the caller.

    Cancellation is checked before each iteration starts and after each one
    completes; an iteration in flight always runs to completion.

    Args:
        config: Iteration mode.
        create_session: Factory returning a fresh event stream per iteration.
        console: Primary output console.
        cancel: Cooperative stop signal.
        err_console: Console for failures; falls back to ``console``.

    Returns:
        False only when a single run failed. Loop modes report failures per
        iteration and always return True.

    """

    def cancelled() -> bool:
        return cancel is not None and cancel.is_set()

    async def iterate(iteration: int, total: int | None) -> None:
        _log_debug(f"[ITERATION] {iteration} / {total if total is not None else '∞'}\n")
        print_loop_header(console, iteration, total)
        _, state = await _run_once(create_session, console, err_console)
        # Next divider must start on its own line
        if not state.last_char_was_newline:
            write_plain(console, "\n")

    if config.forever:
        iteration = 0
        while not cancelled():
            iteration += 1
            await iterate(iteration, None)
            if cancelled():
                break
        return True

    if config.count is not None:
        for iteration in range(1, config.count + 1):
            if cancelled():
                break
            await iterate(iteration, config.count)
            if cancelled():
                break
        return True

    succeeded, _ = await _run_once(create_session, console, err_console)
    return succeeded
