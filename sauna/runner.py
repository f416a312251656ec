"""Top-level orchestration: provider selection, availability, and run modes."""

import signal
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TextIO

import anyio

from sauna.agent import (
    _log_debug,
    console,
    err_console,
    set_debug_log,
    set_shutdown_requested,
    shutdown_requested,
)
from sauna.backends import (
    Provider,
    ProviderUnavailableError,
    SessionConfig,
    UnknownProviderError,
    resolve_provider,
)
from sauna.config import DEBUG_LOG_PATTERN
from sauna.interactive import InteractiveConfig, run_interactive
from sauna.loop import LoopConfig, run_loop
from sauna.ui import print_dim, print_error, print_info

# Exit code for a run aborted by a repeated signal
EXIT_INTERRUPTED = 130


@dataclass
class RunConfig:
    """Configuration for a sauna run.

    Attributes:
        prompt: Prompt to send. Optional only in interactive mode.
        model: Model name or alias; also used to infer the provider.
        provider: Explicit provider name ("claude" or "codex").
        context: File or directory paths referenced in the first prompt.
        forever: Repeat the prompt until interrupted.
        count: Repeat the prompt this many times.
        interactive: Hold a multi-turn conversation instead of looping.
        debug: Write a debug log to a timestamped file in the working directory.

    """

    prompt: str | None = None
    model: str | None = None
    provider: str | None = None
    context: list[str] = field(default_factory=list)
    forever: bool = False
    count: int | None = None
    interactive: bool = False
    debug: bool = False


async def _run_loop_mode(config: RunConfig, provider: Provider, model: str | None) -> int:
    """Run single, fixed-count or forever mode with signal-driven cancellation.

    The first SIGINT/SIGTERM lets the current iteration finish and stops the
    loop; a second one cancels the iteration in flight.
    """
    cancel = anyio.Event()
    aborted = False
    succeeded = False
    session_config = SessionConfig(prompt=config.prompt or "", model=model, context=list(config.context))

    async def watch_signals(scope: anyio.CancelScope) -> None:
        nonlocal aborted
        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async for signum in signals:
                set_shutdown_requested(True)
                if cancel.is_set():
                    aborted = True
                    scope.cancel()
                    return
                cancel.set()
                print_dim(
                    err_console,
                    f"Received {signal.Signals(signum).name}, stopping after the current run",
                )

    async with anyio.create_task_group() as tg:
        tg.start_soon(watch_signals, tg.cancel_scope)
        succeeded = await run_loop(
            LoopConfig(forever=config.forever, count=config.count),
            lambda: provider.create_session(session_config),
            console,
            cancel=cancel,
            err_console=err_console,
        )
        tg.cancel_scope.cancel()

    if shutdown_requested():
        _log_debug(f"[SHUTDOWN] aborted={aborted}\n")
    if aborted:
        return EXIT_INTERRUPTED
    return 0 if succeeded else 1


async def run(config: RunConfig | None = None) -> int:
    """Execute one sauna invocation.

    Args:
        config: Resolved CLI configuration.

    Returns:
        Exit code (0 for success, 1 for failure, 130 when aborted).

    """
    if config is None:
        config = RunConfig()

    try:
        provider = resolve_provider(config.provider, config.model)
    except UnknownProviderError as e:
        print_error(err_console, "Unknown Provider", str(e))
        return 1

    if not provider.is_available():
        print_error(err_console, "Provider Unavailable", provider.install_hint)
        return 1

    model = provider.resolve_model(config.model)

    # Set up debug logging if enabled
    debug_log_path: Path | None = None
    debug_log_file: TextIO | None = None
    if config.debug:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        debug_log_path = Path.cwd() / DEBUG_LOG_PATTERN.format(timestamp=timestamp)
        debug_log_file = open(debug_log_path, "w", encoding="utf-8")  # noqa: SIM115
        set_debug_log(debug_log_file)
        print_info(err_console, f"Debug log: {debug_log_path}")

    try:
        if config.interactive:
            await run_interactive(
                InteractiveConfig(
                    provider=provider,
                    prompt=config.prompt,
                    model=model,
                    context=list(config.context),
                ),
                console,
                err_console,
            )
            return 0

        if not config.prompt:
            print_error(err_console, "Missing Prompt", "A prompt is required unless --interactive is set")
            return 1

        return await _run_loop_mode(config, provider, model)

    except ProviderUnavailableError as e:
        print_error(err_console, "Provider Unavailable", str(e))
        return 1

    finally:
        if debug_log_file is not None:
            debug_log_file.close()
            set_debug_log(None)
            if debug_log_path:
                print_info(err_console, f"Debug log saved: {debug_log_path}")
