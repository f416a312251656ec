"""Process-wide state shared across sauna: consoles, debug log, shutdown flag."""

from dataclasses import dataclass
from typing import TextIO

from sauna.ui import create_console


@dataclass
class AgentState:
    """Mutable state for one sauna process.

    Attributes:
        debug_log: Open ``--debug`` log file, or None when debug logging is off.
        shutdown_requested: Set once SIGINT/SIGTERM has been received.

    """

    debug_log: TextIO | None = None
    shutdown_requested: bool = False


# One instance per process; the CLI and runner mutate it through the setters
# below and tests patch the consoles where they are imported.
_state = AgentState()
console = create_console()
err_console = create_console(stderr=True)


def set_debug_log(log_file: TextIO | None) -> None:
    """Route _log_debug() output to ``log_file``; None turns it off."""
    _state.debug_log = log_file


def get_debug_log() -> TextIO | None:
    return _state.debug_log


def set_shutdown_requested(requested: bool) -> None:
    _state.shutdown_requested = requested


def shutdown_requested() -> bool:
    """Whether a termination signal has been received."""
    return _state.shutdown_requested


def _log_debug(message: str) -> None:
    """Append a tagged line to the debug log, if one is open."""
    log = _state.debug_log
    if log is None:
        return
    log.write(message)
    log.flush()
