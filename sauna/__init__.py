"""Sauna - Run autonomous coding agents in a loop and stream their work.

Drive Claude or Codex from the terminal: send a prompt once, a fixed number
of times, until interrupted, or hold an interactive multi-turn conversation.
Each backend's native events are adapted to one canonical event stream that
is rendered in real time.

Exports:
    __version__: str - The current version of the sauna package.

Submodules:
    agent: Process-wide state, debug log and consoles.
    backends: Provider contract, registry and the Claude/Codex adapters.
    cli: Command-line interface with entry point and signal handling.
    config: Configuration constants and settings.
    interactive: Multi-turn REPL driver.
    loop: Single, fixed-count and forever run orchestration.
    prompt: Prompt building with context paths.
    runner: Provider selection and mode dispatch.
    stream: Rendering of canonical events to the terminal.
    ui: User interface utilities for terminal output.
"""

__version__ = "0.1.0"
