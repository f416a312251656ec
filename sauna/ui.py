"""Terminal UI primitives for sauna.

Themed Rich consoles plus the few panels and one-line messages printed
outside the agent stream (availability errors, debug-log notices, the
interactive prompt).
"""

import sys

from rich import box
from rich.console import COLOR_SYSTEMS, Console
from rich.panel import Panel
from rich.style import Style
from rich.text import Text
from rich.theme import Theme

# =============================================================================
# Color Theme (Dracula-based)
# =============================================================================

SAUNA_COLORS = {
    "foreground": "#F8F8F2",
    "comment": "#BFBFBF",
    "red": "#FF5555",
    "green": "#50FA7B",
    "yellow": "#F1FA8C",
    "cyan": "#8BE9FD",
}

SAUNA_THEME = Theme({
    # Agent text stream
    "sauna.agent": SAUNA_COLORS["comment"],
    # Tool tags and summaries
    "sauna.tool": "dim",
    "sauna.summary": "dim",
    # Loop dividers
    "sauna.header": "bold",
    # Errors must stand out
    "sauna.error": SAUNA_COLORS["red"],
    "sauna.prompt": f"bold {SAUNA_COLORS['green']}",
    "sauna.info": SAUNA_COLORS["cyan"],
    "sauna.dim": f"dim {SAUNA_COLORS['foreground']}",
})


def create_console(stderr: bool = False) -> Console:
    """Create a Rich Console with the sauna theme applied.

    Args:
        stderr: Write to standard error instead of standard output.

    Returns:
        Console: A new themed Console. Styling is dropped automatically when
        the stream is not a terminal.

    """
    return Console(theme=SAUNA_THEME, stderr=stderr, highlight=False)


def write_plain(console: Console, text: str, style: str | None = None) -> None:
    """Write text exactly as given, with an optional style and no trailing newline.

    Rich's own rendering strips control characters and expands tabs, so the
    text goes straight to the console's file. Only the style is rendered by
    Rich, as escape codes around the unchanged text.
    """
    if style is not None and console.color_system is not None:
        text = console.get_style(style).render(
            text, color_system=COLOR_SYSTEMS[console.color_system]
        )
    console.file.write(text)
    console.file.flush()


def print_error(console: Console, title: str, message: str) -> None:
    """Print an error panel with red styling.

    Args:
        console: Rich Console instance for output.
        title: Error title text.
        message: Detailed error message.

    """
    panel = Panel(
        Text(message, style=Style(color=SAUNA_COLORS["red"])),
        title=f"\u26a0\ufe0f  {title}",  # ⚠️
        title_align="left",
        box=box.DOUBLE_EDGE,
        border_style=Style(color=SAUNA_COLORS["red"]),
        padding=(0, 1),
    )
    console.print(panel)


def print_info(console: Console, message: str) -> None:
    """Print an info message with cyan styling."""
    console.print(Text.assemble(("ℹ ", "sauna.info"), (message, "sauna.dim")))


def print_dim(console: Console, message: str) -> None:
    """Print a dimmed message for secondary information."""
    console.print(Text(message, style="sauna.dim"))


def print_prompt(console: Console, after_newline: bool) -> None:
    """Write the bold-green ``> `` input prompt.

    Args:
        console: Console the prompt is written to (standard error in the REPL).
        after_newline: Whether the agent output so far ends in a newline; if
            not, a newline is written first so the prompt starts its own line.

    """
    if not after_newline:
        write_plain(console, "\n")
    write_plain(console, "> ", style="sauna.prompt")


def read_input_line() -> str | None:
    """Read one line from standard input.

    Returns:
        The line without its terminator, or None on EOF.

    """
    line = sys.stdin.readline()
    if not line:
        return None
    return line.rstrip("\r\n")
