"""Configuration constants for sauna.

Provide centralized configuration values used throughout the sauna package:
provider names and defaults, tool-detail extraction order, redaction mask,
rendering widths, Codex subprocess settings, and debug-log naming.

Exports:
    DEFAULT_PROVIDER: str - Provider used when neither name nor model selects one.
    PROVIDER_NAMES: tuple[str, ...] - Names accepted by ``--provider``.
    DETAIL_FIELDS: tuple[str, ...] - Tool argument fields tried, in order, for a detail line.
    REDACTED: str - Replacement text for masked secrets.
    LOOP_HEADER_WIDTH: int - Column width of loop iteration headers.
"""

# Providers
DEFAULT_PROVIDER = "claude"
PROVIDER_NAMES: tuple[str, ...] = ("claude", "codex")

# Tool argument fields used for the one-line tool detail, highest priority first
DETAIL_FIELDS: tuple[str, ...] = ("file_path", "command", "description", "pattern", "query")

# Argument field whose value is a shell command and must be redacted
COMMAND_FIELD = "command"

# Mask for redacted secrets
REDACTED = "***"

# Width of the `━━ loop 2 / 5 ━━` iteration divider
LOOP_HEADER_WIDTH = 40

# Claude Code executable looked up on PATH
CLAUDE_EXECUTABLE = "claude"

# Codex CLI settings
CODEX_EXECUTABLE = "codex"
CODEX_SANDBOX = "workspace-write"
CODEX_API_KEY_VARS: tuple[str, ...] = ("OPENAI_API_KEY", "CODEX_API_KEY")
CODEX_HOME_VAR = "CODEX_HOME"
CODEX_AUTH_FILE = "auth.json"
# Seconds to wait after SIGTERM before killing a codex process
CODEX_TERMINATE_TIMEOUT = 5.0
# Non-JSON output lines kept for diagnosing a codex process that died mid-turn
CODEX_DIAGNOSTIC_LINES = 5

# Debug log filename, formatted with a timestamp
DEBUG_LOG_PATTERN = ".sauna-debug-{timestamp}.log"

# Set to "1" to print the parsed CLI configuration as JSON and exit
DRY_RUN_ENV = "SAUNA_DRY_RUN"
