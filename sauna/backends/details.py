"""Tool detail extraction and secret redaction shared by the adapters."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from sauna.config import COMMAND_FIELD, DETAIL_FIELDS, REDACTED

_BEARER_RE = re.compile(r"(\bbearer\s+)[^\s'\"]+", re.IGNORECASE)
_ASSIGNMENT_RE = re.compile(
    r"""\b([A-Za-z_][A-Za-z0-9_]*)=((?:"[^"]*(?:"|$)|\$?'[^']*(?:'|$)|[^\s'";&|])+)"""
)


def extract_first_line(value: Any) -> str | None:
    """Return the first line of a string value.

    Multi-line values are summarized by their first line only.

    Args:
        value: Any tool argument value.

    Returns:
        The first line, or None for non-strings and blank first lines.

    """
    if not isinstance(value, str):
        return None
    first = value.splitlines()[0] if value else ""
    return first or None


def redact_secrets(text: str) -> str:
    """Mask secrets in a shell command line.

    ``NAME=value`` assignments become ``NAME=***`` and bearer tokens become
    ``Bearer ***``.
    """
    text = _BEARER_RE.sub(rf"\g<1>{REDACTED}", text)
    return _ASSIGNMENT_RE.sub(rf"\g<1>={REDACTED}", text)


def tool_detail(arguments: Mapping[str, Any]) -> str | None:
    """Pick a human-readable one-line detail from tool arguments.

    Fields are tried in DETAIL_FIELDS order and the first populated one wins.
    Command strings are redacted.

    Args:
        arguments: Parsed tool input.

    Returns:
        The detail line, or None if no known field is populated.

    """
    for name in DETAIL_FIELDS:
        detail = extract_first_line(arguments.get(name))
        if detail is None:
            continue
        if name == COMMAND_FIELD:
            detail = redact_secrets(detail)
        return detail
    return None
