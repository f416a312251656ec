# tests/test_details.py
"""Tests for tool detail extraction and secret redaction."""

import pytest

from sauna.backends.details import extract_first_line, redact_secrets, tool_detail
from sauna.prompt import build_prompt


def test_extract_first_line():
    assert extract_first_line("one\ntwo") == "one"
    assert extract_first_line("one\r\ntwo") == "one"
    assert extract_first_line("single") == "single"


@pytest.mark.parametrize("value", [None, 42, ["a"], "", "\nsecond"])
def test_extract_first_line_empty_or_non_string(value):
    assert extract_first_line(value) is None


def test_redact_assignment():
    assert redact_secrets("export TOKEN=abc123 && run") == "export TOKEN=*** && run"


def test_redact_quoted_assignments():
    assert redact_secrets("API_KEY='s3cr3t value' cmd") == "API_KEY=*** cmd"
    assert redact_secrets('PASS="x y z" cmd') == "PASS=*** cmd"


def test_redact_multi_piece_values():
    assert redact_secrets("X=$'s3cr3t' run") == "X=*** run"
    assert redact_secrets('export TOKEN=abc"def" && run') == "export TOKEN=*** && run"
    assert redact_secrets("KEY=a'b c'd\"e f\"g next") == "KEY=*** next"


def test_redact_multiple_assignments():
    assert redact_secrets("A=1 B=2 run") == "A=*** B=*** run"


def test_redact_bearer_token():
    text = "curl -H 'Authorization: Bearer sk-abc.def' https://api"
    assert redact_secrets(text) == "curl -H 'Authorization: Bearer ***' https://api"


def test_redact_leaves_plain_commands_alone():
    assert redact_secrets("ls -la src") == "ls -la src"


def test_tool_detail_priority():
    args = {"command": "ls", "file_path": "src/main.py", "description": "list"}
    assert tool_detail(args) == "src/main.py"


def test_tool_detail_skips_empty_fields():
    assert tool_detail({"file_path": "", "description": "Find tests"}) == "Find tests"


def test_tool_detail_redacts_command():
    assert tool_detail({"command": "TOKEN=abc123 make deploy\nmore"}) == "TOKEN=*** make deploy"


def test_tool_detail_does_not_redact_other_fields():
    assert tool_detail({"description": "set X=1"}) == "set X=1"


def test_tool_detail_no_known_fields():
    assert tool_detail({"url": "https://example.com"}) is None


def test_build_prompt_with_context():
    assert build_prompt("Fix it", ["src/a.py", "docs"]) == (
        "Context: src/a.py\nContext: docs\n\nFix it"
    )


def test_build_prompt_without_context():
    assert build_prompt("Fix it", []) == "Fix it"
