"""
Unit tests for name validation and start-command resolution.
"""

import pytest

from agent_mux import (
    AGENT_TYPES,
    InvalidName,
    UnsupportedAgentType,
    resolve_start_command,
    validate_agent_type,
    validate_name,
)


# ============================================================================
# TEST: validate_name()
# ============================================================================

@pytest.mark.parametrize("name", ["demo", "a", "A1", "proj.v2", "my_project-3", "9lives", "x" * 128])
def test_validate_name_accepts_grammar(name):
    assert validate_name("project", name) == name


def test_validate_name_strips_whitespace():
    assert validate_name("agent", "  worker-1 ") == "worker-1"


@pytest.mark.parametrize("name", [
    "", "   ", None, 42,
    "-leading-dash", ".hidden", "_under",
    "has space", "semi;colon", "colon:target", "slash/path", "dollar$",
    "x" * 129,
])
def test_validate_name_rejects(name):
    with pytest.raises(InvalidName) as exc_info:
        validate_name("project", name)
    assert exc_info.value.kind == "project"


def test_validate_name_rejects_trailing_newline():
    with pytest.raises(InvalidName):
        validate_name("agent", "abc\nrm -rf /")


def test_invalid_name_is_value_error():
    with pytest.raises(ValueError):
        validate_name("agent", "bad name")


# ============================================================================
# TEST: validate_agent_type()
# ============================================================================

def test_agent_types_closed_set():
    assert AGENT_TYPES == {"claude", "codex", "gemini"}


def test_validate_agent_type_trims():
    assert validate_agent_type(" codex ") == "codex"


def test_validate_agent_type_lists_allowed():
    with pytest.raises(UnsupportedAgentType) as exc_info:
        validate_agent_type("bash")
    assert exc_info.value.allowed == ["claude", "codex", "gemini"]
    assert "claude/codex/gemini" in str(exc_info.value)


# ============================================================================
# TEST: resolve_start_command() - argument merge law
# ============================================================================

def test_default_command_per_type():
    assert resolve_start_command("claude") == {"command": "claude", "args": ["--dangerously-skip-permissions"]}
    assert resolve_start_command("codex") == {"command": "codex", "args": ["--yolo"]}
    assert resolve_start_command("gemini") == {"command": "gemini", "args": ["--yolo"]}


def test_extra_args_appended_to_default():
    cmd = resolve_start_command("codex", {"args": ["--model", "o3"]})
    assert cmd == {"command": "codex", "args": ["--yolo", "--model", "o3"]}


def test_command_override_replaces_program_and_default_args():
    cmd = resolve_start_command("claude", {"command": "bash"})
    assert cmd == {"command": "bash", "args": []}


def test_command_override_keeps_extra_args():
    cmd = resolve_start_command("gemini", {"command": "python3", "args": ["-u", "agent.py"]})
    assert cmd == {"command": "python3", "args": ["-u", "agent.py"]}


def test_cmd_alias_and_non_string_args():
    cmd = resolve_start_command("codex", {"cmd": "node", "args": [1, True]})
    assert cmd == {"command": "node", "args": ["1", "True"]}


def test_non_list_args_ignored():
    assert resolve_start_command("codex", {"args": "--oops"})["args"] == ["--yolo"]


def test_default_args_not_shared_between_calls():
    first = resolve_start_command("codex", {"args": ["--a"]})
    second = resolve_start_command("codex")
    assert first["args"] == ["--yolo", "--a"]
    assert second["args"] == ["--yolo"]
