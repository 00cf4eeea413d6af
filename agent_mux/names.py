"""
Name validation and agent start-command resolution.

Names are used as tmux targets and as file names, so the grammar is
deliberately conservative: one alphanumeric character followed by up to
127 characters from [a-zA-Z0-9._-].
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from .errors import InvalidName, UnsupportedAgentType

__all__ = [
    'NAME_PATTERN',
    'MAX_NAME_LENGTH',
    'AGENT_TYPES',
    'DEFAULT_AGENT_COMMANDS',
    'validate_name',
    'validate_agent_type',
    'resolve_start_command',
]

MAX_NAME_LENGTH = 128
NAME_PATTERN = re.compile(r'[a-zA-Z0-9][a-zA-Z0-9._-]{0,127}')

# ============================================================================
# AGENT TYPES
# ============================================================================

DEFAULT_AGENT_COMMANDS: Dict[str, Dict[str, Any]] = {
    'claude': {'command': 'claude', 'args': ['--dangerously-skip-permissions']},
    'codex': {'command': 'codex', 'args': ['--yolo']},
    'gemini': {'command': 'gemini', 'args': ['--yolo']},
}

AGENT_TYPES = frozenset(DEFAULT_AGENT_COMMANDS)


def validate_name(kind: str, name: Any) -> str:
    """
    Validate a project or agent name and return it stripped.

    Args:
        kind: Label used in the error message ("project" or "agent")
        name: Candidate name

    Returns:
        The stripped name

    Raises:
        InvalidName: If the name is empty or does not match NAME_PATTERN
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidName(kind, name, "must be a non-empty string")
    candidate = name.strip()
    if not NAME_PATTERN.fullmatch(candidate):
        raise InvalidName(kind, name, f"must match /^{NAME_PATTERN.pattern}$/")
    return candidate


def validate_agent_type(agent_type: Any) -> str:
    candidate = str(agent_type or '').strip()
    if candidate not in AGENT_TYPES:
        raise UnsupportedAgentType(agent_type, AGENT_TYPES)
    return candidate


def resolve_start_command(agent_type: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Work out the program and argument list an agent window starts with.

    An explicit ``command`` (or its alias ``cmd``) replaces the type's default
    program and its default arguments. Explicit ``args`` are always appended
    after whichever base arguments apply; they never replace them.

    Args:
        agent_type: Validated agent type
        options: Spawn options (command/cmd/args are consulted)

    Returns:
        Dict with 'command' (str) and 'args' (list of str)
    """
    options = options or {}
    override = options.get('command') or options.get('cmd')
    if override:
        base = {'command': str(override), 'args': []}
    else:
        default = DEFAULT_AGENT_COMMANDS[agent_type]
        base = {'command': default['command'], 'args': list(default['args'])}

    extra = options.get('args')
    extra_args: List[str] = [str(a) for a in extra] if isinstance(extra, (list, tuple)) else []

    return {'command': base['command'], 'args': base['args'] + extra_args}
