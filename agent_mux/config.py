"""
Configuration for Agent Mux.

All settings come from AGENT_MUX_* environment variables, e.g.:
    export AGENT_MUX_SOCKET=agentmux
    export AGENT_MUX_PROJECT_ROOT=/Users/yourname/Developer/Projects/yourproject
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_NAME = 'agentmux'
DEFAULT_TMUX_BINARY = 'tmux'
DEFAULT_SEND_DELAY = 0.05
DEFAULT_LOG_LEVEL = 'INFO'

__all__ = [
    'DEFAULT_SOCKET_NAME',
    'DEFAULT_TMUX_BINARY',
    'DEFAULT_SEND_DELAY',
    'MuxConfig',
]


def _default_fallback_dir() -> str:
    return os.path.join(tempfile.gettempdir(), 'agent-mux')


def _float_env(env: Mapping[str, str], key: str, default: Optional[float]) -> Optional[float]:
    raw = env.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {key}={raw!r}, using {default}")
        return default
    if value < 0:
        logger.warning(f"Ignoring negative {key}={raw!r}, using {default}")
        return default
    return value


@dataclass
class MuxConfig:
    """Settings shared by the backend, the registry and the orchestrator."""
    socket_name: str = DEFAULT_SOCKET_NAME
    tmux_binary: str = DEFAULT_TMUX_BINARY
    project_root: str = ''
    fallback_dir: str = ''
    send_delay: float = DEFAULT_SEND_DELAY
    command_timeout: Optional[float] = None
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        if not self.project_root:
            self.project_root = os.getcwd()
        if not self.fallback_dir:
            self.fallback_dir = _default_fallback_dir()

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'MuxConfig':
        """
        Build a config from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Returns:
            MuxConfig with defaults filled in for unset or invalid values
        """
        if env is None:
            env = os.environ
        return cls(
            socket_name=env.get('AGENT_MUX_SOCKET') or DEFAULT_SOCKET_NAME,
            tmux_binary=env.get('AGENT_MUX_TMUX_BINARY') or DEFAULT_TMUX_BINARY,
            project_root=env.get('AGENT_MUX_PROJECT_ROOT') or os.getcwd(),
            fallback_dir=env.get('AGENT_MUX_FALLBACK_DIR') or _default_fallback_dir(),
            send_delay=_float_env(env, 'AGENT_MUX_SEND_DELAY', DEFAULT_SEND_DELAY),
            command_timeout=_float_env(env, 'AGENT_MUX_COMMAND_TIMEOUT', None),
            log_level=(env.get('AGENT_MUX_LOG_LEVEL') or DEFAULT_LOG_LEVEL).upper(),
        )
