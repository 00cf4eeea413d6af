"""
Agent Mux

A pool of long-running terminal agents multiplexed through tmux.
One project = one tmux session; one agent = one window in that session.

Modules:
- config: Environment-driven settings (AGENT_MUX_*)
- errors: Typed error taxonomy
- names: Name grammar, agent types, start-command resolution
- tmux_backend: tmux commands on a private socket
- registry: Atomic on-disk project/agent registry
- reconcile: Liveness annotation and orphan-window detection
- logtail: Tail of the append-only agent logs
- mux: AgentMux orchestrator
"""

from .config import MuxConfig

from .errors import (
    AgentMuxError,
    InvalidName,
    NoCurrentProject,
    SessionNotFound,
    AgentAlreadyExists,
    AgentNotFound,
    UnsupportedAgentType,
    BackendCommandError,
    NoPaneFound,
)

from .names import (
    AGENT_TYPES,
    DEFAULT_AGENT_COMMANDS,
    validate_name,
    validate_agent_type,
    resolve_start_command,
)

from .tmux_backend import (
    CommandResult,
    WindowInfo,
    TmuxBackend,
    run_command,
)

from .registry import Registry

from .reconcile import (
    annotate_liveness,
    find_dead_agents,
    find_orphan_windows,
)

from .logtail import strip_ansi, tail_file

from .mux import AGENT_NAME_TAG, AGENT_TYPE_TAG, AgentMux

__version__ = '1.0.0'

__all__ = [
    'MuxConfig',
    # Errors
    'AgentMuxError',
    'InvalidName',
    'NoCurrentProject',
    'SessionNotFound',
    'AgentAlreadyExists',
    'AgentNotFound',
    'UnsupportedAgentType',
    'BackendCommandError',
    'NoPaneFound',
    # Names
    'AGENT_TYPES',
    'DEFAULT_AGENT_COMMANDS',
    'validate_name',
    'validate_agent_type',
    'resolve_start_command',
    # Backend
    'CommandResult',
    'WindowInfo',
    'TmuxBackend',
    'run_command',
    # Registry
    'Registry',
    # Reconciliation
    'annotate_liveness',
    'find_dead_agents',
    'find_orphan_windows',
    # Logs
    'strip_ansi',
    'tail_file',
    # Orchestrator
    'AGENT_NAME_TAG',
    'AGENT_TYPE_TAG',
    'AgentMux',
]
