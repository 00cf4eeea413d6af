"""
Error taxonomy for Agent Mux.

Every failure surfaced to a caller is one of these. Validation and lookup
errors are raised before any state is touched; BackendCommandError carries
the raw tmux diagnostic text.
"""

from typing import Iterable, List, Optional

__all__ = [
    'AgentMuxError',
    'InvalidName',
    'NoCurrentProject',
    'SessionNotFound',
    'AgentAlreadyExists',
    'AgentNotFound',
    'UnsupportedAgentType',
    'BackendCommandError',
    'NoPaneFound',
]


class AgentMuxError(Exception):
    """Base class for all Agent Mux errors."""


class InvalidName(AgentMuxError, ValueError):
    """
    A project or agent name does not match the name grammar.

    Attributes:
        kind: "project", "agent" or "window"
        name: The rejected value
    """

    def __init__(self, kind: str, name, reason: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} name {reason} (got: {name!r})")


class NoCurrentProject(AgentMuxError):
    def __init__(self):
        super().__init__("No current project selected. Call create_project or switch_project first.")


class SessionNotFound(AgentMuxError):
    def __init__(self, project: str):
        self.project = project
        super().__init__(f"tmux session not found for project: {project} (did you call create_project?)")


class AgentAlreadyExists(AgentMuxError):
    def __init__(self, project: str, agent: str):
        self.project = project
        self.agent = agent
        super().__init__(f"Agent already exists in registry: {agent} (project={project})")


class AgentNotFound(AgentMuxError):
    def __init__(self, project: str, agent: str):
        self.project = project
        self.agent = agent
        super().__init__(f"Agent not found: {agent} (project={project})")


class UnsupportedAgentType(AgentMuxError, ValueError):
    """
    Spawn was asked for a type outside the closed enumeration.

    Attributes:
        agent_type: The rejected type
        allowed: Sorted list of accepted types
    """

    def __init__(self, agent_type, allowed: Iterable[str]):
        self.agent_type = agent_type
        self.allowed: List[str] = sorted(allowed)
        super().__init__(f"Unsupported agent type: {agent_type!r}. Allowed: {'/'.join(self.allowed)}")


class BackendCommandError(AgentMuxError):
    """
    A tmux invocation exited non-zero where success was required.

    Attributes:
        args_list: Full argument vector that was executed
        returncode: Exit status (None if the process never ran or timed out)
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(self, args_list: List[str], returncode: Optional[int], stdout: str = "", stderr: str = ""):
        self.args_list = list(args_list)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        detail = (self.stderr or self.stdout or f"tmux exited with code {returncode}").strip()
        super().__init__(f"{' '.join(self.args_list)} failed: {detail}")


class NoPaneFound(AgentMuxError):
    def __init__(self, window_target: str):
        self.window_target = window_target
        super().__init__(f"No pane found for window target: {window_target}")
