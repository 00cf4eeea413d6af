#!/usr/bin/env python3
"""
Agent Mux MCP Server

A Model Context Protocol (MCP) server exposing a dynamic pool of terminal
agents running in tmux:
- Private socket: `tmux -L <socket> ...`
- One project = one tmux session
- One agent = one tmux window
- Window metadata via user options: @mux_agent_name / @mux_agent_type
- Output piped to <storage root>/<project>/logs/<agent>.log
- Registry: <storage root>/<project>/agents.json

Tools only marshal: domain logic lives in agent_mux.AgentMux.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastmcp import FastMCP

from agent_mux import AgentMux, AgentMuxError, MuxConfig

logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = FastMCP("Agent Mux")

# Built once per process on first use; tests assign their own instance
_mux: Optional[AgentMux] = None


def get_mux() -> AgentMux:
    global _mux
    if _mux is None:
        config = MuxConfig.from_env()
        _mux = AgentMux.from_config(config)
        logger.info(f"Agent Mux ready: socket={config.socket_name}, storage={_mux.registry.root}")
    return _mux


def _call(operation: Callable[[], Any]) -> Dict[str, Any]:
    """Run an orchestrator call and wrap its result or error in a response dict."""
    try:
        result = operation()
    except AgentMuxError as e:
        logger.warning(f"{type(e).__name__}: {e}")
        return {"success": False, "error": str(e), "error_type": type(e).__name__}
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return {"success": False, "error": str(e), "error_type": type(e).__name__}

    return {"success": True, **result}


# ============================================================================
# PROJECT MANAGEMENT
# ============================================================================

@mcp.tool
def create_project(name: str, cwd: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a project (tmux session) and its registry directory, and make it current.

    Args:
        name: Project name (tmux session name)
        cwd: Project working directory (optional, tmux start-directory)

    Returns:
        project, cwd, created (session was new), registryCreated, storageDir
    """
    return _call(lambda: get_mux().create_project(name, cwd))


@mcp.tool
def list_projects() -> Dict[str, Any]:
    """
    List all projects (tmux sessions + registry directories).

    Returns:
        projects: [{project, cwd, sessionExists, hasRegistry, current}]
    """
    return _call(lambda: {"projects": get_mux().list_projects()})


@mcp.tool
def switch_project(name: str) -> Dict[str, Any]:
    """
    Switch the current project and best-effort switch attached tmux clients.

    Args:
        name: Project name (tmux session name)
    """
    return _call(lambda: get_mux().switch_project(name))


@mcp.tool
def close_project(name: str) -> Dict[str, Any]:
    """
    Close a project: kill its tmux session. Registry files are kept.

    Args:
        name: Project name (tmux session name)
    """
    return _call(lambda: get_mux().close_project(name))


# ============================================================================
# AGENT MANAGEMENT
# ============================================================================

@mcp.tool
def spawn_agent(type: str, name: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create an agent in the current project (one agent = one tmux window).

    Args:
        type: Agent type: claude/codex/gemini
        name: Agent name (window name and registry key)
        options: Optional overrides: cwd, command, args (args are appended to the base command)

    Returns:
        The registry entry: name, type, windowId, windowIndex, paneId, cwd, command, logPath, createdAt
    """
    return _call(lambda: get_mux().spawn_agent(type, name, options))


@mcp.tool
def list_agents(project: Optional[str] = None) -> Dict[str, Any]:
    """
    List registry agents of a project with a live 'alive' flag.

    Args:
        project: Project name (defaults to the current project)
    """
    return _call(lambda: get_mux().list_agents(project))


@mcp.tool
def attach_agent(name: str) -> Dict[str, Any]:
    """
    Best-effort: switch attached tmux clients to the project and select the agent's window.

    Args:
        name: Agent name
    """
    return _call(lambda: get_mux().attach_agent(name))


@mcp.tool
def interrupt_agent(name: str) -> Dict[str, Any]:
    """
    Send Ctrl-C to an agent.

    Args:
        name: Agent name
    """
    return _call(lambda: get_mux().interrupt_agent(name))


@mcp.tool
def kill_agent(name: str) -> Dict[str, Any]:
    """
    Kill an agent's window (best-effort) and remove it from the registry.

    Args:
        name: Agent name
    """
    return _call(lambda: get_mux().kill_agent(name))


# ============================================================================
# AGENT I/O
# ============================================================================

@mcp.tool
def send_to_agent(name: str, text: str) -> Dict[str, Any]:
    """
    Type text into an agent (literal keys, then Enter).

    Args:
        name: Agent name
        text: Text to send

    Returns:
        project, agent, sent, bytes (UTF-8 length of text)
    """
    return _call(lambda: get_mux().send_to_agent(name, text))


@mcp.tool
def send_to_window(window: str, text: str) -> Dict[str, Any]:
    """
    Type text into any window of the current project (not just registered agents).

    Args:
        window: Window name or index
        text: Text to send
    """
    return _call(lambda: get_mux().send_to_window(window, text))


@mcp.tool
def read_agent_output(name: str, lines: int = 200) -> Dict[str, Any]:
    """
    Read recent rendered output of an agent (capture-pane, blank lines removed).

    Args:
        name: Agent name
        lines: Number of trailing non-blank lines to return (default 200)
    """
    return _call(lambda: get_mux().read_agent_output(name, lines))


@mcp.tool
def tail_agent_log(name: str, lines: int = 200) -> Dict[str, Any]:
    """
    Tail an agent's append-only output log (ANSI codes stripped).

    Args:
        name: Agent name
        lines: Number of trailing non-blank lines to return (default 200)
    """
    return _call(lambda: get_mux().tail_agent_log(name, lines))


# ============================================================================
# MAINTENANCE
# ============================================================================

@mcp.tool
def reconcile_project(name: Optional[str] = None, kill_orphans: bool = False) -> Dict[str, Any]:
    """
    Compare a project's registry with its live tmux windows.

    Args:
        name: Project name (defaults to the current project)
        kill_orphans: Kill tagged windows that have no registry entry

    Returns:
        deadAgents (registered, window gone) and orphanWindows (window, no registry entry)
    """
    return _call(lambda: get_mux().reconcile_project(name, kill_orphans))


@mcp.tool
def server_status() -> Dict[str, Any]:
    """
    Report tmux availability, socket, storage root and current project.
    """
    return _call(lambda: get_mux().status())


def main() -> None:
    config = MuxConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    global _mux
    if _mux is None:
        _mux = AgentMux.from_config(config)
    if not _mux.backend.is_available():
        logger.warning(f"tmux binary '{config.tmux_binary}' not available; tools will fail until it is installed")
    logger.info(f"Serving Agent Mux (socket={config.socket_name}, storage={_mux.registry.root})")
    mcp.run()


if __name__ == "__main__":
    main()
