"""
Agent Mux orchestrator: a dynamic pool of terminal agents on tmux.

High-level operations used by the MCP server:
- Project management (tmux sessions + registry directories)
- Agent lifecycle (tmux windows + registry entries + output logs)
- Agent I/O (literal text delivery, rendered capture, log tail)
- Reconciliation of registry agents against live windows

The orchestrator keeps no state of its own beyond per-pane send locks; the
registry files and the tmux server are the two sources of truth.
"""

import logging
import os
import threading
import time
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import DEFAULT_SEND_DELAY, MuxConfig
from .errors import (
    AgentAlreadyExists,
    AgentMuxError,
    AgentNotFound,
    InvalidName,
    NoCurrentProject,
    SessionNotFound,
)
from .logtail import tail_file
from .names import resolve_start_command, validate_agent_type, validate_name
from .reconcile import annotate_liveness, find_dead_agents, find_orphan_windows
from .registry import Registry
from .tmux_backend import TmuxBackend

logger = logging.getLogger(__name__)

__all__ = [
    'AGENT_NAME_TAG',
    'AGENT_TYPE_TAG',
    'AgentMux',
]

AGENT_NAME_TAG = '@mux_agent_name'
AGENT_TYPE_TAG = '@mux_agent_type'

DEFAULT_READ_LINES = 200
MIN_CAPTURE_HISTORY = 2000


class AgentMux:
    """
    Domain workflows over a TmuxBackend and a Registry.

    Both collaborators are passed in; build one AgentMux per process with
    AgentMux.from_config() and hand it to whatever dispatches tool calls.
    """

    def __init__(self, backend: TmuxBackend, registry: Registry, send_delay: float = DEFAULT_SEND_DELAY):
        self.backend = backend
        self.registry = registry
        self.send_delay = send_delay
        # Entries live only while a send holds them
        self._send_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._send_locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: MuxConfig) -> 'AgentMux':
        backend = TmuxBackend(
            socket_name=config.socket_name,
            tmux_binary=config.tmux_binary,
            timeout=config.command_timeout,
        )
        registry = Registry(project_root=config.project_root, fallback_dir=config.fallback_dir)
        return cls(backend, registry, send_delay=config.send_delay)

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _require_current_project(self) -> str:
        project = self.registry.get_current_project()
        if not project:
            raise NoCurrentProject()
        return project

    def _require_session(self, project: str) -> None:
        if not self.backend.session_exists(project):
            raise SessionNotFound(project)

    def _load_agent(self, project: str, agent_name: str) -> Dict[str, Any]:
        data = self.registry.load_agents(project)
        for agent in data.get('agents', []):
            if isinstance(agent, dict) and agent.get('name') == agent_name:
                return agent
        raise AgentNotFound(project, agent_name)

    def _resolve_agent(self, name: str) -> Tuple[str, str, Dict[str, Any]]:
        project = self._require_current_project()
        agent_name = validate_name('agent', name)
        return project, agent_name, self._load_agent(project, agent_name)

    def _pane_for(self, agent: Mapping[str, Any]) -> str:
        return agent.get('paneId') or self.backend.get_first_pane_id(agent['windowId'])

    @staticmethod
    def _window_target(project: str, agent: Mapping[str, Any]) -> str:
        return agent.get('windowId') or f"{project}:{agent.get('windowIndex')}"

    def _send_lock(self, pane_id: str) -> threading.Lock:
        with self._send_locks_guard:
            lock = self._send_locks.get(pane_id)
            if lock is None:
                lock = threading.Lock()
                self._send_locks[pane_id] = lock
            return lock

    def _deliver(self, target: str, text: Any) -> int:
        """
        Literal text, settle, then Enter as a separate command. Returns UTF-8 byte count.

        `target` must be a pane id so every route to the same pane shares one lock.
        """
        payload = '' if text is None else str(text)
        with self._send_lock(target):
            self.backend.send_literal_keys(target, payload)
            time.sleep(self.send_delay)
            self.backend.send_key(target, 'Enter')
        return len(payload.encode('utf-8'))

    def _switch_clients(self, project: str) -> List[Dict[str, Any]]:
        """
        Best-effort: point every client attached to the socket at the project.

        Never raises for a client failure. Each client gets its own result entry
        so one broken client does not hide the others.
        """
        results = []
        for tty in self.backend.list_clients():
            try:
                self.backend.switch_client(tty, project)
                results.append({'client': tty, 'switched': True, 'error': None})
            except AgentMuxError as e:
                logger.warning(f"Could not switch client {tty} to {project}: {e}")
                results.append({'client': tty, 'switched': False, 'error': str(e)})
        return results

    # ========================================================================
    # PROJECT MANAGEMENT
    # ========================================================================

    def create_project(self, name: str, cwd: Optional[str] = None) -> Dict[str, Any]:
        """
        Create (or re-create) a project and make it current.

        The registry entry and the tmux session are created independently;
        'created' reports only whether the session was new, 'registryCreated'
        whether project.json was new.
        """
        project = validate_name('project', name)
        resolved_cwd = os.path.abspath(os.path.expanduser(str(cwd))) if cwd else None

        registry_created = self.registry.ensure_project(project, {'cwd': resolved_cwd} if resolved_cwd else None)
        session = self.backend.create_session(project, resolved_cwd)
        self.registry.set_current_project(project)

        if session['created']:
            logger.info(f"Project '{project}' created (cwd={resolved_cwd})")
        return {
            'project': project,
            'cwd': resolved_cwd,
            'created': session['created'],
            'registryCreated': registry_created,
            'storageDir': self.registry.get_project_dir(project),
        }

    def list_projects(self) -> List[Dict[str, Any]]:
        """Union of live sessions and registry directories, with both facts exposed."""
        sessions = self.backend.list_sessions()
        dirs = set(self.registry.list_project_names())
        current = self.registry.get_current_project()

        projects = []
        for project in sorted(sessions | dirs):
            meta = self.registry.load_project_meta(project) or {}
            projects.append({
                'project': project,
                'cwd': meta.get('cwd'),
                'sessionExists': project in sessions,
                'hasRegistry': project in dirs,
                'current': project == current,
            })
        return projects

    def switch_project(self, name: str) -> Dict[str, Any]:
        project = validate_name('project', name)
        self._require_session(project)
        self.registry.ensure_project(project)
        self.registry.set_current_project(project)

        client_results = self._switch_clients(project)
        return {
            'project': project,
            'switched': True,
            'clients': len(client_results),
            'clientResults': client_results,
        }

    def close_project(self, name: str) -> Dict[str, Any]:
        """
        Kill the project's session. Registry files are kept for history.

        The current-project pointer is cleared only if it named this project.
        """
        project = validate_name('project', name)
        current = self.registry.get_current_project()

        killed = False
        if self.backend.session_exists(project):
            try:
                self.backend.kill_session(project)
                killed = True
                logger.info(f"Closed project '{project}'")
            except AgentMuxError as e:
                # Session vanished between the check and the kill
                logger.warning(f"Could not kill session for {project}: {e}")

        cleared = current == project
        if cleared:
            self.registry.clear_current_project()

        return {'project': project, 'killed': killed, 'clearedCurrent': cleared}

    # ========================================================================
    # AGENT MANAGEMENT
    # ========================================================================

    def spawn_agent(self, agent_type: str, name: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Start an agent in a new window of the current project.

        Order: window, tags, pane lookup, log file, output pipe, then the
        registry entry. A failure before the registry save leaves no entry;
        a window created before such a failure stays discoverable through
        reconcile_project().

        Args:
            agent_type: One of names.AGENT_TYPES
            name: Agent name, unique within the project
            options: Optional 'cwd', 'command' (alias 'cmd') and 'args'

        Returns:
            The persisted agent entry
        """
        project = self._require_current_project()
        agent_name = validate_name('agent', name)
        kind = validate_agent_type(agent_type)
        options = options or {}

        self._require_session(project)
        self.registry.ensure_project(project)

        with self.registry.locked_agents(project) as data:
            if any(isinstance(a, dict) and a.get('name') == agent_name for a in data['agents']):
                raise AgentAlreadyExists(project, agent_name)

            meta = self.registry.load_project_meta(project) or {}
            if options.get('cwd'):
                agent_cwd = os.path.abspath(os.path.expanduser(str(options['cwd'])))
            else:
                agent_cwd = meta.get('cwd') or os.getcwd()

            cmd = resolve_start_command(kind, options)

            window = self.backend.create_window(
                session=project,
                window_name=agent_name,
                cwd=agent_cwd,
                command=cmd['command'],
                args=cmd['args'],
            )
            self.backend.set_window_tag(window.window_id, AGENT_NAME_TAG, agent_name)
            self.backend.set_window_tag(window.window_id, AGENT_TYPE_TAG, kind)
            pane_id = self.backend.get_first_pane_id(window.window_id)

            log_path = self.registry.get_agent_log_path(project, agent_name)
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
            # touch without truncating an existing log
            with open(log_path, 'a'):
                pass
            self.backend.pipe_output_to_file(pane_id, log_path, only_if_not_running=False)

            entry = {
                'name': agent_name,
                'type': kind,
                'project': project,
                'windowId': window.window_id,
                'windowIndex': window.window_index,
                'paneId': pane_id,
                'cwd': agent_cwd,
                'command': cmd,
                'logPath': log_path,
                'createdAt': datetime.now(timezone.utc).isoformat(),
            }
            data['agents'].append(entry)

        logger.info(f"Spawned {kind} agent '{agent_name}' in {project} ({window.window_id}, {pane_id})")
        return entry

    def list_agents(self, project: Optional[str] = None) -> Dict[str, Any]:
        """Registry agents of a project, each annotated with a derived 'alive' flag."""
        proj = validate_name('project', project) if project else self._require_current_project()
        data = self.registry.load_agents(proj)

        live_ids = set()
        if self.backend.session_exists(proj):
            live_ids = {w.window_id for w in self.backend.list_windows(proj)}

        return {'project': proj, 'agents': annotate_liveness(data.get('agents', []), live_ids)}

    def attach_agent(self, name: str) -> Dict[str, Any]:
        """Best-effort: switch attached clients to the project and select the agent's window."""
        project, agent_name, agent = self._resolve_agent(name)
        self._require_session(project)

        client_results = self._switch_clients(project)
        target = self._window_target(project, agent)
        try:
            self.backend.select_window(target)
            selected = True
        except AgentMuxError as e:
            logger.warning(f"Could not select window {target} for agent {agent_name}: {e}")
            selected = False

        return {
            'project': project,
            'agent': agent_name,
            'attached': True,
            'windowSelected': selected,
            'clients': len(client_results),
            'clientResults': client_results,
        }

    def interrupt_agent(self, name: str) -> Dict[str, Any]:
        project, agent_name, agent = self._resolve_agent(name)
        self.backend.send_key(self._pane_for(agent), 'C-c')
        return {'project': project, 'agent': agent_name, 'interrupted': True}

    def kill_agent(self, name: str) -> Dict[str, Any]:
        """
        Remove an agent. The window kill is best-effort; the registry entry
        is always removed, even if the window was already gone.
        """
        project = self._require_current_project()
        agent_name = validate_name('agent', name)

        with self.registry.locked_agents(project) as data:
            agent = next((a for a in data['agents'] if isinstance(a, dict) and a.get('name') == agent_name), None)
            if agent is None:
                raise AgentNotFound(project, agent_name)

            target = self._window_target(project, agent)
            try:
                self.backend.kill_window(target)
                window_killed = True
            except AgentMuxError as e:
                logger.warning(f"Window {target} for agent {agent_name} not killed: {e}")
                window_killed = False

            data['agents'] = [a for a in data['agents'] if not (isinstance(a, dict) and a.get('name') == agent_name)]

        logger.info(f"Killed agent '{agent_name}' in {project}")
        return {'project': project, 'agent': agent_name, 'killed': True, 'windowKilled': window_killed}

    # ========================================================================
    # AGENT I/O
    # ========================================================================

    def send_to_agent(self, name: str, text: Any) -> Dict[str, Any]:
        project, agent_name, agent = self._resolve_agent(name)
        byte_count = self._deliver(self._pane_for(agent), text)
        return {'project': project, 'agent': agent_name, 'sent': True, 'bytes': byte_count}

    def send_to_window(self, window: str, text: Any) -> Dict[str, Any]:
        """Send to any window of the current project, registered agent or not."""
        project = self._require_current_project()
        if not isinstance(window, str) or not window.strip():
            raise InvalidName('window', window, "must be a non-empty string")
        window_name = window.strip()
        pane_id = self.backend.get_first_pane_id(f"{project}:{window_name}")
        byte_count = self._deliver(pane_id, text)
        return {'project': project, 'window': window_name, 'sent': True, 'bytes': byte_count}

    def read_agent_output(self, name: str, lines: int = DEFAULT_READ_LINES) -> Dict[str, Any]:
        """
        Recent rendered output: the last `lines` non-blank lines of the pane.

        Scrollback is captured generously so blank-line trimming still leaves
        enough lines. Use the log file for a complete transcript.
        """
        project, agent_name, agent = self._resolve_agent(name)
        wanted = max(1, int(lines))

        raw = self.backend.capture_rendered(self._pane_for(agent), max(wanted * 10, MIN_CAPTURE_HISTORY))
        output_lines = [line for line in raw.split('\n') if line.strip()]
        return {
            'project': project,
            'agent': agent_name,
            'lines': wanted,
            'output': '\n'.join(output_lines[-wanted:]),
        }

    def tail_agent_log(self, name: str, lines: int = DEFAULT_READ_LINES) -> Dict[str, Any]:
        """Last `lines` non-blank lines of the agent's append-only log, escape codes stripped."""
        project, agent_name, agent = self._resolve_agent(name)
        log_path = agent.get('logPath') or self.registry.get_agent_log_path(project, agent_name)
        wanted = max(1, int(lines))
        return {
            'project': project,
            'agent': agent_name,
            'lines': wanted,
            'logPath': log_path,
            'output': tail_file(log_path, wanted),
        }

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    def reconcile_project(self, project: Optional[str] = None, kill_orphans: bool = False) -> Dict[str, Any]:
        """
        Compare a project's registry with its live windows.

        Reports registry agents whose window is gone ('deadAgents') and tagged
        windows with no registry entry ('orphanWindows'). With kill_orphans,
        each orphan window is killed best-effort and the outcome recorded on it.
        Registry entries are never modified here.
        """
        proj = validate_name('project', project) if project else self._require_current_project()
        agents = self.registry.load_agents(proj).get('agents', [])

        session_exists = self.backend.session_exists(proj)
        windows = self.backend.list_windows(proj) if session_exists else []
        window_dicts = [
            {'windowId': w.window_id, 'windowIndex': w.window_index, 'windowName': w.window_name}
            for w in windows
        ]
        tags = {w.window_id: self.backend.read_window_tag(w.window_id, AGENT_NAME_TAG) for w in windows}

        orphans = find_orphan_windows(window_dicts, tags, agents)
        if kill_orphans:
            for orphan in orphans:
                try:
                    self.backend.kill_window(orphan['windowId'])
                    orphan['killed'] = True
                    logger.info(f"Killed orphan window {orphan['windowId']} ({orphan['agentName']}) in {proj}")
                except AgentMuxError as e:
                    logger.warning(f"Could not kill orphan window {orphan['windowId']}: {e}")
                    orphan['killed'] = False

        return {
            'project': proj,
            'sessionExists': session_exists,
            'deadAgents': find_dead_agents(agents, {w.window_id for w in windows}),
            'orphanWindows': orphans,
        }

    def status(self) -> Dict[str, Any]:
        version = self.backend.version()
        return {
            'tmuxAvailable': version is not None,
            'tmuxVersion': version,
            'socket': self.backend.socket_name,
            'storageRoot': self.registry.root,
            'usingFallbackRoot': self.registry.using_fallback,
            'currentProject': self.registry.get_current_project(),
        }
