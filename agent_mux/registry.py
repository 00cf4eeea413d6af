"""
Registry Operations Module for Agent Mux.

Persists project/agent metadata under the storage root:
    <root>/<project>/project.json     {name, cwd, createdAt, updatedAt}
    <root>/<project>/agents.json      {project, agents: [...], updatedAt}
    <root>/<project>/logs/<agent>.log append-only pane output
    <root>/current.json               {name, updatedAt}

Every write goes to a temporary sibling that is renamed into place, so readers
never observe a half-written file. Reads of missing or corrupt files return a
fallback value instead of raising.
"""

import errno
import fcntl
import json
import logging
import os
import tempfile
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

STATE_DIR = '.agent-mux'
PROJECTS_DIR = 'projects'
PROJECT_META_FILE = 'project.json'
AGENTS_FILE = 'agents.json'
CURRENT_PROJECT_FILE = 'current.json'
LOGS_DIR = 'logs'

__all__ = [
    'Registry',
    'read_json',
    'write_json_atomic',
    'is_writable_dir',
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# FILE HELPERS
# ============================================================================

def read_json(path: str, fallback: Any) -> Any:
    """Load JSON from path, returning fallback if missing or unparseable."""
    if not os.path.exists(path):
        return fallback
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Unreadable registry file {path}, using fallback: {e}")
        return fallback


def write_json_atomic(path: str, data: Any) -> None:
    """Write JSON to a temporary sibling file and rename it over path."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix='.tmp', dir=directory)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def is_writable_dir(path: str) -> bool:
    """Create path if needed and prove it is writable with a probe file."""
    try:
        os.makedirs(path, exist_ok=True)
        probe = os.path.join(path, f".write_test_{uuid.uuid4().hex[:8]}")
        with open(probe, 'w') as f:
            f.write('test')
        os.remove(probe)
        return True
    except OSError as e:
        logger.debug(f"Directory not writable: {path}: {e}")
        return False


# ============================================================================
# REGISTRY
# ============================================================================

class Registry:
    """
    Durable project/agent metadata plus the current-project pointer.

    The storage root is chosen once at construction: <project_root>/.agent-mux/projects
    when writable, otherwise <fallback_dir>/projects. The choice holds for the
    life of the instance so state is never split across two roots.
    """

    def __init__(self, project_root: Optional[str] = None, fallback_dir: Optional[str] = None,
                 lock_timeout: float = 10.0):
        self.project_root = os.path.abspath(project_root or os.getcwd())
        self.primary_root = os.path.join(self.project_root, STATE_DIR, PROJECTS_DIR)
        base = fallback_dir or os.path.join(tempfile.gettempdir(), 'agent-mux')
        self.fallback_root = os.path.join(os.path.abspath(base), PROJECTS_DIR)
        self.lock_timeout = lock_timeout

        if is_writable_dir(self.primary_root):
            self.root = self.primary_root
            self.using_fallback = False
        else:
            os.makedirs(self.fallback_root, exist_ok=True)
            self.root = self.fallback_root
            self.using_fallback = True
            logger.warning(f"Storage root {self.primary_root} not writable, using fallback {self.fallback_root}")

    # ---------- Paths ----------

    def get_project_dir(self, project: str) -> str:
        return os.path.join(self.root, str(project))

    def get_project_meta_path(self, project: str) -> str:
        return os.path.join(self.get_project_dir(project), PROJECT_META_FILE)

    def get_agents_path(self, project: str) -> str:
        return os.path.join(self.get_project_dir(project), AGENTS_FILE)

    def get_logs_dir(self, project: str) -> str:
        return os.path.join(self.get_project_dir(project), LOGS_DIR)

    def get_agent_log_path(self, project: str, agent: str) -> str:
        return os.path.join(self.get_logs_dir(project), f"{agent}.log")

    def _current_path(self) -> str:
        return os.path.join(self.root, CURRENT_PROJECT_FILE)

    # ---------- Projects ----------

    def list_project_names(self) -> List[str]:
        try:
            entries = os.listdir(self.root)
        except OSError:
            return []
        return sorted(e for e in entries if os.path.isdir(os.path.join(self.root, e)))

    def ensure_project(self, project: str, meta: Optional[Dict[str, Any]] = None) -> bool:
        """
        Create the project directory, logs directory, metadata and agent list if absent.

        If the project already exists and meta is non-empty, meta is merged into
        the stored metadata and updatedAt is bumped. Safe to call repeatedly.

        Args:
            project: Validated project name
            meta: Optional fields to record (e.g. {'cwd': '/abs/path'})

        Returns:
            True if project.json was newly written, False if it already existed
        """
        os.makedirs(self.get_logs_dir(project), exist_ok=True)

        meta_path = self.get_project_meta_path(project)
        created = False
        if not os.path.exists(meta_path):
            now = _now()
            write_json_atomic(meta_path, {
                'name': str(project),
                'cwd': (meta or {}).get('cwd'),
                'createdAt': now,
                'updatedAt': now,
            })
            created = True
            logger.info(f"Initialized registry for project '{project}' at {self.get_project_dir(project)}")
        elif meta:
            current = read_json(meta_path, {})
            if not isinstance(current, dict):
                current = {}
            current.update(meta)
            current['name'] = str(project)
            current['updatedAt'] = _now()
            write_json_atomic(meta_path, current)

        agents_path = self.get_agents_path(project)
        if not os.path.exists(agents_path):
            write_json_atomic(agents_path, {'project': str(project), 'agents': [], 'updatedAt': _now()})

        return created

    def load_project_meta(self, project: str) -> Optional[Dict[str, Any]]:
        meta = read_json(self.get_project_meta_path(project), None)
        return meta if isinstance(meta, dict) else None

    def save_project_meta(self, project: str, meta: Dict[str, Any]) -> None:
        data = dict(meta)
        data['name'] = str(project)
        data['updatedAt'] = _now()
        write_json_atomic(self.get_project_meta_path(project), data)

    # ---------- Agents ----------

    def load_agents(self, project: str) -> Dict[str, Any]:
        fallback = {'project': str(project), 'agents': [], 'updatedAt': None}
        data = read_json(self.get_agents_path(project), fallback)
        if not isinstance(data, dict) or not isinstance(data.get('agents'), list):
            return fallback
        return data

    def save_agents(self, project: str, data: Dict[str, Any]) -> None:
        payload = dict(data)
        payload['project'] = str(project)
        payload['agents'] = list(payload.get('agents') or [])
        payload['updatedAt'] = _now()
        write_json_atomic(self.get_agents_path(project), payload)

    @contextmanager
    def locked_agents(self, project: str) -> Iterator[Dict[str, Any]]:
        """
        Exclusive read-modify-write of a project's agent list.

        Usage:
            with registry.locked_agents(project) as data:
                data['agents'].append(entry)

        The modified data is saved when the block exits without an exception.

        Raises:
            TimeoutError: If the lock cannot be acquired within lock_timeout
        """
        lock_path = self.get_agents_path(project) + '.lock'
        os.makedirs(os.path.dirname(lock_path), exist_ok=True)
        start_time = time.time()
        with open(lock_path, 'a') as lock_file:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except OSError as e:
                    if e.errno not in (errno.EACCES, errno.EAGAIN):
                        raise
                    if time.time() - start_time >= self.lock_timeout:
                        raise TimeoutError(
                            f"Could not acquire lock on {lock_path} after {self.lock_timeout}s. "
                            f"Another process may be holding it."
                        )
                    time.sleep(0.05)
            try:
                data = self.load_agents(project)
                yield data
                self.save_agents(project, data)
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    # ---------- Current project pointer ----------

    def get_current_project(self) -> Optional[str]:
        data = read_json(self._current_path(), None)
        if isinstance(data, dict) and data.get('name'):
            return str(data['name'])
        return None

    def set_current_project(self, project: str) -> None:
        write_json_atomic(self._current_path(), {'name': str(project), 'updatedAt': _now()})

    def clear_current_project(self) -> None:
        try:
            os.unlink(self._current_path())
        except FileNotFoundError:
            pass
