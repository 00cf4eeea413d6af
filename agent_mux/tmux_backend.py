"""
tmux Backend Adapter

A thin wrapper around `tmux` on a private socket (`tmux -L <socket> ...`):
- One project = one tmux session
- One agent = one tmux window (single pane)

All raw-text parsing of tmux replies lives here. Every command goes through
a single runner callable so tests can swap in a fake tmux.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set

from .config import DEFAULT_SOCKET_NAME, DEFAULT_TMUX_BINARY
from .errors import BackendCommandError, NoPaneFound

logger = logging.getLogger(__name__)

__all__ = [
    'CommandResult',
    'WindowInfo',
    'run_command',
    'TmuxBackend',
]

WINDOW_FORMAT = '#{window_id}|#{window_index}|#{window_name}'


# ============================================================================
# COMMAND PRIMITIVE
# ============================================================================

@dataclass
class CommandResult:
    """Outcome of a single external invocation."""
    args: List[str]
    returncode: Optional[int]
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[..., CommandResult]


def run_command(args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
    """
    Run one external command to completion and capture its output.

    A missing binary or an expired timeout is reported as a failed
    CommandResult (returncode None) instead of raising.

    Args:
        args: Full argument vector, binary first
        timeout: Seconds before giving up (None waits indefinitely)

    Returns:
        CommandResult with exit status, stdout and stderr
    """
    argv = [str(a) for a in args]
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        return CommandResult(argv, None, '', f"{argv[0]} not found: {e}")
    except subprocess.TimeoutExpired:
        return CommandResult(argv, None, '', f"timed out after {timeout}s")
    return CommandResult(argv, result.returncode, result.stdout or '', result.stderr or '')


@dataclass
class WindowInfo:
    """A tmux window as reported by new-window -P or list-windows."""
    window_id: str
    window_index: int
    window_name: str


def _parse_window_line(line: str, fallback_name: str = '') -> WindowInfo:
    parts = line.strip().split('|')
    window_id = parts[0].strip()
    try:
        window_index = int(parts[1]) if len(parts) > 1 else -1
    except ValueError:
        window_index = -1
    window_name = parts[2].strip() if len(parts) > 2 and parts[2].strip() else fallback_name
    return WindowInfo(window_id=window_id, window_index=window_index, window_name=window_name)


def _lines(text: str) -> List[str]:
    return [line.strip() for line in (text or '').split('\n') if line.strip()]


# ============================================================================
# BACKEND
# ============================================================================

class TmuxBackend:
    """Typed operations over `tmux -L <socket_name>`."""

    def __init__(
        self,
        socket_name: str = DEFAULT_SOCKET_NAME,
        tmux_binary: str = DEFAULT_TMUX_BINARY,
        runner: Optional[Runner] = None,
        timeout: Optional[float] = None,
    ):
        self.socket_name = socket_name
        self.tmux_binary = tmux_binary
        self.runner = runner or run_command
        self.timeout = timeout

    def _build_args(self, args: Sequence) -> List[str]:
        return [self.tmux_binary, '-L', self.socket_name] + [str(a) for a in args]

    def run_raw(self, args: Sequence) -> CommandResult:
        """Run a tmux command; a non-zero exit is returned, not raised."""
        argv = self._build_args(args)
        result = self.runner(argv, timeout=self.timeout)
        logger.debug(f"tmux {' '.join(argv[1:])} -> {result.returncode}")
        return result

    def exec(self, args: Sequence) -> str:
        """
        Run a tmux command that must succeed.

        Returns:
            Captured stdout

        Raises:
            BackendCommandError: On any non-zero exit
        """
        result = self.run_raw(args)
        if not result.ok:
            raise BackendCommandError(result.args, result.returncode, result.stdout, result.stderr)
        return result.stdout or ''

    # ---------- Server ----------

    def version(self) -> Optional[str]:
        result = self.runner([self.tmux_binary, '-V'], timeout=self.timeout)
        return result.stdout.strip() if result.ok else None

    def is_available(self) -> bool:
        return self.version() is not None

    # ---------- Sessions (projects) ----------

    def session_exists(self, name: str) -> bool:
        return self.run_raw(['has-session', '-t', name]).ok

    def list_sessions(self) -> Set[str]:
        result = self.run_raw(['list-sessions', '-F', '#{session_name}'])
        if not result.ok:
            # "no server running" is the normal empty state
            return set()
        return set(_lines(result.stdout))

    def create_session(self, name: str, cwd: Optional[str] = None) -> dict:
        """Create a detached session; an existing session is left alone."""
        if self.session_exists(name):
            return {'created': False}
        args = ['new-session', '-d', '-s', name, '-n', 'main']
        if cwd:
            args.extend(['-c', cwd])
        self.exec(args)
        logger.info(f"Created tmux session '{name}' on socket '{self.socket_name}'")
        return {'created': True}

    def kill_session(self, name: str) -> None:
        self.exec(['kill-session', '-t', name])

    # ---------- Windows (agents) ----------

    def create_window(
        self,
        session: str,
        window_name: str,
        cwd: Optional[str] = None,
        command: Optional[str] = None,
        args: Optional[Sequence[str]] = None,
    ) -> WindowInfo:
        """
        Create a detached window, optionally running `command args...`.

        Returns:
            WindowInfo for the new window
        """
        cmd = ['new-window', '-d', '-t', f"{session}:", '-n', window_name, '-P', '-F', WINDOW_FORMAT]
        if cwd:
            cmd.extend(['-c', cwd])
        if command:
            cmd.append(command)
            cmd.extend(str(a) for a in (args or []))
        out = self.exec(cmd).strip()
        return _parse_window_line(out, fallback_name=window_name)

    def list_windows(self, session: str) -> List[WindowInfo]:
        result = self.run_raw(['list-windows', '-t', session, '-F', WINDOW_FORMAT])
        if not result.ok:
            return []
        return [_parse_window_line(line) for line in _lines(result.stdout)]

    def kill_window(self, target: str) -> None:
        self.exec(['kill-window', '-t', target])

    def select_window(self, target: str) -> None:
        self.exec(['select-window', '-t', target])

    def get_first_pane_id(self, window_target: str) -> str:
        out = self.exec(['list-panes', '-t', window_target, '-F', '#{pane_id}'])
        panes = _lines(out)
        if not panes:
            raise NoPaneFound(window_target)
        return panes[0]

    def set_window_tag(self, window_target: str, key: str, value: str) -> None:
        self.exec(['set-option', '-w', '-t', window_target, key, str(value)])

    def read_window_tag(self, window_target: str, key: str) -> Optional[str]:
        result = self.run_raw(['show-options', '-w', '-t', window_target, '-v', key])
        if not result.ok:
            return None
        return result.stdout.strip()

    # ---------- Panes (I/O) ----------

    def pipe_output_to(self, pane_target: str, shell_command: str, only_if_not_running: bool = False) -> None:
        args = ['pipe-pane', '-t', pane_target]
        if only_if_not_running:
            args.append('-o')
        args.append(shell_command)
        self.exec(args)

    def pipe_output_to_file(self, pane_target: str, log_path: str, only_if_not_running: bool = False) -> None:
        """Append the pane's raw output stream to log_path."""
        self.pipe_output_to(pane_target, f"cat >> {shlex.quote(log_path)}", only_if_not_running)

    def send_literal_keys(self, pane_target: str, text: str) -> None:
        # -l disables key-name lookup; -- stops option parsing for text starting with "-"
        self.exec(['send-keys', '-t', pane_target, '-l', '--', str(text)])

    def send_key(self, pane_target: str, key: str) -> None:
        self.exec(['send-keys', '-t', pane_target, key])

    def capture_rendered(self, pane_target: str, history_lines: int = 2000) -> str:
        """Rendered pane text (no escape sequences) including the last N scrollback lines."""
        return self.exec(['capture-pane', '-t', pane_target, '-p', '-S', f"-{int(history_lines)}"])

    # ---------- Clients (presentation) ----------

    def list_clients(self) -> List[str]:
        result = self.run_raw(['list-clients', '-F', '#{client_tty}'])
        if not result.ok:
            return []
        return _lines(result.stdout)

    def switch_client(self, client_tty: str, session: str) -> None:
        self.exec(['switch-client', '-c', client_tty, '-t', session])
