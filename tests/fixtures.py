"""
Test fixtures for Agent Mux testing.

Provides FakeTmuxServer, an in-memory stand-in for `tmux -L <socket>` that
plugs into TmuxBackend as its runner, plus helpers to build isolated
AgentMux instances on temporary storage.
"""

import itertools
import os
import shlex
from typing import Dict, List, Optional

from agent_mux import AgentMux, CommandResult, Registry, TmuxBackend

# Options that take a value, per tmux subcommand
VALUE_FLAGS: Dict[str, str] = {
    'has-session': 't',
    'list-sessions': 'F',
    'new-session': 'sntc',
    'kill-session': 't',
    'new-window': 'tnFc',
    'list-windows': 'tF',
    'kill-window': 't',
    'select-window': 't',
    'list-panes': 'tF',
    'set-option': 't',
    'show-options': 't',
    'pipe-pane': 't',
    'send-keys': 't',
    'capture-pane': 'tSE',
    'list-clients': 'F',
    'switch-client': 'ct',
}


def parse_tmux_args(sub: str, tokens: List[str]):
    """Split tmux arguments into (flags, positionals) the way tmux's getopt does."""
    value_flags = VALUE_FLAGS.get(sub, '')
    flags: Dict[str, object] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token == '--':
            i += 1
            break
        if not token.startswith('-') or len(token) < 2:
            break
        for pos, ch in enumerate(token[1:], start=1):
            if ch in value_flags:
                rest = token[pos + 1:]
                if rest:
                    flags[ch] = rest
                else:
                    i += 1
                    flags[ch] = tokens[i]
                break
            flags[ch] = True
        i += 1
    return flags, tokens[i:]


class FakePane:
    def __init__(self, pane_id: str, window: 'FakeWindow'):
        self.pane_id = pane_id
        self.window = window
        self.lines: List[str] = []
        self.pending = ''
        self.pipe: Optional[str] = None
        self.keys: List[tuple] = []
        self.interrupts = 0

    def _emit(self, line: str) -> None:
        self.lines.append(line)
        if self.pipe:
            path = shlex.split(self.pipe)[-1]
            with open(path, 'a') as f:
                f.write(f"\x1b[32m{line}\x1b[0m\r\n")

    def press(self, key: str) -> None:
        if key == 'Enter':
            typed, self.pending = self.pending, ''
            self._emit(typed)
            if self.window.echo_commands and typed.startswith('echo '):
                self._emit(typed[len('echo '):])
        elif key == 'C-c':
            self.interrupts += 1
            self._emit('^C')
        else:
            self.pending += key


class FakeWindow:
    def __init__(self, window_id: str, index: int, name: str, session: 'FakeSession',
                 cwd: Optional[str] = None, command: Optional[List[str]] = None):
        self.window_id = window_id
        self.index = index
        self.name = name
        self.session = session
        self.cwd = cwd
        self.command = command or []
        self.tags: Dict[str, str] = {}
        self.panes: List[FakePane] = []
        self.echo_commands = True


class FakeSession:
    def __init__(self, name: str, cwd: Optional[str] = None):
        self.name = name
        self.cwd = cwd
        self.windows: List[FakeWindow] = []
        self.active_window: Optional[FakeWindow] = None


class FakeTmuxServer:
    """
    Stateful fake of a tmux server reached through one private socket.

    Panes behave like a shell with echo: text typed with send-keys is shown
    when Enter arrives, and "echo X" additionally prints X.

    Attributes:
        calls: Every argv received, in order
        failures: subcommand -> stderr; matching commands fail with exit 1
        broken_clients: Client ttys whose switch-client fails
    """

    def __init__(self, socket_name: str = 'test-socket', version: str = 'tmux 3.4'):
        self.socket_name = socket_name
        self.version = version
        self.sessions: Dict[str, FakeSession] = {}
        self.clients: List[str] = []
        self.client_sessions: Dict[str, str] = {}
        self.broken_clients = set()
        self.failures: Dict[str, str] = {}
        self.calls: List[List[str]] = []
        self.capture_requests: List[int] = []
        self._window_ids = itertools.count(1)
        self._pane_ids = itertools.count(1)

    # ---------- test helpers ----------

    def subcommands(self) -> List[str]:
        return [c[3] for c in self.calls if len(c) > 3]

    def all_windows(self) -> List[FakeWindow]:
        return [w for s in self.sessions.values() for w in s.windows]

    def window(self, window_id: str) -> Optional[FakeWindow]:
        return next((w for w in self.all_windows() if w.window_id == window_id), None)

    def pane(self, pane_id: str) -> Optional[FakePane]:
        return next((p for w in self.all_windows() for p in w.panes if p.pane_id == pane_id), None)

    def remove_window(self, window_id: str) -> None:
        """Simulate a window dying outside of Agent Mux."""
        window = self.window(window_id)
        if window:
            window.session.windows.remove(window)

    def add_session(self, name: str) -> FakeSession:
        session = FakeSession(name)
        self.sessions[name] = session
        self._new_window(session, 'main')
        return session

    def add_window(self, session_name: str, name: str, tags: Optional[Dict[str, str]] = None) -> FakeWindow:
        window = self._new_window(self.sessions[session_name], name)
        window.tags.update(tags or {})
        return window

    # ---------- runner protocol ----------

    def __call__(self, argv, timeout=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        if argv[1:] == ['-V']:
            return CommandResult(argv, 0, self.version + '\n', '')
        assert argv[1] == '-L' and argv[2] == self.socket_name, f"not on private socket: {argv}"
        sub, tokens = argv[3], argv[4:]
        if sub in self.failures:
            return CommandResult(argv, 1, '', self.failures[sub])
        flags, positional = parse_tmux_args(sub, tokens)
        handler = getattr(self, '_cmd_' + sub.replace('-', '_'))
        try:
            out = handler(flags, positional)
        except LookupError as e:
            return CommandResult(argv, 1, '', str(e.args[0]) if e.args else 'error')
        return CommandResult(argv, 0, out or '', '')

    # ---------- target resolution ----------

    def _new_window(self, session: FakeSession, name: str, cwd=None, command=None) -> FakeWindow:
        index = max((w.index for w in session.windows), default=-1) + 1
        window = FakeWindow(f"@{next(self._window_ids)}", index, name, session, cwd, command)
        window.panes.append(FakePane(f"%{next(self._pane_ids)}", window))
        session.windows.append(window)
        if session.active_window is None:
            session.active_window = window
        return window

    def _session(self, target: str) -> FakeSession:
        if target.startswith('@') or target.startswith('%'):
            return self._window(target).session
        name = target.split(':', 1)[0]
        if name not in self.sessions:
            raise LookupError(f"can't find session: {name}")
        return self.sessions[name]

    def _window(self, target: str) -> FakeWindow:
        if target.startswith('@'):
            window = self.window(target)
            if window is None:
                raise LookupError(f"can't find window: {target}")
            return window
        if target.startswith('%'):
            pane = self.pane(target)
            if pane is None:
                raise LookupError(f"can't find pane: {target}")
            return pane.window
        session_name, _, spec = target.partition(':')
        session = self._session(session_name)
        if not spec:
            if not session.windows:
                raise LookupError(f"can't find window: {target}")
            return session.active_window or session.windows[0]
        for window in session.windows:
            if str(window.index) == spec or window.name == spec:
                return window
        raise LookupError(f"can't find window: {spec}")

    def _pane(self, target: str) -> FakePane:
        if target.startswith('%'):
            pane = self.pane(target)
            if pane is None:
                raise LookupError(f"can't find pane: {target}")
            return pane
        window = self._window(target)
        if not window.panes:
            raise LookupError(f"can't find pane: {target}")
        return window.panes[0]

    @staticmethod
    def _format(fmt: str, **values) -> str:
        out = fmt
        for key, value in values.items():
            out = out.replace('#{' + key + '}', str(value))
        return out

    def _window_line(self, fmt: str, window: FakeWindow) -> str:
        return self._format(fmt, window_id=window.window_id, window_index=window.index, window_name=window.name)

    # ---------- commands ----------

    def _cmd_has_session(self, flags, positional):
        self._session(flags['t'])

    def _cmd_list_sessions(self, flags, positional):
        if not self.sessions:
            raise LookupError("no server running on /tmp/tmux-0/" + self.socket_name)
        return ''.join(self._format(flags['F'], session_name=name) + '\n' for name in self.sessions)

    def _cmd_new_session(self, flags, positional):
        name = flags['s']
        if name in self.sessions:
            raise LookupError(f"duplicate session: {name}")
        session = FakeSession(name, flags.get('c'))
        self.sessions[name] = session
        self._new_window(session, flags.get('n', '0'), cwd=flags.get('c'))

    def _cmd_kill_session(self, flags, positional):
        session = self._session(flags['t'])
        del self.sessions[session.name]
        for tty, name in list(self.client_sessions.items()):
            if name == session.name:
                del self.client_sessions[tty]

    def _cmd_new_window(self, flags, positional):
        session = self._session(flags['t'])
        window = self._new_window(session, flags.get('n', ''), cwd=flags.get('c'), command=positional)
        if flags.get('P'):
            return self._window_line(flags.get('F', '#{window_index}'), window) + '\n'

    def _cmd_list_windows(self, flags, positional):
        session = self._session(flags['t'])
        return ''.join(self._window_line(flags['F'], w) + '\n' for w in session.windows)

    def _cmd_kill_window(self, flags, positional):
        window = self._window(flags['t'])
        session = window.session
        session.windows.remove(window)
        if session.active_window is window:
            session.active_window = session.windows[0] if session.windows else None
        if not session.windows:
            del self.sessions[session.name]

    def _cmd_select_window(self, flags, positional):
        window = self._window(flags['t'])
        window.session.active_window = window

    def _cmd_list_panes(self, flags, positional):
        window = self._window(flags['t'])
        return ''.join(self._format(flags['F'], pane_id=p.pane_id) + '\n' for p in window.panes)

    def _cmd_set_option(self, flags, positional):
        window = self._window(flags['t'])
        key, value = positional[0], positional[1]
        window.tags[key] = value

    def _cmd_show_options(self, flags, positional):
        window = self._window(flags['t'])
        key = positional[0]
        if key not in window.tags:
            raise LookupError(f"invalid option: {key}")
        return window.tags[key] + '\n'

    def _cmd_pipe_pane(self, flags, positional):
        pane = self._pane(flags['t'])
        if flags.get('o') and pane.pipe:
            return
        pane.pipe = positional[0] if positional else None

    def _cmd_send_keys(self, flags, positional):
        pane = self._pane(flags['t'])
        if flags.get('l'):
            text = ' '.join(positional)
            pane.keys.append(('literal', text))
            pane.pending += text
            return
        for key in positional:
            pane.keys.append(('key', key))
            pane.press(key)

    def _cmd_capture_pane(self, flags, positional):
        pane = self._pane(flags['t'])
        history = int(str(flags.get('S', '0')).lstrip('-') or 0)
        self.capture_requests.append(history)
        visible = pane.lines[-history:] if history else pane.lines
        # trailing blank rows of an otherwise empty screen
        return '\n'.join(visible + ['', '', '']) + '\n'

    def _cmd_list_clients(self, flags, positional):
        if not self.sessions:
            raise LookupError("no server running")
        return ''.join(self._format(flags['F'], client_tty=tty) + '\n' for tty in self.clients)

    def _cmd_switch_client(self, flags, positional):
        tty = flags['c']
        if tty in self.broken_clients:
            raise LookupError(f"can't find client: {tty}")
        session = self._session(flags['t'])
        self.client_sessions[tty] = session.name


def make_backend(fake: FakeTmuxServer) -> TmuxBackend:
    return TmuxBackend(socket_name=fake.socket_name, runner=fake)


def make_mux(base_dir: str, fake: Optional[FakeTmuxServer] = None, send_delay: float = 0.0) -> AgentMux:
    """Build an isolated AgentMux on a fake tmux and a registry under base_dir."""
    fake = fake or FakeTmuxServer()
    registry = Registry(
        project_root=os.path.join(base_dir, 'project'),
        fallback_dir=os.path.join(base_dir, 'fallback'),
    )
    return AgentMux(make_backend(fake), registry, send_delay=send_delay)
