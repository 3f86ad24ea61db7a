"""
console.py — Operator console routing
-------------------------------------
Every line typed into the panel console is routed either to the server's
stdin or to the remote admin (RCON) channel. An explicit prefix picks the
route for one line; otherwise the persistent default mode decides:

    !<cmd>          run <cmd> locally in a shell (output mirrored)
    ><cmd>          write <cmd> to the server's stdin
    @<cmd>          send <cmd> over RCON (falls back to stdin without credentials)
    /mode [m]       show or set the default route: stdin | remote | auto

``auto`` means remote when RCON credentials are configured, stdin otherwise.
"""
from __future__ import annotations
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TextIO
from .errors import ConfigurationError, RemoteProtocolError
from .log_mirror import LogMirror
from .logging_setup import get_logger
from .rcon import RconClient
from .settings import Settings

log = get_logger("server_wrapper.console")

MODES = ("stdin", "remote", "auto")
ROUTE_STDIN = "stdin"
ROUTE_REMOTE = "remote"
ROUTE_SHELL = "shell"
ROUTE_CONTROL = "control"


@dataclass
class RouteResult:
    route: str
    command: str
    ok: bool = True
    response: Optional[str] = None
    fallback: bool = False


class ConsoleBridge:
    def __init__(self, settings: Settings, mirror: LogMirror, remote: Optional[RconClient] = None,
                 stdin_target: Optional[Callable[[str], bool]] = None):
        self.settings = settings
        self.mirror = mirror
        self.remote = remote
        self.stdin_target = stdin_target
        self._mode = settings.console_mode
        self._mode_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        if self._mode == ROUTE_REMOTE and remote is None:
            raise ConfigurationError("CONSOLE_MODE=remote requires RCON_PASS", source="CONSOLE_MODE")
        if remote is not None:
            remote.on_message(self._show_remote)

    # ------------------------------------------------------------------ #
    @property
    def mode(self) -> str:
        with self._mode_lock:
            return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"unknown console mode {mode!r}")
        if mode == ROUTE_REMOTE and self.remote is None:
            raise ValueError("remote mode needs RCON credentials")
        with self._mode_lock:
            self._mode = mode
        log.info("Console default route set to %s", mode)

    def default_route(self) -> str:
        mode = self.mode
        if mode == "auto":
            return ROUTE_REMOTE if self.remote is not None else ROUTE_STDIN
        return mode

    def attach(self, stdin_target: Optional[Callable[[str], bool]]) -> None:
        """Point stdin routing at the current child (None while no child runs)."""
        self.stdin_target = stdin_target

    # ------------------------------------------------------------------ #
    def classify(self, line: str):
        s = self.settings
        if line.startswith(s.console_mode_command) and (
                len(line) == len(s.console_mode_command) or line[len(s.console_mode_command)].isspace()):
            return ROUTE_CONTROL, line[len(s.console_mode_command):].strip()
        if s.console_shell_prefix and line.startswith(s.console_shell_prefix):
            return ROUTE_SHELL, line[len(s.console_shell_prefix):].strip()
        if s.console_stdin_prefix and line.startswith(s.console_stdin_prefix):
            return ROUTE_STDIN, line[len(s.console_stdin_prefix):].lstrip()
        if s.console_remote_prefix and line.startswith(s.console_remote_prefix):
            return ROUTE_REMOTE, line[len(s.console_remote_prefix):].lstrip()
        return self.default_route(), line

    def handle_line(self, line: str) -> RouteResult:
        line = line.rstrip("\r\n")
        route, command = self.classify(line)
        if route == ROUTE_CONTROL:
            return self._control(command)
        if route == ROUTE_SHELL:
            return self.run_local(command, self.settings.shutdown_timeout)
        if route == ROUTE_REMOTE:
            if self.remote is None:
                self.mirror.note("No RCON credentials configured, sending via stdin instead.")
                result = self.to_stdin(command)
                result.fallback = True
                return result
            return self.to_remote(command)
        return self.to_stdin(command)

    def to_stdin(self, command: str) -> RouteResult:
        target = self.stdin_target
        if target is None:
            log.warning("No running server to receive %r", command)
            return RouteResult(ROUTE_STDIN, command, ok=False)
        return RouteResult(ROUTE_STDIN, command, ok=target(command))

    def to_remote(self, command: str) -> RouteResult:
        try:
            response = self.remote.send(command)
        except RemoteProtocolError as e:
            log.warning("RCON command %r failed: %s", command, e)
            return RouteResult(ROUTE_REMOTE, command, ok=False)
        if response:
            self._show_remote(response)
        return RouteResult(ROUTE_REMOTE, command, response=response)

    def run_local(self, command: str, timeout: float) -> RouteResult:
        if not command:
            return RouteResult(ROUTE_SHELL, command, ok=False)
        try:
            proc = subprocess.run(command, shell=True, cwd=str(self.settings.work_dir),
                                  stdout=subprocess.PIPE, stderr=subprocess.STDOUT, timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Local command %r timed out after %.0fs", command, timeout)
            return RouteResult(ROUTE_SHELL, command, ok=False)
        except OSError as e:
            log.warning("Local command %r failed to start: %s", command, e)
            return RouteResult(ROUTE_SHELL, command, ok=False)
        if proc.stdout:
            self.mirror.feed("shell", proc.stdout)
            self.mirror.end("shell")
        if proc.returncode != 0:
            log.warning("Local command %r exited with %s", command, proc.returncode)
        return RouteResult(ROUTE_SHELL, command, ok=proc.returncode == 0,
                           response=proc.stdout.decode("utf-8", errors="replace"))

    def _control(self, arg: str) -> RouteResult:
        if arg:
            try:
                self.set_mode(arg)
            except ValueError as e:
                self.mirror.note(f"Cannot switch console mode: {e}")
                return RouteResult(ROUTE_CONTROL, arg, ok=False)
        self.mirror.note(f"Console mode: {self.mode} (routing to {self.default_route()})")
        return RouteResult(ROUTE_CONTROL, arg, response=self.mode)

    def _show_remote(self, text: str) -> None:
        if not text.strip():
            return
        for line in text.rstrip("\n").split("\n"):
            self.mirror.render("rcon", line.rstrip("\r"))

    # ------------------------------------------------------------------ #
    def start(self, stream: Optional[TextIO] = None) -> None:
        """Read operator lines from ``stream`` (default: our stdin) in a daemon thread."""
        stream = stream or sys.stdin
        self._reader = threading.Thread(target=self._read_loop, args=(stream,), name="console", daemon=True)
        self._reader.start()

    def _read_loop(self, stream: TextIO) -> None:
        for line in iter(stream.readline, ""):
            if not line.strip():
                continue
            try:
                self.handle_line(line)
            except Exception:
                log.exception("Console line %r could not be handled", line)
        log.debug("Operator console closed")
