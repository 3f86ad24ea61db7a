"""
supervisor.py — Server process lifecycle and restart policy
-----------------------------------------------------------
Idle -> Starting -> Running -> Exited(graceful) | Exited(crashed)
Exited(crashed) -> Restarting -> Starting   (restart enabled, under the limit)
any -> Stopped                               (after the shutdown sequence)

The loop is strictly serial: a new server is only spawned after the previous
one's stream readers, log tailer and watchdog have been torn down.
"""
from __future__ import annotations
import signal
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional
from .argv import find_flag_value
from .console import ConsoleBridge
from .crash_archive import CrashArchiver
from .errors import SpawnError
from .log_mirror import LogMirror, LogTailer, pump_stream
from .logging_setup import get_logger
from .process_runner import ChildProcess, ProcessRunner
from .settings import Settings
from .shutdown import ShutdownCoordinator
from .watchdog import StallWatchdog, build_watchdog

log = get_logger("server_wrapper.supervisor")

IDLE = "idle"
STARTING = "starting"
RUNNING = "running"
EXITED_GRACEFUL = "exited-graceful"
EXITED_CRASHED = "exited-crashed"
RESTARTING = "restarting"
STOPPED = "stopped"

READER_JOIN_TIMEOUT = 5.0
STD_STREAMS = {"-", "/dev/stdout", "/dev/stderr"}


class RestartLedger:
    """Restart timestamps inside a sliding window."""

    def __init__(self, window: float, max_restarts: int, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.max_restarts = max_restarts
        self.clock = clock
        self.entries: Deque[float] = deque()

    def prune(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        while self.entries and now - self.entries[0] > self.window:
            self.entries.popleft()

    def allow(self, now: Optional[float] = None) -> bool:
        """True if one more restart keeps the window at or below the maximum."""
        self.prune(now)
        return len(self.entries) < self.max_restarts

    def record(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        self.prune(now)
        self.entries.append(now)

    def __len__(self) -> int:
        return len(self.entries)


class _ChildTasks:
    def __init__(self):
        self.readers: List[threading.Thread] = []
        self.tailer: Optional[LogTailer] = None
        self.watchdog: Optional[StallWatchdog] = None


class Supervisor:
    def __init__(self, settings: Settings, argv: List[str], *, mirror: LogMirror, bridge: ConsoleBridge,
                 runner: Optional[ProcessRunner] = None, archiver: Optional[CrashArchiver] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.argv = list(argv)
        self.mirror = mirror
        self.bridge = bridge
        self.runner = runner or ProcessRunner(settings.work_dir)
        self.archiver = archiver or CrashArchiver(settings)
        self.ledger = RestartLedger(settings.restart_window, settings.restart_max, clock)
        self.state = IDLE
        self.child: Optional[ChildProcess] = None
        self.spawn_count = 0
        self.last_exit_code: Optional[int] = None
        self.transitions: List[str] = [IDLE]

        remote_send = bridge.remote.send if bridge.remote is not None else None
        self.remote_send = remote_send
        self.shutdown = ShutdownCoordinator(settings, remote_send, lambda: self.child)
        self._stop_requested = threading.Event()
        self._tasks: Optional[_ChildTasks] = None
        self.tail_path = self._tail_path()

    # ------------------------------------------------------------------ #
    def install_signal_handlers(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, _frame) -> None:
        name = signal.Signals(signum).name
        if self._stop_requested.is_set():
            log.info("Received %s again, shutdown already in progress.", name)
            return
        self.mirror.note(f"Received {name}, stopping server...")
        self.request_stop(name)

    def request_stop(self, reason: str = "stop requested") -> None:
        """Funnel a termination request into the one-shot shutdown sequence."""
        self._stop_requested.set()
        threading.Thread(target=self.shutdown.run, args=(reason,), name="shutdown", daemon=True).start()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    # ------------------------------------------------------------------ #
    def run(self) -> int:
        """Supervise until the server stops for good; returns the wrapper's exit code."""
        code = 0
        try:
            while not self._stop_requested.is_set():
                child = self._start_child()
                rc = child.wait()
                self._teardown(child)
                code = child.exit_code if child.exit_code is not None else rc
                self.last_exit_code = code
                self.mirror.note(f"Server process exited with {child.describe_exit()}.")

                if self._is_graceful(child):
                    self._set_state(EXITED_GRACEFUL)
                    if child.returncode < 0:
                        code = 0
                    break

                self._set_state(EXITED_CRASHED)
                self.archiver.archive(child.describe_exit())
                if not self.settings.restart_enabled:
                    log.info("Restart disabled, not restarting.")
                    break
                if not self.ledger.allow():
                    log.error("Restart limit reached (%d restart(s) within %.0fs), giving up.",
                              len(self.ledger), self.settings.restart_window)
                    break
                self.ledger.record()
                self._set_state(RESTARTING)
                log.info("Restarting server in %.1fs (%d restart(s) in window).",
                         self.settings.restart_backoff, len(self.ledger))
                if self._stop_requested.wait(self.settings.restart_backoff):
                    break
        except SpawnError:
            self._set_state(STOPPED)
            raise
        self.shutdown.run("server stopped")
        self.shutdown.wait(self.settings.shutdown_timeout * 2 + self.settings.shutdown_grace)
        self._set_state(STOPPED)
        return code

    def _is_graceful(self, child: ChildProcess) -> bool:
        if child.stop_requested or self._stop_requested.is_set():
            return True
        return child.returncode == 0 and not child.stalled

    def _start_child(self) -> ChildProcess:
        self._set_state(STARTING)
        tasks = _ChildTasks()
        # follow the log file from its end as it was just before this server starts
        if self.tail_path is not None:
            tasks.tailer = LogTailer(self.tail_path, self.mirror, poll_interval=self.settings.tail_poll_interval)
            tasks.tailer.start()
        try:
            child = self.runner.spawn(self.argv)
        except SpawnError:
            if tasks.tailer is not None:
                tasks.tailer.stop()
            raise
        self.child = child
        self.spawn_count += 1
        self._set_state(RUNNING)

        for source, stream in (("stdout", child.proc.stdout), ("stderr", child.proc.stderr)):
            if stream is None:
                continue
            t = threading.Thread(target=pump_stream, args=(stream, source, self.mirror),
                                 name=f"pump-{source}", daemon=True)
            t.start()
            tasks.readers.append(t)
        if self.settings.stall_detection:
            tasks.watchdog = build_watchdog(self.settings, child, self.mirror, self.remote_send)
            tasks.watchdog.start()
        self.bridge.attach(child.write_stdin)
        self._tasks = tasks
        if self._stop_requested.is_set():
            # the stop landed during spawn: the shutdown sequence never saw this child
            self.mirror.note("Stop requested while the server was starting, stopping it.")
            child.stop_requested = True
            child.stop(self.settings.shutdown_timeout)
        return child

    def _teardown(self, child: ChildProcess) -> None:
        tasks, self._tasks = self._tasks, None
        self.bridge.attach(None)
        if tasks is None:
            return
        if tasks.watchdog is not None:
            tasks.watchdog.stop()
            for listener in tasks.watchdog.listeners:
                self.mirror.remove_listener(listener)
        for t in tasks.readers:
            t.join(READER_JOIN_TIMEOUT)
            if t.is_alive():
                log.warning("Output reader %s still busy after server exit (pipe held open?)", t.name)
        if tasks.tailer is not None:
            tasks.tailer.stop()

    def _tail_path(self) -> Optional[Path]:
        path = self.settings.tail_log_file
        if path is None and self.settings.tail_from_logfile_arg:
            value = find_flag_value(self.argv, "-logfile")
            # "-" and the std streams already reach us through the pipes
            path = Path(value) if value and value not in STD_STREAMS else None
        return self.settings.resolve(path) if path is not None else None

    def _set_state(self, state: str) -> None:
        if state != self.state:
            log.debug("Supervisor %s -> %s", self.state, state)
            self.state = state
            self.transitions.append(state)

    def status(self) -> dict:
        tasks = self._tasks
        return {
            "state": self.state,
            "argv": self.argv,
            "spawn_count": self.spawn_count,
            "restarts_in_window": len(self.ledger),
            "last_exit_code": self.last_exit_code,
            "stop_requested": self.stop_requested,
            "child": self.child.status() if self.child else None,
            "watchdog": tasks.watchdog.status() if tasks and tasks.watchdog else None,
            "shutdown": {"started": self.shutdown.started, "done": self.shutdown.done},
        }
