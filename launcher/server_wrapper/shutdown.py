from __future__ import annotations
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional
from .errors import RemoteProtocolError, ShutdownCommandFailure
from .logging_setup import get_logger
from .process_runner import ChildProcess
from .settings import Settings

log = get_logger("server_wrapper.shutdown")


class ShutdownCoordinator:
    """
    Ordered stop sequence, executed at most once per wrapper lifetime:
    RCON commands, local shell commands, stdin commands (then a short grace
    for a voluntary exit), and finally SIGTERM/SIGKILL for a child still alive.
    A failing or hanging command is logged and the sequence moves on.
    """

    def __init__(self, settings: Settings, remote_send: Optional[Callable[[str], str]],
                 current_child: Callable[[], Optional[ChildProcess]]):
        self.settings = settings
        self.remote_send = remote_send
        self.current_child = current_child
        self.executed: List[str] = []
        self.failures: List[ShutdownCommandFailure] = []
        self._guard = threading.Lock()
        self._done = threading.Event()

    @property
    def started(self) -> bool:
        return self._guard.locked()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def run(self, reason: str = "shutdown") -> bool:
        """Run the sequence; returns False if it already ran (or is running)."""
        # acquired once and never released: atomic check-and-set
        if not self._guard.acquire(blocking=False):
            log.debug("Shutdown already in progress, ignoring %s", reason)
            return False
        log.info("Running shutdown sequence (%s)", reason)
        try:
            self._remote_commands()
            self._local_commands()
            self._stop_child()
        finally:
            self._done.set()
            log.info("Shutdown sequence finished")
        return True

    # ------------------------------------------------------------------ #
    def _remote_commands(self) -> None:
        commands = self.settings.shutdown_rcon_commands
        if not commands:
            return
        if self.remote_send is None:
            log.warning("SHUTDOWN_RCON_COMMANDS set but no RCON credentials; skipping %d command(s)", len(commands))
            return
        timeout = self.settings.shutdown_timeout
        # never join the pool: a hung send must not hold up the rest of the sequence
        ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix="shutdown-rcon")
        try:
            for cmd in commands:
                self.executed.append(f"rcon:{cmd}")
                future = ex.submit(self.remote_send, cmd)
                try:
                    reply = future.result(timeout=timeout)
                except FutureTimeout:
                    self._failed(cmd, f"no completion within {timeout:.0f}s")
                    continue
                except RemoteProtocolError as e:
                    self._failed(cmd, str(e))
                    continue
                log.info("Shutdown RCON %r -> %s", cmd, (reply or "").strip()[:200] or "(no reply)")
        finally:
            ex.shutdown(wait=False)

    def _local_commands(self) -> None:
        timeout = self.settings.shutdown_timeout
        for cmd in self.settings.shutdown_local_commands:
            self.executed.append(f"local:{cmd}")
            try:
                proc = subprocess.run(cmd, shell=True, cwd=str(self.settings.work_dir), timeout=timeout)
            except subprocess.TimeoutExpired:
                self._failed(cmd, f"timed out after {timeout:.0f}s")
                continue
            except OSError as e:
                self._failed(cmd, str(e))
                continue
            if proc.returncode != 0:
                self._failed(cmd, f"exit code {proc.returncode}")

    def _stop_child(self) -> None:
        child = self.current_child()
        if child is None or not child.alive():
            return
        child.stop_requested = True
        stdin_cmds = self.settings.shutdown_stdin_commands
        if stdin_cmds:
            for cmd in stdin_cmds:
                self.executed.append(f"stdin:{cmd}")
                child.write_stdin(cmd)
            if child.wait(self.settings.shutdown_grace) is not None:
                return
        child.stop(self.settings.shutdown_timeout)

    def _failed(self, cmd: str, reason: str) -> None:
        failure = ShutdownCommandFailure(cmd, reason)
        self.failures.append(failure)
        log.warning("%s", failure)
