from __future__ import annotations
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from .errors import SpawnError
from .logging_setup import get_logger

log = get_logger("server_wrapper.proc")

RUNNING = "running"
EXITED = "exited"


@dataclass
class ChildProcess:
    argv: List[str]
    proc: subprocess.Popen
    started_at: float = field(default_factory=time.time)
    state: str = RUNNING
    returncode: Optional[int] = None
    stalled: bool = False
    stop_requested: bool = False
    _stdin_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def alive(self) -> bool:
        return self.proc.poll() is None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            rc = self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        self.returncode = rc
        self.state = EXITED
        return rc

    def write_stdin(self, line: str) -> bool:
        """Send one console line to the server; False if its stdin is gone."""
        data = (line.rstrip("\r\n") + "\n").encode("utf-8")
        with self._stdin_lock:
            if self.proc.stdin is None or self.proc.stdin.closed:
                return False
            try:
                self.proc.stdin.write(data)
                self.proc.stdin.flush()
            except (BrokenPipeError, ValueError, OSError):
                log.warning("Cannot write to stdin of pid %s", self.pid)
                return False
        return True

    def send_signal(self, sig: int) -> bool:
        if not self.alive():
            return False
        try:
            self.proc.send_signal(sig)
        except ProcessLookupError:
            return False
        log.info("Sent %s to pid %s", signal.Signals(sig).name, self.pid)
        return True

    def terminate(self) -> bool:
        return self.send_signal(signal.SIGTERM)

    def kill(self) -> bool:
        return self.send_signal(signal.SIGKILL)

    def stop(self, grace: float) -> Optional[int]:
        """SIGTERM, wait up to ``grace`` seconds, then SIGKILL."""
        if self.terminate():
            rc = self.wait(grace)
            if rc is not None:
                return rc
            log.warning("pid %s ignored SIGTERM for %.1fs, killing", self.pid, grace)
            self.kill()
        return self.wait(grace)

    @property
    def exit_code(self) -> Optional[int]:
        """Shell-style code: signal deaths map to 128 + signal number."""
        if self.returncode is None:
            return None
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode

    def describe_exit(self) -> str:
        if self.returncode is None:
            return "still running"
        if self.returncode < 0:
            try:
                name = signal.Signals(-self.returncode).name
            except ValueError:
                name = str(-self.returncode)
            return f"signal {name}"
        return f"code {self.returncode}"

    def status(self) -> dict:
        return {
            "pid": self.pid,
            "state": self.state,
            "started_at": self.started_at,
            "returncode": self.returncode,
            "exit_code": self.exit_code,
            "stalled": self.stalled,
        }


class ProcessRunner:
    def __init__(self, work_dir: Path):
        self.work_dir = work_dir

    def resolve_executable(self, program: str) -> str:
        if os.sep in program:
            path = Path(program)
            if not path.is_absolute():
                path = self.work_dir / path
            if not path.exists():
                raise SpawnError(f"server executable {path} does not exist", str(path))
        else:
            found = shutil.which(program)
            if found is None:
                local = self.work_dir / program
                if not local.exists():
                    raise SpawnError(f"server executable {program!r} not found in PATH or {self.work_dir}", program)
                found = str(local)
            path = Path(found)
        if not path.is_file() or not os.access(path, os.X_OK):
            raise SpawnError(f"server executable {path} is not executable", str(path))
        return str(path)

    def spawn(self, argv: List[str], env: Optional[dict] = None) -> ChildProcess:
        """Start the server directly (no shell); the argument vector is used literally."""
        executable = self.resolve_executable(argv[0])
        log.info("Starting server: %s", " ".join(argv))
        try:
            proc = subprocess.Popen(
                argv,
                executable=executable,
                cwd=str(self.work_dir),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                env=env,
            )
        except OSError as e:
            raise SpawnError(f"cannot start {executable}: {e}", executable) from e
        log.info("Server started with pid %s", proc.pid)
        return ChildProcess(argv=list(argv), proc=proc)
