"""
watchdog.py — Stall detection for a server that is alive but stuck
-------------------------------------------------------------------
An exit code only tells us about processes that died. The watchdog samples
an independent progress indicator on a fixed interval and, once the value
has not moved for ``timeout`` seconds, sends SIGTERM, waits ``grace`` seconds
and then SIGKILLs. It never restarts anything itself; the supervisor sees the
resulting exit and applies the ordinary crash path.

Indicators:
 - cpu:   cumulative CPU time of the process (psutil)
 - log:   number of lines the server has written
 - probe: count of successful RCON round trips
Sampling only starts counting after the server looked ready once (first CPU
time, first line, first probe, or the startup marker seen in the log) so a
slow boot is not taken for a hang.
"""
from __future__ import annotations
import threading
import time
from typing import Callable, Optional
import psutil
from .errors import RemoteProtocolError, StallDetected
from .logging_setup import get_logger

log = get_logger("server_wrapper.watchdog")


class ProgressIndicator:
    name = "indicator"

    def sample(self) -> Optional[float]:
        raise NotImplementedError

    def is_ready(self, value: Optional[float]) -> bool:
        return bool(value)


class CpuTicksIndicator(ProgressIndicator):
    name = "cpu"

    def __init__(self, pid: int):
        self.pid = pid
        self._proc: Optional[psutil.Process] = None

    def sample(self) -> Optional[float]:
        try:
            if self._proc is None:
                self._proc = psutil.Process(self.pid)
            times = self._proc.cpu_times()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None
        return round(times.user + times.system, 2)


class LogActivityIndicator(ProgressIndicator):
    """Counts mirrored lines; hook ``on_line`` into the log mirror."""
    name = "log"

    def __init__(self):
        self.lines = 0
        self._lock = threading.Lock()

    def on_line(self, source: str, line: str) -> None:
        with self._lock:
            self.lines += 1

    def sample(self) -> Optional[float]:
        with self._lock:
            return float(self.lines)


class ProbeIndicator(ProgressIndicator):
    name = "probe"

    def __init__(self, send: Callable[[str], str], command: str):
        self.send = send
        self.command = command
        self.successes = 0

    def sample(self) -> Optional[float]:
        try:
            self.send(self.command)
        except RemoteProtocolError as e:
            log.debug("Liveness probe failed: %s", e)
        else:
            self.successes += 1
        return float(self.successes)


class StallWatchdog:
    def __init__(self, child, indicator: ProgressIndicator, *, timeout: float, poll_interval: float,
                 grace: float, clock: Callable[[], float] = time.monotonic):
        self.child = child
        self.indicator = indicator
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.grace = grace
        self.clock = clock

        # heartbeat state
        self.ready = False
        self.last_sample: Optional[float] = None
        self.last_progress_at: Optional[float] = None
        self.idle = 0.0
        self._last_tick: Optional[float] = None
        self.fired = False
        self.listeners: list = []

        self._marker_seen = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"watchdog-{self.child.pid}", daemon=True)
        self._thread.start()
        log.info("Stall watchdog armed for pid %s (%s, timeout %.0fs, poll %.0fs)",
                 self.child.pid, self.indicator.name, self.timeout, self.poll_interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout if timeout is not None else self.grace + self.poll_interval + 1)

    def mark_ready(self) -> None:
        """Startup marker seen in the log."""
        self._marker_seen.set()

    def on_line(self, marker: str) -> Callable[[str, str], None]:
        def _listener(source: str, line: str) -> None:
            if marker and marker in line:
                self.mark_ready()
        return _listener

    # ------------------------------------------------------------------ #
    def _run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            if not self.child.alive():
                return
            try:
                self.poll_once()
            except StallDetected as e:
                log.warning("Stall detected: %s", e)
                self.escalate()
                return

    def poll_once(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        value = self.indicator.sample()
        if not self.ready:
            if self.indicator.is_ready(value) or self._marker_seen.is_set():
                self.ready = True
                self.last_sample = value
                self.last_progress_at = self._last_tick = now
                log.info("Server pid %s looks ready, stall detection active.", self.child.pid)
            return

        if value is not None and value != self.last_sample:
            self.last_sample = value
            self.last_progress_at = now
            self.idle = 0.0
        else:
            self.idle += now - self._last_tick
        self._last_tick = now
        if self.idle >= self.timeout:
            raise StallDetected(self.child.pid, self.idle)

    def escalate(self) -> None:
        self.fired = True
        self.child.stalled = True
        if not self.child.terminate():
            return
        if self.child.wait(self.grace) is None:
            log.warning("pid %s still alive %.0fs after SIGTERM, sending SIGKILL", self.child.pid, self.grace)
            self.child.kill()

    def status(self) -> dict:
        return {
            "indicator": self.indicator.name,
            "ready": self.ready,
            "idle": round(self.idle, 1),
            "last_sample": self.last_sample,
            "last_progress_at": self.last_progress_at,
            "fired": self.fired,
        }


def build_watchdog(settings, child, mirror, send: Optional[Callable[[str], str]] = None) -> StallWatchdog:
    """Wire a watchdog for ``child`` according to the STALL_* settings."""
    listeners = []
    if settings.stall_indicator == "log":
        indicator: ProgressIndicator = LogActivityIndicator()
        listeners.append(indicator.on_line)
    elif settings.stall_indicator == "probe" and send is not None:
        indicator = ProbeIndicator(send, settings.stall_probe_command)
    else:
        if settings.stall_indicator == "probe":
            log.warning("STALL_INDICATOR=probe needs RCON credentials; falling back to cpu.")
        indicator = CpuTicksIndicator(child.pid)
    wd = StallWatchdog(child, indicator, timeout=settings.stall_timeout,
                       poll_interval=settings.stall_poll_interval, grace=settings.stall_grace)
    if settings.stall_ready_marker:
        listeners.append(wd.on_line(settings.stall_ready_marker))
    for listener in listeners:
        mirror.add_listener(listener)
    wd.listeners = listeners
    return wd
