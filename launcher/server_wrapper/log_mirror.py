"""
log_mirror.py — Durable log file + formatted console view of server output
--------------------------------------------------------------------------
Raw bytes from the child's stdout/stderr (and an optionally tailed log file)
are appended untouched to ``latest.log`` and rendered line by line to the
console logger. Each source keeps its unterminated tail until the next chunk
completes it; whatever is left when a source ends is flushed, never dropped.
"""
from __future__ import annotations
import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional
from .logging_setup import CONSOLE_LOGGER, get_logger

log = get_logger("server_wrapper.mirror")

CHUNK_SIZE = 4096
PARTIAL_SUFFIX = "partial"

LineListener = Callable[[str, str], None]


class LineSplitter:
    """Partial-line buffer for one stream. ``buffer`` never holds a newline."""

    def __init__(self):
        self.buffer = b""

    def feed(self, data: bytes) -> List[str]:
        if not data:
            return []
        parts = (self.buffer + data).split(b"\n")
        self.buffer = parts.pop()
        return [_decode(p) for p in parts]

    def flush(self) -> Optional[str]:
        if not self.buffer:
            return None
        rest, self.buffer = self.buffer, b""
        return _decode(rest)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")


class LogMirror:
    def __init__(self, log_path: Path, console: Optional[logging.Logger] = None):
        self.log_path = log_path
        self.console = console or get_logger(CONSOLE_LOGGER)
        self._splitters: Dict[str, LineSplitter] = {}
        self._listeners: List[LineListener] = []
        self._lock = threading.Lock()
        self._fh: Optional[BinaryIO] = None

    # ------------------------------------------------------------------ #
    def open(self, rotate: bool = True) -> None:
        """Open the persistent log; the previous run's file is moved to ``<name>.prev``."""
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        if rotate and self.log_path.exists():
            prev = self.log_path.with_name(self.log_path.name + ".prev")
            try:
                os.replace(self.log_path, prev)
            except OSError:
                log.warning("Could not rotate %s aside, truncating instead.", self.log_path)
        self._fh = open(self.log_path, "wb")

    def close(self) -> None:
        with self._lock:
            if self._fh:
                self._fh.close()
                self._fh = None

    def add_listener(self, listener: LineListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: LineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------ #
    def feed(self, source: str, data: bytes) -> None:
        """Persist ``data`` as-is and render every line it completes."""
        with self._lock:
            if self._fh:
                self._fh.write(data)
                self._fh.flush()
            lines = self._splitter(source).feed(data)
        for line in lines:
            self.render(source, line)

    def end(self, source: str) -> None:
        """The source finished; render whatever partial line it left behind."""
        with self._lock:
            splitter = self._splitters.pop(source, None)
        rest = splitter.flush() if splitter else None
        if rest is not None:
            self.render(f"{source}|{PARTIAL_SUFFIX}", rest)

    def render(self, source: str, line: str) -> None:
        self.console.info(line, extra={"source": source})
        for listener in list(self._listeners):
            try:
                listener(source, line)
            except Exception:
                log.exception("Log listener failed on line from %s", source)

    def note(self, text: str) -> None:
        """Wrapper notice: goes to the persistent log and the console."""
        data = f"[wrapper] {text}\n".encode("utf-8")
        with self._lock:
            if self._fh:
                self._fh.write(data)
                self._fh.flush()
        self.console.info(text, extra={"source": "wrapper"})

    def _splitter(self, source: str) -> LineSplitter:
        if source not in self._splitters:
            self._splitters[source] = LineSplitter()
        return self._splitters[source]


def pump_stream(stream: BinaryIO, source: str, mirror: LogMirror) -> None:
    """Copy a child pipe into the mirror until EOF. Runs in its own thread."""
    try:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            mirror.feed(source, chunk)
    except (OSError, ValueError):
        log.exception("Error while reading %s stream", source)
    finally:
        mirror.end(source)
        try:
            stream.close()
        except OSError:
            pass


class LogTailer:
    """
    Follows an independently written log file from its current end.
    A shrinking file or a new inode means truncation or rotation: restart at 0.
    """

    def __init__(self, path: Path, mirror: LogMirror, source: str = "logfile", poll_interval: float = 0.5):
        self.path = path
        self.mirror = mirror
        self.source = source
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pos = 0
        self._inode: Optional[int] = None

    def start(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
        except OSError:
            log.warning("Cannot create tailed log %s; will wait for it to appear.", self.path)
        st = self._stat()
        if st is not None:
            self._pos, self._inode = st.st_size, st.st_ino
        self.mirror.note(f"Mirroring {self.path} to console.")
        self._thread = threading.Thread(target=self._run, name=f"tail-{self.source}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        try:
            self.poll()
        except OSError:
            log.exception("Error while tailing %s", self.path)
        self.mirror.end(self.source)

    def _run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll()
            except OSError:
                log.exception("Error while tailing %s", self.path)

    def poll(self) -> int:
        """Read whatever was appended since the last poll; returns the byte count."""
        st = self._stat()
        if st is None:
            return 0
        if st.st_ino != self._inode or st.st_size < self._pos:
            if self._inode is not None:
                log.info("%s was truncated or rotated, reading from the start.", self.path)
            self._pos, self._inode = 0, st.st_ino
        if st.st_size == self._pos:
            return 0
        with self.path.open("rb") as f:
            f.seek(self._pos)
            data = f.read(st.st_size - self._pos)
        self._pos += len(data)
        if data:
            self.mirror.feed(self.source, data)
        return len(data)

    def _stat(self):
        try:
            return self.path.stat()
        except FileNotFoundError:
            return None
