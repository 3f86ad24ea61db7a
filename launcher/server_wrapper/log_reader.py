from __future__ import annotations
import base64
import binascii
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from .settings import Settings

READ_LIMIT = 256_000


@dataclass
class LogChunk:
    entries: List[str]
    cursor: str
    truncated: bool


def known_logs(settings: Settings, tail_path: Optional[Path] = None) -> Dict[str, Path]:
    """Log ids exposed over the API: the mirror log, its predecessor, the wrapper log, the tailed file."""
    latest = settings.latest_log_path
    logs = {
        "latest": latest,
        "previous": latest.with_name(latest.name + ".prev"),
        "wrapper": settings.wrapper_log_path,
    }
    if tail_path is not None:
        logs["tailed"] = tail_path
    return logs


def list_logs(logs: Dict[str, Path]) -> List[dict]:
    listing = []
    for log_id, path in logs.items():
        try:
            st = path.stat()
        except FileNotFoundError:
            continue
        listing.append({"id": log_id, "path": str(path), "size_bytes": st.st_size, "modified": int(st.st_mtime)})
    return listing


def make_cursor(pos: int, inode: int) -> str:
    raw = json.dumps({"pos": pos, "ino": inode}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def parse_cursor(cursor: str) -> Tuple[int, Optional[int]]:
    """(position, inode) of a cursor; garbage reads as the start of an unknown file."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8"))
        return int(data.get("pos", 0)), data.get("ino")
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError, AttributeError):
        return 0, None


def _read_span(path: Path, start: int, limit: int) -> bytes:
    with path.open("rb") as f:
        f.seek(start)
        return f.read(limit)


def read_tail(path: Path, tail_lines: int = 200, max_bytes: int = READ_LIMIT) -> LogChunk:
    """The last ``tail_lines`` lines (0 = everything within ``max_bytes``)."""
    st = path.stat()
    start = max(0, st.st_size - max_bytes)
    data = _read_span(path, start, st.st_size - start)
    lines = data.decode("utf-8", errors="replace").splitlines()
    if start and lines:
        lines.pop(0)  # cut by the byte limit
    shown = lines[-tail_lines:] if tail_lines > 0 else lines
    return LogChunk(entries=shown, cursor=make_cursor(start + len(data), st.st_ino),
                    truncated=len(shown) < len(lines))


def read_from_cursor(path: Path, cursor: str, max_lines: int = 200, max_bytes: int = READ_LIMIT) -> LogChunk:
    """Complete lines appended since ``cursor``. A rotated (new inode) or shrunk file restarts at 0."""
    st = path.stat()
    pos, inode = parse_cursor(cursor)
    if inode != st.st_ino or pos > st.st_size:
        pos = 0

    data = _read_span(path, pos, max_bytes)
    # an unterminated last line stays behind the cursor until it is complete
    complete = data[:data.rfind(b"\n") + 1]
    pending = complete.split(b"\n")[:-1]
    taken = pending[:max_lines]
    consumed = sum(len(raw) + 1 for raw in taken)
    return LogChunk(
        entries=[raw.decode("utf-8", errors="replace").rstrip("\r") for raw in taken],
        cursor=make_cursor(pos + consumed, st.st_ino),
        truncated=len(pending) > len(taken),
    )
