from __future__ import annotations
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Optional
from .logging_setup import get_logger
from .settings import Settings

log = get_logger("server_wrapper.crash")

ARCHIVE_GLOB = "crash-*.tar.gz"


class CrashArchiver:
    """Bundles the persistent log (and an optional log directory) after each crash."""

    def __init__(self, settings: Settings):
        self.enabled = settings.crash_archive
        self.dest = settings.crash_archive_path
        self.latest_log = settings.latest_log_path
        self.log_dir = settings.resolve(settings.crash_log_dir) if settings.crash_log_dir else None
        self.keep = settings.crash_archive_keep

    def archive(self, exit_status: str, when: Optional[datetime] = None) -> Optional[Path]:
        if not self.enabled:
            return None
        when = when or datetime.now()
        stem = f"crash-{when:%Y%m%d-%H%M%S}-{when.microsecond // 1000:03d}-{_slug(exit_status)}"
        target = self.dest / f"{stem}.tar.gz"
        try:
            self.dest.mkdir(parents=True, exist_ok=True)
            n = 1
            while target.exists():
                n += 1
                target = self.dest / f"{stem}-{n}.tar.gz"
            with tarfile.open(target, "w:gz") as tar:
                if self.latest_log.exists():
                    tar.add(self.latest_log, arcname=self.latest_log.name)
                if self.log_dir and self.log_dir.is_dir():
                    tar.add(self.log_dir, arcname=self.log_dir.name,
                            filter=lambda info: None if _is_crash_archive(info.name) else info)
        except (OSError, tarfile.TarError) as e:
            log.error("Could not write crash archive %s: %s", target, e)
            return None
        log.info("Crash logs archived to %s", target)
        self._prune()
        return target

    def _prune(self) -> None:
        if self.keep <= 0:
            return
        archives = sorted(self.dest.glob(ARCHIVE_GLOB), key=lambda p: (p.stat().st_mtime_ns, p.name))
        for old in archives[:-self.keep]:
            try:
                old.unlink()
                log.debug("Removed old crash archive %s", old)
            except OSError as e:
                log.warning("Could not remove old crash archive %s: %s", old, e)


def _slug(status: str) -> str:
    return "".join(c if c.isalnum() else "-" for c in status.lower()).strip("-") or "unknown"


def _is_crash_archive(arcname: str) -> bool:
    return arcname.endswith(".tar.gz") and Path(arcname).name.startswith("crash-")
