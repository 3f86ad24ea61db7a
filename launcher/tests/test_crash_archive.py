"""
Tests for crash log bundling.
"""

import tarfile
from datetime import datetime, timedelta

from server_wrapper.crash_archive import CrashArchiver


def test_disabled_does_nothing(make_settings, tmp_path):
    assert CrashArchiver(make_settings()).archive("code 1") is None
    assert not (tmp_path / "crash-archives").exists()


def test_bundles_latest_log_and_log_dir(make_settings, tmp_path):
    (tmp_path / "latest.log").write_text("last words\n")
    logs = tmp_path / "server-logs"
    logs.mkdir()
    (logs / "output.txt").write_text("more\n")
    archiver = CrashArchiver(make_settings(crash_archive=True, crash_log_dir="server-logs"))
    target = archiver.archive("signal SIGKILL", when=datetime(2026, 10, 18, 12, 30, 5))
    assert target.name == "crash-20261018-123005-000-signal-sigkill.tar.gz"
    with tarfile.open(target) as tar:
        names = tar.getnames()
    assert "latest.log" in names
    assert "server-logs/output.txt" in names


def test_archive_dir_inside_log_dir_is_not_recursed(make_settings, tmp_path):
    (tmp_path / "latest.log").write_text("x\n")
    archiver = CrashArchiver(make_settings(crash_archive=True, crash_log_dir=".", crash_archive_dir="crash-archives"))
    first = archiver.archive("code 1", when=datetime(2026, 1, 1))
    second = archiver.archive("code 1", when=datetime(2026, 1, 2))
    with tarfile.open(second) as tar:
        assert not any(n.endswith(first.name) for n in tar.getnames())


def test_keeps_newest(make_settings, tmp_path):
    archiver = CrashArchiver(make_settings(crash_archive=True, crash_archive_keep=2))
    base = datetime(2026, 10, 18)
    for i in range(4):
        archiver.archive("code 1", when=base + timedelta(minutes=i))
    kept = sorted(p.name for p in (tmp_path / "crash-archives").iterdir())
    assert kept == ["crash-20261018-000200-000-code-1.tar.gz", "crash-20261018-000300-000-code-1.tar.gz"]


def test_failure_is_not_fatal(make_settings, tmp_path):
    (tmp_path / "blocker").write_text("a file where the directory should be")
    archiver = CrashArchiver(make_settings(crash_archive=True, crash_archive_dir="blocker/sub"))
    assert archiver.archive("code 1") is None


def test_crashes_in_the_same_instant_keep_separate_bundles(make_settings, tmp_path):
    (tmp_path / "latest.log").write_text("x\n")
    archiver = CrashArchiver(make_settings(crash_archive=True))
    when = datetime(2026, 10, 18, 9, 0, 0, 250_000)
    first = archiver.archive("code 1", when=when)
    second = archiver.archive("code 1", when=when)
    assert first.name == "crash-20261018-090000-250-code-1.tar.gz"
    assert second.name == "crash-20261018-090000-250-code-1-2.tar.gz"
    assert first.exists() and second.exists()
