import logging
import pytest
from server_wrapper.log_mirror import LogMirror
from server_wrapper.settings import Settings


@pytest.fixture
def make_settings(tmp_path):
    """Settings rooted in a temp work dir; keyword overrides use field names."""
    def _make(**overrides):
        values = {"work_dir": tmp_path, "shutdown_stdin_commands": [], "shutdown_timeout": 5.0,
                  "shutdown_grace": 0.5}
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def mirror(tmp_path):
    m = LogMirror(tmp_path / "latest.log", console=logging.getLogger("test.console"))
    m.open()
    yield m
    m.close()


@pytest.fixture
def rendered(mirror):
    lines = []
    mirror.add_listener(lambda source, line: lines.append((source, line)))
    return lines
