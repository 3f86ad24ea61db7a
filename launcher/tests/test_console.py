"""
Tests for console line routing (stdin vs RCON vs local shell).
"""

import io
from unittest.mock import Mock
import pytest

from server_wrapper.console import ConsoleBridge, ROUTE_CONTROL, ROUTE_REMOTE, ROUTE_SHELL, ROUTE_STDIN
from server_wrapper.errors import ConfigurationError, RemoteProtocolError


@pytest.fixture
def stdin_lines():
    return []


@pytest.fixture
def remote():
    client = Mock()
    client.send.return_value = "remote says hi"
    return client


def _bridge(settings, mirror, remote, stdin_lines):
    def target(line):
        stdin_lines.append(line)
        return True
    return ConsoleBridge(settings, mirror, remote, stdin_target=target)


class TestRouting:
    def test_auto_without_credentials_goes_to_stdin(self, make_settings, mirror, stdin_lines):
        bridge = _bridge(make_settings(), mirror, None, stdin_lines)
        result = bridge.handle_line("say hello\n")
        assert result.route == ROUTE_STDIN
        assert stdin_lines == ["say hello"]

    def test_auto_with_credentials_goes_remote(self, make_settings, mirror, remote, stdin_lines, rendered):
        bridge = _bridge(make_settings(rcon_password="pw"), mirror, remote, stdin_lines)
        result = bridge.handle_line("status")
        assert result.route == ROUTE_REMOTE
        assert result.response == "remote says hi"
        remote.send.assert_called_once_with("status")
        assert ("rcon", "remote says hi") in rendered
        assert stdin_lines == []

    def test_explicit_prefixes(self, make_settings, mirror, remote, stdin_lines):
        bridge = _bridge(make_settings(console_mode="stdin"), mirror, remote, stdin_lines)
        assert bridge.handle_line("> quit").route == ROUTE_STDIN
        assert bridge.handle_line("@ save").route == ROUTE_REMOTE
        assert bridge.handle_line("plain").route == ROUTE_STDIN
        assert stdin_lines == ["quit", "plain"]
        remote.send.assert_called_once_with("save")

    def test_remote_prefix_without_credentials_falls_back(self, make_settings, mirror, stdin_lines, tmp_path):
        bridge = _bridge(make_settings(), mirror, None, stdin_lines)
        result = bridge.handle_line("@kick bob")
        assert result.route == ROUTE_STDIN
        assert result.fallback is True
        assert stdin_lines == ["kick bob"]
        assert "sending via stdin instead" in (tmp_path / "latest.log").read_text()

    def test_remote_failure_is_not_fatal(self, make_settings, mirror, remote, stdin_lines):
        remote.send.side_effect = RemoteProtocolError("down")
        bridge = _bridge(make_settings(rcon_password="pw"), mirror, remote, stdin_lines)
        result = bridge.handle_line("status")
        assert result.ok is False
        assert result.route == ROUTE_REMOTE

    def test_shell_escape(self, make_settings, mirror, stdin_lines, rendered):
        bridge = _bridge(make_settings(), mirror, None, stdin_lines)
        result = bridge.handle_line("!echo from-shell")
        assert result.route == ROUTE_SHELL
        assert result.ok
        assert ("shell", "from-shell") in rendered
        assert stdin_lines == []

    def test_no_child_attached(self, make_settings, mirror):
        bridge = ConsoleBridge(make_settings(), mirror, None)
        assert bridge.handle_line("status").ok is False


class TestModeSwitch:
    def test_switch_and_query(self, make_settings, mirror, remote, stdin_lines):
        bridge = _bridge(make_settings(rcon_password="pw"), mirror, remote, stdin_lines)
        assert bridge.default_route() == ROUTE_REMOTE
        result = bridge.handle_line("/mode stdin")
        assert result.route == ROUTE_CONTROL
        assert bridge.mode == "stdin"
        bridge.handle_line("status")
        assert stdin_lines == ["status"]
        assert bridge.handle_line("/mode").response == "stdin"

    def test_unknown_mode_rejected(self, make_settings, mirror, stdin_lines):
        bridge = _bridge(make_settings(), mirror, None, stdin_lines)
        assert bridge.handle_line("/mode banana").ok is False
        assert bridge.handle_line("/mode remote").ok is False
        assert bridge.mode == "auto"

    def test_mode_prefix_needs_word_boundary(self, make_settings, mirror, stdin_lines):
        bridge = _bridge(make_settings(), mirror, None, stdin_lines)
        assert bridge.handle_line("/modes").route == ROUTE_STDIN

    def test_remote_default_requires_credentials(self, make_settings, mirror):
        with pytest.raises(ConfigurationError):
            ConsoleBridge(make_settings(console_mode="remote"), mirror, None)


def test_reader_thread_routes_lines(make_settings, mirror, stdin_lines):
    bridge = _bridge(make_settings(), mirror, None, stdin_lines)
    bridge.start(io.StringIO("first\n\nsecond\n"))
    bridge._reader.join(2)
    assert stdin_lines == ["first", "second"]


def test_unsolicited_remote_messages_are_rendered(make_settings, mirror, remote, rendered):
    ConsoleBridge(make_settings(rcon_password="pw"), mirror, remote)
    handler = remote.on_message.call_args[0][0]
    handler("line one\nline two\n")
    assert rendered == [("rcon", "line one"), ("rcon", "line two")]
