"""
Tests for startup argument decoding and repair.
"""

import base64
import json
import pytest

from server_wrapper.argv import decode_argv, find_flag_value, is_flag, repair_argv, select_source
from server_wrapper.errors import ConfigurationError, NoStartupArgsError, EXIT_NO_STARTUP_ARGS


class TestRepair:
    def test_rejoins_split_hostname(self):
        tokens = ["./RustDedicated", "-batchmode", "+server.hostname", "My", "Cool", "Server",
                  "+server.port", "28015"]
        assert repair_argv(tokens) == [
            "./RustDedicated", "-batchmode", "+server.hostname", "My Cool Server", "+server.port", "28015",
        ]

    def test_executable_passes_through(self):
        assert repair_argv(["/opt/game server", "-port", "1"]) == ["/opt/game server", "-port", "1"]

    def test_switch_flag_does_not_swallow(self):
        assert repair_argv(["exe", "-nographics", "stray", "word"]) == ["exe", "-nographics", "stray", "word"]

    def test_custom_switch_set(self):
        assert repair_argv(["exe", "-x", "a", "b"], switch_flags={"-x"}) == ["exe", "-x", "a", "b"]

    def test_trailing_flag_stays_bare(self):
        assert repair_argv(["exe", "+server.level", "Procedural", "Map", "-logfile"]) == [
            "exe", "+server.level", "Procedural Map", "-logfile",
        ]

    def test_empty_tokens_are_kept(self):
        assert repair_argv(["exe", "+server.description", "", "+server.url", "x"]) == [
            "exe", "+server.description", "", "+server.url", "x",
        ]
        assert repair_argv(["exe", "-a", "x", "", "y"]) == ["exe", "-a", "x", "", "y"]

    def test_flag_shaped_value_ends_value(self):
        # documented limitation: "-1" looks like a flag
        assert repair_argv(["exe", "+server.seed", "-1"]) == ["exe", "+server.seed", "-1"]

    @pytest.mark.parametrize("tokens", [
        ["exe", "+server.hostname", "A", "B", "-batchmode", "+rcon.web", "1"],
        ["exe", "-a", "", "b", "c", "-d"],
        ["exe", "-nographics", "x", "y", "+a", "-1", "+b", "two words"],
        ["exe"],
    ])
    def test_repair_is_idempotent(self, tokens):
        once = repair_argv(tokens)
        assert repair_argv(once) == once

    def test_is_flag(self):
        assert is_flag("-batchmode")
        assert is_flag("+server.hostname")
        assert not is_flag("-")
        assert not is_flag("My Server")
        assert not is_flag("")


class TestDecode:
    def test_no_source(self, make_settings):
        with pytest.raises(NoStartupArgsError) as exc:
            decode_argv(make_settings())
        assert exc.value.exit_code == EXIT_NO_STARTUP_ARGS

    def test_empty_file_means_no_args(self, make_settings, tmp_path):
        (tmp_path / "args").write_bytes(b"")
        with pytest.raises(NoStartupArgsError):
            decode_argv(make_settings(startup_args_file=tmp_path / "args"))

    def test_missing_file_means_no_args(self, make_settings, tmp_path):
        with pytest.raises(NoStartupArgsError) as exc:
            decode_argv(make_settings(startup_args_file=tmp_path / "nope"))
        assert "file:" in str(exc.value)

    def test_nul_delimited_file(self, make_settings, tmp_path):
        (tmp_path / "args").write_bytes(b"./RustDedicated\0+server.hostname\0My Server\0+x\0\0")
        argv = decode_argv(make_settings(startup_args_file="args"))
        assert argv == ["./RustDedicated", "+server.hostname", "My Server", "+x", ""]

    def test_newline_delimited_file(self, make_settings, tmp_path):
        (tmp_path / "args").write_text("./srv\n-port\n2302\n")
        assert decode_argv(make_settings(startup_args_file=tmp_path / "args")) == ["./srv", "-port", "2302"]

    def test_inline_json(self, make_settings):
        argv = decode_argv(make_settings(startup_args_json=json.dumps(["./srv", "+name", "A", "B", "-port", 5])))
        assert argv == ["./srv", "+name", "A B", "-port", "5"]

    def test_bad_json_names_source(self, make_settings):
        with pytest.raises(ConfigurationError) as exc:
            decode_argv(make_settings(startup_args_json="[oops"))
        assert exc.value.source == "json"

    def test_json_must_be_array(self, make_settings):
        with pytest.raises(ConfigurationError):
            decode_argv(make_settings(startup_args_json='{"a": 1}'))

    def test_base64_json(self, make_settings):
        payload = base64.b64encode(json.dumps(["./srv", "-a"]).encode()).decode()
        assert decode_argv(make_settings(startup_args_b64=payload)) == ["./srv", "-a"]

    def test_bad_base64(self, make_settings):
        with pytest.raises(ConfigurationError) as exc:
            decode_argv(make_settings(startup_args_b64="***"))
        assert exc.value.source == "base64"

    def test_legacy_string(self, make_settings):
        argv = decode_argv(make_settings(startup="./RustDedicated -batchmode +server.hostname My  Server"))
        assert argv == ["./RustDedicated", "-batchmode", "+server.hostname", "My Server"]

    def test_cli_tokens_are_last_resort(self, make_settings):
        assert decode_argv(make_settings(), ["./srv +server.hostname", "A B"]) == ["./srv", "+server.hostname", "A B"]

    def test_precedence(self, make_settings, tmp_path):
        (tmp_path / "args").write_text("from-file\n")
        settings = make_settings(startup_args_file="args", startup_args_json='["from-json"]', startup="legacy")
        assert select_source(settings)[0] == "file"
        assert decode_argv(settings) == ["from-file"]
        settings = make_settings(startup_args_json='["from-json"]', startup="legacy")
        assert decode_argv(settings) == ["from-json"]

    def test_deterministic(self, make_settings):
        settings = make_settings(startup="./srv +a b c -d +e f")
        assert decode_argv(settings) == decode_argv(settings)


def test_find_flag_value():
    argv = ["./srv", "-logfile", "logs/server.log", "+x", "1"]
    assert find_flag_value(argv, "-logfile") == "logs/server.log"
    assert find_flag_value(["./srv", "-logfile=out.txt"], "-logfile") == "out.txt"
    assert find_flag_value(["./srv", "-logfile", "+x"], "-logfile") is None
    assert find_flag_value(["./srv"], "-logfile") is None
