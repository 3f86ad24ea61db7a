"""
argv.py — Startup argument vector decoding and repair
-----------------------------------------------------
Turns whichever startup argument source is configured into the list of
strings handed literally to process creation. Upstream panels evaluate the
start command through a shell first, which splits values such as a server
hostname on whitespace; ``repair_argv`` glues those pieces back onto the
flag they belong to.

Known limitation: a value whose own first word looks like a flag (for
example ``-1`` or ``+foo``) is indistinguishable from the next flag and ends
the value there.
"""
from __future__ import annotations
import base64
import binascii
import json
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple
from .errors import ConfigurationError, NoStartupArgsError
from .logging_setup import get_logger
from .settings import Settings

log = get_logger("server_wrapper.argv")

FLAG_RE = re.compile(r"^[+-][A-Za-z0-9_.-]+$")

# flags that never take a value
SWITCH_FLAGS = frozenset({
    "-batchmode",
    "-nographics",
    "-nosteam",
    "-silent-crashes",
    "-insecure",
    "-noeac",
    "-server",
    "-autoupdate",
})


def is_flag(token: str) -> bool:
    return bool(FLAG_RE.match(token))


def repair_argv(tokens: Sequence[str], switch_flags: Iterable[str] = SWITCH_FLAGS) -> List[str]:
    """
    Re-join values that a shell pass split on whitespace.

    Rules:
     - element 0 (the executable) passes through unchanged
     - a flag outside ``switch_flags`` swallows the following non-flag tokens,
       joined with single spaces, up to the next flag or end of input
     - a flag at the end of input stays bare
     - empty tokens are kept: an empty first value is the value on its own,
       an empty token after a value ends the value and passes through
    """
    switches = set(switch_flags)
    out: List[str] = []
    if not tokens:
        return out
    out.append(tokens[0])
    i, n = 1, len(tokens)
    while i < n:
        tok = tokens[i]
        i += 1
        out.append(tok)
        if not is_flag(tok) or tok in switches:
            continue
        if i < n and tokens[i] == "":
            out.append("")
            i += 1
            continue
        value: List[str] = []
        while i < n and tokens[i] != "" and not is_flag(tokens[i]):
            value.append(tokens[i])
            i += 1
        if value:
            out.append(" ".join(value))
    return out


# ---------------------------------------------------------------------- #
def _decode_file(path: Path) -> List[str]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise NoStartupArgsError("startup argument file does not exist", source=f"file:{path}")
    except OSError as e:
        raise ConfigurationError(f"cannot read startup argument file: {e}", source=f"file:{path}")
    text = raw.decode("utf-8", errors="surrogateescape")
    sep = "\0" if "\0" in text else "\n"
    if text.endswith(sep):
        text = text[:-1]
    if sep == "\n":
        text = text.replace("\r\n", "\n")
    if not text:
        return []
    return text.split(sep)


def _decode_json(payload: str, source: str) -> List[str]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"startup arguments are not valid JSON: {e}", source=source)
    if not isinstance(data, list):
        raise ConfigurationError("startup arguments must be a JSON array", source=source)
    tokens = []
    for v in data:
        if isinstance(v, str):
            tokens.append(v)
        elif isinstance(v, (int, float)) and not isinstance(v, bool):
            tokens.append(str(v))
        else:
            raise ConfigurationError(f"startup argument {v!r} is not a string", source=source)
    return tokens


def _decode_b64(payload: str) -> List[str]:
    try:
        text = base64.b64decode(payload.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ConfigurationError(f"startup arguments are not valid base64: {e}", source="base64")
    return _decode_json(text, "base64")


def _decode_tokens(tokens: Sequence[str]) -> List[str]:
    # a legacy list is space-joined upstream, so treat it as one string again
    return " ".join(tokens).split()


def select_source(settings: Settings, cli_tokens: Sequence[str] = ()) -> Tuple[str, Optional[object]]:
    """Pick the one argument source to honor: file, json, base64, legacy, cli."""
    if settings.startup_args_file is not None:
        return "file", settings.resolve(settings.startup_args_file)
    if settings.startup_args_json.strip():
        return "json", settings.startup_args_json
    if settings.startup_args_b64.strip():
        return "base64", settings.startup_args_b64
    if settings.startup.strip():
        return "legacy", [settings.startup]
    if cli_tokens:
        return "cli", list(cli_tokens)
    return "none", None


def decode_argv(settings: Settings, cli_tokens: Sequence[str] = ()) -> List[str]:
    """Build the repaired argument vector; raises ConfigurationError when no usable source exists."""
    kind, payload = select_source(settings, cli_tokens)
    if kind == "none":
        raise NoStartupArgsError("no startup arguments supplied", source="none")
    if kind == "file":
        tokens = _decode_file(payload)
    elif kind == "json":
        tokens = _decode_json(payload, "json")
    elif kind == "base64":
        tokens = _decode_b64(payload)
    else:
        tokens = _decode_tokens(payload)

    if not tokens or not tokens[0].strip():
        raise NoStartupArgsError("startup argument source is empty", source=kind)

    argv = repair_argv(tokens, SWITCH_FLAGS | set(settings.switch_flags))
    if len(argv) != len(tokens):
        log.info("Repaired startup arguments from %d to %d tokens.", len(tokens), len(argv))
    log.debug("Startup argument vector (%s): %r", kind, argv)
    return argv


def find_flag_value(argv: Sequence[str], flag: str) -> Optional[str]:
    """Return the value token following ``flag`` (also accepts ``flag=value``)."""
    for i, tok in enumerate(argv[1:], start=1):
        if tok == flag:
            if i + 1 < len(argv) and not is_flag(argv[i + 1]):
                return argv[i + 1]
            return None
        if tok.startswith(flag + "="):
            return tok[len(flag) + 1:]
    return None
