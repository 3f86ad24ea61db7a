"""
Exception taxonomy and process exit codes of the wrapper.

Only configuration and spawn failures end the wrapper; everything else is
logged and recovered where it happens.
"""
from __future__ import annotations
from typing import Optional

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_NO_STARTUP_ARGS = 12
EXIT_BINARY_MISSING = 13
EXIT_BRIDGE_MISSING = 14


class WrapperError(Exception):
    exit_code = 1


class ConfigurationError(WrapperError):
    exit_code = EXIT_CONFIG

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{message} (source: {source})"
        super().__init__(message)


class NoStartupArgsError(ConfigurationError):
    exit_code = EXIT_NO_STARTUP_ARGS


class SpawnError(WrapperError):
    exit_code = EXIT_BINARY_MISSING

    def __init__(self, message: str, executable: str):
        self.executable = executable
        super().__init__(message)


class BridgeUnavailableError(WrapperError):
    exit_code = EXIT_BRIDGE_MISSING


class RemoteProtocolError(WrapperError):
    """Connect, auth or round-trip failure on the remote admin channel."""


class AuthenticationError(RemoteProtocolError):
    pass


class StallDetected(WrapperError):
    """Raised inside the watchdog when the idle threshold is crossed."""

    def __init__(self, pid: int, idle_for: float):
        self.pid = pid
        self.idle_for = idle_for
        super().__init__(f"pid {pid} made no progress for {idle_for:.1f}s")


class ShutdownCommandFailure(WrapperError):
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"shutdown command {command!r} failed: {reason}")
