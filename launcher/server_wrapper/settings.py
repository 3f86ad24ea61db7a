from __future__ import annotations
import json
from pathlib import Path
from typing import Annotated, List, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

CommandList = Annotated[List[str], NoDecode]


def _split_commands(value):
    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        if raw.startswith("["):
            return [str(v) for v in json.loads(raw)]
        return [part.strip() for part in raw.split(";") if part.strip()]
    return list(value)


class Settings(BaseSettings):
    work_dir: Path = Field(default=Path("/home/container"), alias="WORK_DIR")

    # startup argument sources, honored in this order
    startup_args_file: Optional[Path] = Field(default=None, alias="STARTUP_ARGS_FILE")
    startup_args_json: str = Field(default="", alias="STARTUP_ARGS_JSON")
    startup_args_b64: str = Field(default="", alias="STARTUP_ARGS_B64")
    startup: str = Field(default="", alias="STARTUP")
    switch_flags: CommandList = Field(default_factory=list, alias="SWITCH_FLAGS")

    latest_log: Path = Field(default=Path("latest.log"), alias="LATEST_LOG")
    tail_log_file: Optional[Path] = Field(default=None, alias="TAIL_LOG_FILE")
    tail_from_logfile_arg: bool = Field(default=True, alias="TAIL_FROM_LOGFILE_ARG")
    tail_poll_interval: float = Field(default=0.5, gt=0, alias="TAIL_POLL_INTERVAL")

    restart_enabled: bool = Field(default=False, alias="RESTART_ENABLED")
    restart_window: float = Field(default=300.0, gt=0, alias="RESTART_WINDOW")
    restart_max: int = Field(default=3, ge=0, alias="RESTART_MAX")
    restart_backoff: float = Field(default=5.0, ge=0, alias="RESTART_BACKOFF")

    stall_detection: bool = Field(default=False, alias="STALL_DETECTION")
    stall_indicator: Literal["cpu", "log", "probe"] = Field(default="cpu", alias="STALL_INDICATOR")
    stall_timeout: float = Field(default=300.0, gt=0, alias="STALL_TIMEOUT")
    stall_poll_interval: float = Field(default=10.0, gt=0, alias="STALL_POLL_INTERVAL")
    stall_grace: float = Field(default=30.0, ge=0, alias="STALL_GRACE")
    stall_ready_marker: str = Field(default="Server startup complete", alias="STALL_READY_MARKER")
    stall_probe_command: str = Field(default="serverinfo", alias="STALL_PROBE_COMMAND")

    rcon_protocol: Literal["binary", "websocket"] = Field(default="websocket", alias="RCON_PROTOCOL")
    rcon_host: str = Field(default="127.0.0.1", alias="RCON_HOST")
    rcon_port: int = Field(default=28016, alias="RCON_PORT")
    rcon_password: str = Field(default="", alias="RCON_PASS")
    rcon_timeout: float = Field(default=5.0, gt=0, alias="RCON_TIMEOUT")

    console_mode: Literal["stdin", "remote", "auto"] = Field(default="auto", alias="CONSOLE_MODE")
    console_shell_prefix: str = Field(default="!", alias="CONSOLE_SHELL_PREFIX")
    console_stdin_prefix: str = Field(default=">", alias="CONSOLE_STDIN_PREFIX")
    console_remote_prefix: str = Field(default="@", alias="CONSOLE_REMOTE_PREFIX")
    console_mode_command: str = Field(default="/mode", alias="CONSOLE_MODE_COMMAND")

    shutdown_rcon_commands: CommandList = Field(default_factory=list, alias="SHUTDOWN_RCON_COMMANDS")
    shutdown_local_commands: CommandList = Field(default_factory=list, alias="SHUTDOWN_LOCAL_COMMANDS")
    shutdown_stdin_commands: CommandList = Field(default_factory=lambda: ["quit"], alias="SHUTDOWN_STDIN_COMMANDS")
    shutdown_timeout: float = Field(default=30.0, gt=0, alias="SHUTDOWN_TIMEOUT")
    shutdown_grace: float = Field(default=5.0, ge=0, alias="SHUTDOWN_GRACE")

    crash_archive: bool = Field(default=False, alias="CRASH_ARCHIVE")
    crash_archive_dir: Path = Field(default=Path("crash-archives"), alias="CRASH_ARCHIVE_DIR")
    crash_log_dir: Optional[Path] = Field(default=None, alias="CRASH_LOG_DIR")
    crash_archive_keep: int = Field(default=10, ge=0, alias="CRASH_ARCHIVE_KEEP")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    wrapper_log: Path = Field(default=Path("logs/wrapper.log"), alias="WRAPPER_LOG")

    api_enabled: bool = Field(default=False, alias="API_ENABLED")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    model_config = SettingsConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    @field_validator(
        "switch_flags", "shutdown_rcon_commands", "shutdown_local_commands", "shutdown_stdin_commands",
        mode="before",
    )
    @classmethod
    def _parse_command_list(cls, value):
        return _split_commands(value)

    @field_validator("startup_args_file", "tail_log_file", "crash_log_dir", mode="before")
    @classmethod
    def _empty_path_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # ------------------------------------------------------------------ #
    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against the working directory."""
        return path if path.is_absolute() else self.work_dir / path

    @property
    def latest_log_path(self) -> Path:
        return self.resolve(self.latest_log)

    @property
    def wrapper_log_path(self) -> Path:
        return self.resolve(self.wrapper_log)

    @property
    def crash_archive_path(self) -> Path:
        return self.resolve(self.crash_archive_dir)

    @property
    def remote_configured(self) -> bool:
        return bool(self.rcon_password)
