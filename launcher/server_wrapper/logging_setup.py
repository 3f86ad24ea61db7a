from __future__ import annotations
import json
import logging
from logging.handlers import RotatingFileHandler
from .settings import Settings

CONSOLE_LOGGER = "server_wrapper.console"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
WRAPPER_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# mirrored server output: the source tag replaces level and logger name
CONSOLE_FORMAT = "%(asctime)s [%(source)s] %(message)s"

WRAPPER_LOG_BYTES = 5_000_000
WRAPPER_LOG_BACKUPS = 3


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; mirrored lines also carry their source."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        source = getattr(record, "source", None)
        if source:
            entry["source"] = source
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _formatter(settings: Settings, plain: str) -> logging.Formatter:
    if settings.log_json:
        return _JsonFormatter()
    return logging.Formatter(fmt=plain, datefmt=DATE_FORMAT)


def _to_stderr(logger: logging.Logger, formatter: logging.Formatter) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    wrapper_fmt = _formatter(settings, WRAPPER_FORMAT)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    _to_stderr(root, wrapper_fmt)

    # the wrapper's own diagnostics also go to a rotating file in the work dir
    path = settings.wrapper_log_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=WRAPPER_LOG_BYTES,
                                           backupCount=WRAPPER_LOG_BACKUPS, encoding="utf-8")
    except OSError as e:
        root.warning("Wrapper log %s unavailable (%s), logging to the console only.", path, e)
    else:
        file_handler.setFormatter(wrapper_fmt)
        file_handler.setLevel(level)
        logging.getLogger("server_wrapper").addHandler(file_handler)

    console = logging.getLogger(CONSOLE_LOGGER)
    console.handlers.clear()
    console.setLevel(logging.INFO)
    console.propagate = False
    _to_stderr(console, _formatter(settings, CONSOLE_FORMAT))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
