"""
apkresign Observability

Structured log context for the signer and identity provider.

Package modules log through `context_logger`, which stamps every record
with the signing context it was created with (key alias, keystore path,
signature file name). Nothing is printed until an application calls
`setup_logging`; the package logger otherwise only carries a NullHandler.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, TextIO, Tuple

from .core.config import LOG_LEVELS, Config
from .core.exceptions import ApkResignError

PACKAGE_LOGGER = "apkresign"

# Record attributes rendered by both formatters, in output order
CONTEXT_FIELDS = ("alias", "keystore", "signature_name", "entry_path", "stage")

_INSTALLED = "_apkresign_installed"


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its bound context into each call's `extra`."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def context_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger whose records carry `context` as attributes.

    Example:
        log = context_logger(__name__, alias="key0")
        log.info("Signed", extra={"entry_path": "classes.dex"})
    """
    return ContextAdapter(logging.getLogger(name), context)


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Signing context fields present on a record."""
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Failures raised as `ApkResignError` are rendered through `to_dict()` so
    the error code and details stay machine readable.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry: Dict[str, Any] = {
            "time": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))

        if record.exc_info:
            error = record.exc_info[1]
            if isinstance(error, ApkResignError):
                entry["error"] = error.to_dict()
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text with the signing context appended as key=value pairs."""

    def __init__(self):
        super().__init__(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{line} [{pairs}]"


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Send apkresign log records to a stream and optionally a file.

    Only the `apkresign` logger is configured, and calling this again
    replaces the handlers a previous call installed. The root logger and
    handlers added by the application are left alone.

    Args:
        level: Level name for the package logger.
        json_format: Emit JSON lines instead of plain text.
        log_file: Also append records to this file.
        stream: Console stream, stderr by default.

    Returns:
        The configured package logger.

    Raises:
        ValueError: If `level` is not a logging level name.
    """
    if level.upper() not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level.upper())

    for handler in list(package_logger.handlers):
        if getattr(handler, _INSTALLED, False):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = JSONFormatter() if json_format else ContextFormatter()
    handlers = [logging.StreamHandler(stream)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        setattr(handler, _INSTALLED, True)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    return package_logger


def setup_logging_from_config(
    config: Config, log_file: Optional[str] = None, stream: Optional[TextIO] = None
) -> logging.Logger:
    """Apply the `log_level`/`log_json` settings of a Config."""
    return setup_logging(config.log_level, config.log_json, log_file, stream)
