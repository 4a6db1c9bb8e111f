"""
Structured Logging - Monitoring Layer

Log records carry the sender tag of the client session being served, so
relay and TCP read-loop messages can be traced back to one connection.
Output is either one JSON object per line or a single-line text format.

@.architecture
Incoming: app.py, main.py, All modules via get_logger() --- {str log_level, str format_type, str sender tag}
Processing: configure_logging(), JSONFormatter.format(), ContextFilter.filter(), set_sender_context() --- {4 jobs: context_injection, formatting, log_configuration, structured_logging}
Outgoing: sys.stdout, All modules --- {StructuredLogger instances, JSON or text log lines}
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Sender tag of the client session currently being served
sender_ctx: ContextVar[Optional[str]] = ContextVar('sender', default=None)

TEXT_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-24s | [%(sender)s] | %(message)s'
TEXT_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that only matter when something is wrong
QUIET_LOGGERS = ('httpx', 'httpcore', 'uvicorn.access', 'asyncio')


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: timestamp, level, logger, message, location, plus sender when a
    session is being served, extra for keyword fields and exception when
    exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }

        sender = getattr(record, 'sender', None) or sender_ctx.get()
        if sender and sender != '-':
            entry['sender'] = sender

        fields = getattr(record, 'extra_fields', None)
        if fields:
            entry['extra'] = fields

        if record.exc_info:
            exc_type, exc, tb = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc),
                'traceback': traceback.format_exception(exc_type, exc, tb),
            }

        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Stamps each record with the current sender tag ('-' outside a session)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.sender = sender_ctx.get() or '-'
        return True


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger.

    Keyword arguments other than exc_info are attached to the record as
    extra fields:

        logger.info("deployed", services=2, size=1024)
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, message: str, fields: Dict[str, Any]) -> None:
        exc_info = fields.pop('exc_info', None)
        extra = {'extra_fields': fields} if fields else None
        self._logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)


def configure_logging(
    level: str = "INFO",
    format_type: str = "json",
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Root log level name
        format_type: "json" or "text"
        module_levels: Per-logger level names, e.g. {"relay.tcp": "DEBUG"}
    """
    handler = logging.StreamHandler(sys.stdout)
    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, name_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(getattr(logging, name_level.upper(), logging.INFO))


def get_logger(name: str) -> StructuredLogger:
    """Logger for a module; pass __name__."""
    return StructuredLogger(name)


def set_sender_context(sender: Optional[str]) -> None:
    """Attribute log records emitted by the current task to a session."""
    sender_ctx.set(sender)


def clear_sender_context() -> None:
    sender_ctx.set(None)


def get_sender() -> Optional[str]:
    return sender_ctx.get()


# Presets selected by Settings.environment
LOGGING_PRESETS: Dict[str, Dict[str, Any]] = {
    'development': {'level': 'INFO', 'format_type': 'text'},
    'production': {'level': 'INFO', 'format_type': 'json'},
    'testing': {'level': 'WARNING', 'format_type': 'text'},
}


def configure_from_preset(preset: str = 'development', **overrides: Any) -> None:
    """
    Configure logging from a preset.

    Args:
        preset: 'development', 'production' or 'testing'
        **overrides: Values replacing the preset's (level, format_type, module_levels)

    Raises:
        ValueError: If the preset is unknown
    """
    if preset not in LOGGING_PRESETS:
        raise ValueError(f"Unknown preset: {preset}. Available: {list(LOGGING_PRESETS.keys())}")

    config = dict(LOGGING_PRESETS[preset])
    config.update({k: v for k, v in overrides.items() if v is not None})
    configure_logging(**config)
