"""
Logging setup for the store

One console handler on the root logger, JSON in production and text
elsewhere. Every record carries the app, version and environment; purchase
and event ids travel as `extra` fields through `get_logger(...).bind()`.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from core.config import Settings, get_settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# Quieter defaults for libraries that log every request
THIRD_PARTY_LEVELS = {
    "uvicorn": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "stripe": logging.WARNING,
}


class StoreContextFilter(logging.Filter):
    """Stamps app, version and environment on each record"""

    def __init__(self, settings: Settings):
        super().__init__()
        self.app = settings.app_name
        self.version = settings.app_version
        self.environment = settings.environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.app = self.app
        record.version = self.version
        record.environment = self.environment
        return True


class StoreJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        if record.exc_info and "exc_info" not in log_record:
            log_record["exception"] = self.formatException(record.exc_info)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return StoreJsonFormatter(JSON_FORMAT)
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(settings: Optional[Settings] = None, stream: Optional[IO[str]] = None) -> logging.Handler:
    """
    Install the store handler on the root logger.

    Calling it again replaces the handler it installed before; handlers
    added by anyone else are left alone.
    """
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))

    for handler in root_logger.handlers[:]:
        if getattr(handler, "_store_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler._store_handler = True
    handler.setFormatter(build_formatter(settings.log_format))
    handler.addFilter(StoreContextFilter(settings))
    root_logger.addHandler(handler)

    for name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.database_echo else logging.WARNING)

    return handler


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound context is merged under each call's own `extra`"""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context) -> "LoggerAdapter":
        return LoggerAdapter(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Logger for a module, optionally with bound context

    Example:
        log = get_logger(__name__).bind(event_id="evt_123")
        log.info("Event processed")
    """
    return LoggerAdapter(logging.getLogger(name), context)
