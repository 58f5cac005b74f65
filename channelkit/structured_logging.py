"""
Structured Logging — per-subsystem JSON logging for the onboarding service.

Every record carries its subsystem tag plus the correlation ids of the HTTP
request that produced it (set by the request middleware in main.py).
Secrets never go into log data; callers pass field names, not values.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any, Dict

# Context variables for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")
platform_var: ContextVar[str] = ContextVar("platform", default="")

ROOT_LOGGER = "channelkit"


class Subsystem(str, Enum):
    API = "api"
    REGISTRY = "registry"
    SYNC = "sync"


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "subsystem": getattr(record, "subsystem", "general"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        req_id = request_id_var.get("")
        if req_id:
            log_entry["request_id"] = req_id
        usr_id = user_id_var.get("")
        if usr_id:
            log_entry["user_id"] = usr_id
        platform = platform_var.get("")
        if platform:
            log_entry["platform"] = platform

        extra = getattr(record, "extra_data", None)
        if extra:
            log_entry["data"] = extra

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class SubsystemLogger:
    """Logger wrapper that adds subsystem context."""

    def __init__(self, subsystem: Subsystem, logger: logging.Logger):
        self._subsystem = subsystem
        self._logger = logger

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(self, level: int, msg: str, extra_data: Any = None, **kwargs):
        extra = {"subsystem": self._subsystem.value}
        if extra_data:
            extra["extra_data"] = extra_data
        self._logger.log(level, msg, extra=extra, **kwargs)

    def debug(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.DEBUG, msg, data, **kwargs)

    def info(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.INFO, msg, data, **kwargs)

    def warning(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.WARNING, msg, data, **kwargs)

    def error(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.ERROR, msg, data, **kwargs)


# ── Logger Registry ──
_loggers: Dict[str, SubsystemLogger] = {}
_structured_enabled = False


def get_subsystem_logger(subsystem: Subsystem) -> SubsystemLogger:
    """Get a structured logger for a subsystem."""
    key = subsystem.value
    if key not in _loggers:
        logger = logging.getLogger(f"{ROOT_LOGGER}.{key}")
        _loggers[key] = SubsystemLogger(subsystem, logger)
    return _loggers[key]


def enable_structured_logging(level: int = logging.INFO):
    """Enable JSON structured logging for everything under ``channelkit``."""
    global _structured_enabled
    if _structured_enabled:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    _structured_enabled = True


def configure_logging(level_name: str = "INFO", structured: bool = False):
    """Plain text or JSON logging, depending on settings."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if structured:
        enable_structured_logging(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(ROOT_LOGGER).setLevel(level)


def set_request_context(request_id: str = "", user_id: str = "", platform: str = ""):
    """Set context variables for the current request."""
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)
    if platform:
        platform_var.set(platform)


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())[:12]


# ── Convenience loggers ──
api_log = get_subsystem_logger(Subsystem.API)
registry_log = get_subsystem_logger(Subsystem.REGISTRY)
sync_log = get_subsystem_logger(Subsystem.SYNC)
