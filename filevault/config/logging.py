"""
Logging configuration for the API and the ingestion worker.

Outside development every record is rendered as a JSON line, so one upload
can be followed from the HTTP request through the worker by ``task_id`` and
``record_id``. Handlers are split into critical, operational and debug tiers
and the level set is chosen per environment.
"""

import json
import logging
import logging.config
import time
import traceback
from datetime import datetime, timezone
from functools import wraps
from typing import Any

from filevault.config.env import EnvConfig

# Record attributes copied verbatim into the JSON entry when present
TRACE_FIELDS = (
  "action",
  "user_id",
  "record_id",
  "task_id",
  "queue",
  "progress",
  "duration_ms",
  "status_code",
  "method",
  "path",
  "request_id",
)

APPLICATION_LOGGERS = (
  "filevault",
  "filevault.api",
  "filevault.workers",
  "filevault.storage",
)


class StructuredFormatter(logging.Formatter):
  """
  One JSON object per line.

  Base keys are ``timestamp`` (UTC, ``Z`` suffix), ``level``, ``component`` and
  ``message``. Trace fields are added only when set on the record. Errors carry
  their exception type, message and traceback.
  """

  @staticmethod
  def _timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

  @staticmethod
  def _exception(exc_info) -> dict[str, Any]:
    exc_type, exc_value, _ = exc_info
    return {
      "type": exc_type.__name__ if exc_type else "Unknown",
      "message": "" if exc_value is None else str(exc_value),
      "traceback": traceback.format_exception(*exc_info),
    }

  def format(self, record: logging.LogRecord) -> str:
    entry: dict[str, Any] = {
      "timestamp": self._timestamp(record),
      "level": record.levelname,
      "component": getattr(record, "component", record.name),
      "message": record.getMessage(),
    }
    entry.update(
      (name, getattr(record, name))
      for name in TRACE_FIELDS
      if getattr(record, name, None) is not None
    )

    if record.levelno >= logging.ERROR:
      if record.exc_info:
        entry["error"] = self._exception(record.exc_info)
      category = getattr(record, "error_category", None)
      if category:
        entry["error_category"] = category

    metadata = getattr(record, "metadata", None)
    if metadata:
      entry["metadata"] = metadata

    return json.dumps(entry, default=str, separators=(",", ":"))


# Level bands per tier, as (lowest included, first excluded)
_TIER_BANDS = {
  "critical": (logging.ERROR, None),
  "operational": (logging.INFO, logging.ERROR),
  "debug": (logging.DEBUG, logging.INFO),
}


class TieredLogFilter:
  """
  Filter logs by tier.

  Tier 1 (Critical): ERROR, CRITICAL
  Tier 2 (Operational): INFO, WARNING
  Tier 3 (Debug): DEBUG
  """

  def __init__(self, tier: str):
    self.tier = tier
    self.low, self.high = _TIER_BANDS.get(tier, (logging.NOTSET, None))

  def filter(self, record: logging.LogRecord) -> bool:
    if record.levelno < self.low:
      return False
    return self.high is None or record.levelno < self.high


# environment -> (application log level, emit debug tier)
_ENVIRONMENT_LEVELS = {
  "prod": ("INFO", False),
  "staging": ("INFO", True),
  "test": ("WARNING", False),
}


def _stream_handler(
  level: str, stream: str, formatter: str = "structured", tier: str | None = None
) -> dict[str, Any]:
  handler = {
    "class": "logging.StreamHandler",
    "level": level,
    "formatter": formatter,
    "stream": f"ext://sys.{stream}",
  }
  if tier:
    handler["filters"] = [f"{tier}_filter"]
  return handler


def get_logging_config(environment: str | None = None) -> dict[str, Any]:
  """
  dictConfig mapping for an environment.

  prod logs INFO and above as JSON split across tier handlers. staging adds
  the debug tier. test only emits warnings. Any other name is treated as
  local development: one plain console handler at LOG_LEVEL.
  """
  env = environment or EnvConfig.ENVIRONMENT
  is_dev = env not in _ENVIRONMENT_LEVELS

  if is_dev:
    level = getattr(EnvConfig, "LOG_LEVEL", None) or "DEBUG"
    with_debug_tier = False
    app_handlers = ["console"]
    root_handlers = ["console"]
    library_handlers = ["console"]
  else:
    level, with_debug_tier = _ENVIRONMENT_LEVELS[env]
    app_handlers = ["critical", "operational"]
    root_handlers = ["critical"]
    library_handlers = ["operational"]

  if with_debug_tier:
    app_handlers = app_handlers + ["debug"]

  handlers = {
    "critical": _stream_handler("ERROR", "stderr", tier="critical"),
    "operational": _stream_handler("INFO", "stdout", tier="operational"),
    "console": _stream_handler(
      level, "stdout", formatter="simple" if is_dev else "structured"
    ),
  }
  if with_debug_tier:
    handlers["debug"] = _stream_handler("DEBUG", "stdout", tier="debug")

  loggers = {
    name: {"level": level, "handlers": list(app_handlers), "propagate": False}
    for name in APPLICATION_LOGGERS
  }
  # Libraries only report problems
  for name in ("uvicorn", "sqlalchemy", "redis"):
    loggers[name] = {
      "level": "WARNING",
      "handlers": list(library_handlers),
      "propagate": False,
    }

  return {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
      "structured": {"()": StructuredFormatter},
      "simple": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
    },
    "filters": {
      f"{tier}_filter": {"()": TieredLogFilter, "tier": tier} for tier in _TIER_BANDS
    },
    "handlers": handlers,
    "loggers": loggers,
    "root": {"level": "WARNING", "handlers": root_handlers},
  }


def setup_logging(environment: str | None = None) -> None:
  """Apply `get_logging_config` to the logging module."""
  logging.config.dictConfig(get_logging_config(environment))


def get_logger(name: str) -> logging.Logger:
  return logging.getLogger(name)


def log_api_request(
  logger: logging.Logger,
  method: str,
  path: str,
  status_code: int,
  duration_ms: float,
  user_id: str | None = None,
  request_id: str | None = None,
) -> None:
  """Log one completed API request; 5xx responses are logged as warnings."""
  level = logging.WARNING if status_code >= 500 else logging.INFO
  logger.log(
    level,
    f"{method} {path} - {status_code} ({duration_ms:.2f}ms)",
    extra={
      "component": "api",
      "action": "request_completed",
      "method": method,
      "path": path,
      "status_code": status_code,
      "duration_ms": round(duration_ms, 2),
      "user_id": user_id,
      "request_id": request_id,
    },
  )


def log_error(
  logger: logging.Logger,
  error: Exception,
  component: str,
  action: str,
  error_category: str = "application",
  user_id: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  """Log an exception with its component, action and category for searching."""
  context = dict(metadata or {})
  error_code = getattr(error, "error_code", None)
  if error_code:
    context.setdefault("error_code", error_code)

  logger.error(
    f"Error in {component}.{action}: {error!s}",
    exc_info=error,
    extra={
      "component": component,
      "action": action,
      "error_category": error_category,
      "user_id": user_id,
      "metadata": context,
    },
  )


def performance_timer(logger: logging.Logger, component: str, action: str):
  """Decorator logging the duration of each call, and the error if it raised."""

  def decorator(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
      started = time.perf_counter()
      try:
        result = func(*args, **kwargs)
      except Exception as e:
        elapsed_ms = (time.perf_counter() - started) * 1000
        log_error(logger, e, component, action, metadata={"duration_ms": elapsed_ms})
        raise

      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info(
        f"{component}.{action} completed ({elapsed_ms:.2f}ms)",
        extra={"component": component, "action": action, "duration_ms": elapsed_ms},
      )
      return result

    return wrapper

  return decorator
