"""
Process-wide logging for FileVault.

Importing this module applies the environment's dictConfig and exposes one
logger per component: the HTTP layer, the ingestion worker and blob storage.
"""

import logging
from typing import Any, Dict, Optional

from .config import env
from .config.logging import (
  get_logger,
  log_api_request,
  log_error,
  performance_timer,
  setup_logging,
)

setup_logging()

logger = get_logger("filevault")
api_logger = get_logger("filevault.api")
worker_logger = get_logger("filevault.workers")
storage_logger = get_logger("filevault.storage")

# HTTP client chatter drowns local debug output
if env.is_development():
  for noisy in ("httpx", "httpcore", "urllib3"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


def log_api(
  method: str,
  path: str,
  status_code: int,
  duration_ms: float,
  user_id: Optional[str] = None,
  request_id: Optional[str] = None,
) -> None:
  log_api_request(
    api_logger,
    method,
    path,
    status_code,
    duration_ms,
    user_id=user_id,
    request_id=request_id,
  )


def log_app_error(
  error: Exception,
  component: str,
  action: str,
  error_category: str = "application",
  user_id: Optional[str] = None,
  metadata: Optional[Dict[str, Any]] = None,
) -> None:
  """Report an error on the root application logger.

  Args:
    error: The exception being reported, logged with its traceback.
    component: Subsystem name, e.g. ``worker`` or ``api``.
    action: What the component was doing when it failed.
  """
  log_error(
    logger,
    error,
    component,
    action,
    error_category=error_category,
    user_id=user_id,
    metadata=metadata,
  )


__all__ = [
  "logger",
  "api_logger",
  "worker_logger",
  "storage_logger",
  "log_api",
  "log_app_error",
  "log_api_request",
  "log_error",
  "performance_timer",
  "get_logger",
]
