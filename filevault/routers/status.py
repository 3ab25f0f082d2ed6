"""
Unprotected status endpoint for load balancers and monitoring.
"""

from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Request
from redis.exceptions import RedisError

from ..models.api.common import HealthStatus

router = APIRouter()


def get_app_version() -> str:
  """Get the application version from installed package metadata."""
  try:
    return version("filevault-service")
  except PackageNotFoundError:
    return "unknown"


@router.get(
  "/v1/status",
  response_model=HealthStatus,
  operation_id="getServiceStatus",
  summary="Health Check",
  description="Service health check endpoint for monitoring and load balancers",
  responses={200: {"description": "Service status", "model": HealthStatus}},
)
def service_status(request: Request) -> HealthStatus:
  """
  Report service health and the ingestion backlog.

  The service is ``degraded`` when the Task Queue cannot be reached: small
  uploads still work, large uploads are rejected as retryable.
  """
  task_queue = request.app.state.task_queue
  details = {"service": "filevault-api", "version": get_app_version()}

  try:
    task_queue.redis.ping()
    health = "healthy"
    details["queue_backlog"] = task_queue.queue_length(request.app.state.queue_name)
  except RedisError as e:
    health = "degraded"
    details["queue_error"] = str(e)

  return HealthStatus(status=health, timestamp=datetime.now(UTC), details=details)
