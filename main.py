"""FileVault Service API main application module."""

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from filevault.config import env
from filevault.config.logging import get_logger
from filevault.config.validation import EnvValidator
from filevault.config.valkey_registry import ValkeyDatabase, create_redis_client
from filevault.exceptions import FileVaultError
from filevault.middleware import DatabaseSessionMiddleware, StructuredLoggingMiddleware
from filevault.models.api.common import ErrorResponse
from filevault.operations.factory import build_blob_stores
from filevault.operations.task_queue import TaskQueue
from filevault.routers import files_router, status_router
from filevault.routers.dependencies import Authenticator, HeaderAuthenticator
from filevault.storage.blob_store import BlobStore

logger = get_logger("filevault.api")


def _app_version() -> str:
  try:
    return pkg_version("filevault-service")
  except PackageNotFoundError:
    return "0.0.0"


def create_app(
  task_queue: Optional[TaskQueue] = None,
  blob_store: Optional[BlobStore] = None,
  staging_store: Optional[BlobStore] = None,
  authenticator: Optional[Authenticator] = None,
) -> FastAPI:
  """
  Create the FastAPI app and include the routers.

  Collaborators not passed in are built from the environment: a Valkey
  client for the Task Queue and the permanent and staging Blob Stores.

  Returns:
      FastAPI: The configured FastAPI application.
  """
  app = FastAPI(
    title="FileVault API",
    version=_app_version(),
    description="Multi-tenant file storage with queued ingestion of large uploads",
    openapi_url="/openapi.json",
  )

  if task_queue is None:
    task_queue = TaskQueue(
      create_redis_client(ValkeyDatabase.TASK_QUEUE),
      state_ttl=env.TASK_STATE_TTL_SECONDS,
    )
  if blob_store is None or staging_store is None:
    default_blob, default_staging = build_blob_stores()
    blob_store = blob_store or default_blob
    staging_store = staging_store or default_staging

  app.state.current_time = datetime.now(timezone.utc)
  app.state.task_queue = task_queue
  app.state.queue_name = env.INGESTION_QUEUE_NAME
  app.state.blob_store = blob_store
  app.state.staging_store = staging_store
  app.state.authenticator = authenticator or HeaderAuthenticator()

  @app.on_event("startup")
  async def startup_event():
    """Validate configuration on startup."""
    logger.info("Starting FileVault API...")
    EnvValidator.validate_startup(env)
    logger.info("FileVault API startup complete")

  # First added = innermost
  app.add_middleware(DatabaseSessionMiddleware)
  app.add_middleware(StructuredLoggingMiddleware)

  @app.exception_handler(FileVaultError)
  async def filevault_exception_handler(
    request: Request, exc: FileVaultError
  ) -> JSONResponse:
    """Map application errors to their status code and a stable error body."""
    request_id = getattr(request.state, "request_id", None)
    if exc.http_status >= 500:
      logger.error(
        f"{exc.error_code}: {exc.message}",
        extra={"request_id": request_id, "metadata": exc.details},
      )

    body = ErrorResponse(
      detail=exc.message,
      code=exc.error_code,
      retryable=exc.retryable,
      details=exc.details or None,
      request_id=request_id,
      timestamp=datetime.fromisoformat(exc.timestamp),
    )
    headers = {"Retry-After": "5"} if exc.retryable else None
    return JSONResponse(
      status_code=exc.http_status,
      content=body.model_dump(mode="json"),
      headers=headers,
    )

  @app.exception_handler(Exception)
  async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a generic error with the request id; details stay in the logs."""
    request_id = getattr(request.state, "request_id", None)
    logger.error("Unhandled exception", extra={"request_id": request_id}, exc_info=exc)

    return JSONResponse(
      status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
      content={"detail": "Internal server error", "request_id": request_id},
    )

  app.include_router(status_router)
  app.include_router(files_router)

  return app


app = create_app()
