"""
Request logging middleware.

Each request outside the quiet paths is tagged with a request id, taken from
``X-Request-ID`` when the caller sends one, and echoed back on the response.
Completion is logged once with status, duration and the principal.
"""

import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from filevault.logger import log_api, log_app_error

REQUEST_ID_HEADER = "X-Request-ID"

DEFAULT_QUIET_PATHS = (
  "/v1/status",
  "/docs",
  "/redoc",
  "/openapi.json",
  "/favicon.ico",
)


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
  def __init__(self, app, exclude_paths: Optional[Iterable[str]] = None):
    super().__init__(app)
    self.exclude_paths = tuple(exclude_paths or DEFAULT_QUIET_PATHS)

  async def dispatch(self, request: Request, call_next: Callable) -> Response:
    path = request.url.path
    if path.startswith(self.exclude_paths):
      return await call_next(request)

    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()

    def elapsed_ms() -> float:
      return (time.perf_counter() - started) * 1000

    try:
      response = await call_next(request)
    except Exception as e:
      log_app_error(
        e,
        component="api",
        action="request_failed",
        user_id=getattr(request.state, "principal_id", None),
        metadata={
          "method": request.method,
          "path": path,
          "duration_ms": elapsed_ms(),
          "request_id": request_id,
        },
      )
      raise

    log_api(
      request.method,
      path,
      response.status_code,
      elapsed_ms(),
      user_id=getattr(request.state, "principal_id", None),
      request_id=request_id,
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
