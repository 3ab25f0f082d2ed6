"""Per-request session scope."""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..database import request_scope, session
from ..logger import logger


class DatabaseSessionMiddleware(BaseHTTPMiddleware):
  """Run each request in its own session scope and release it afterwards."""

  async def dispatch(self, request: Request, call_next: Callable) -> Response:
    with request_scope():
      try:
        return await call_next(request)
      finally:
        self._release()

  @staticmethod
  def _release() -> None:
    try:
      session.remove()
    except Exception as e:
      logger.warning(
        f"Could not release database session: {e}",
        extra={"component": "api", "action": "session_cleanup"},
      )
