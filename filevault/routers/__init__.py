"""API routers."""

from .files import router as files_router
from .status import router as status_router

__all__ = ["files_router", "status_router"]
