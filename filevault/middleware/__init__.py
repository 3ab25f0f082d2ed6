"""HTTP middleware for the FileVault API."""

from .database import DatabaseSessionMiddleware
from .logging import StructuredLoggingMiddleware

__all__ = ["DatabaseSessionMiddleware", "StructuredLoggingMiddleware"]
