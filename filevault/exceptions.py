"""
Custom Exception Types for FileVault.

Every error a boundary operation can surface derives from FileVaultError and
carries a stable error code, an HTTP status for the API adapter, and a
retryable flag telling callers whether repeating the request may succeed.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class FileVaultError(Exception):
  """
  Base exception for all FileVault application errors.

  Attributes:
      message: Human-readable error message
      error_code: Application-specific error code for categorization
      details: Additional error context and metadata
      timestamp: When the error occurred
  """

  http_status = 500
  retryable = False

  def __init__(
    self,
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
  ):
    super().__init__(message)
    self.message = message
    self.error_code = error_code or self.__class__.__name__
    self.details = details or {}
    self.timestamp = datetime.now(timezone.utc).isoformat()

  def to_dict(self) -> Dict[str, Any]:
    """Convert exception to dictionary for API responses."""
    return {
      "error": self.error_code,
      "message": self.message,
      "retryable": self.retryable,
      "details": self.details,
      "timestamp": self.timestamp,
    }


# ============================================================================
# Validation Exceptions
# ============================================================================


class FileValidationError(FileVaultError):
  """Raised when an upload, share or query request is malformed."""

  http_status = 400

  def __init__(self, message: str, field: Optional[str] = None, **kwargs):
    details = {"field": field} if field else {}
    details.update(kwargs)
    super().__init__(
      message,
      error_code="VALIDATION_FAILURE",
      details=details,
    )


# ============================================================================
# Lookup and Authorization Exceptions
# ============================================================================


class NotFoundError(FileVaultError):
  """Base exception for missing resources."""

  http_status = 404


class RecordNotFoundError(NotFoundError):
  """
  Raised when a record is absent or not readable by the caller.

  The two cases share one message so the response never reveals whether a
  record exists.
  """

  def __init__(self, record_id: str):
    super().__init__(
      f"File '{record_id}' not found",
      error_code="NOT_FOUND",
      details={"record_id": record_id},
    )


class BlobNotFoundError(NotFoundError):
  """Raised when a blob path does not resolve to a stored blob."""

  def __init__(self, path: str):
    super().__init__(
      "Stored blob not found",
      error_code="NOT_FOUND",
      details={"path": path},
    )


class ForbiddenError(FileVaultError):
  """Raised when a caller can read a record but not perform the operation."""

  http_status = 403

  def __init__(self, record_id: str, operation: str):
    super().__init__(
      f"Not permitted to {operation} file '{record_id}'",
      error_code="FORBIDDEN",
      details={"record_id": record_id, "operation": operation},
    )


# ============================================================================
# Storage and Queue Exceptions
# ============================================================================


class StorageIOError(FileVaultError):
  """Raised when the Blob Store or the Metadata Store cannot complete I/O."""

  http_status = 503
  retryable = True

  def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
    details = {"operation": operation} if operation else {}
    details.update(kwargs)
    super().__init__(
      message,
      error_code="IO_FAILURE",
      details=details,
    )


class UploadFailedError(StorageIOError):
  """Raised when a small upload could not be persisted; nothing was kept."""

  def __init__(self, reason: str, original_name: Optional[str] = None):
    super().__init__(
      f"Upload failed: {reason}",
      operation="ingest_small",
      original_name=original_name,
    )
    self.error_code = "UPLOAD_FAILED"


class QueueUnavailableError(FileVaultError):
  """Raised when a large upload could not be handed to the Task Queue."""

  http_status = 503
  retryable = True

  def __init__(self, queue_name: str, task_id: Optional[str] = None):
    details = {"queue": queue_name}
    if task_id:
      details["task_id"] = task_id
    super().__init__(
      f"Task queue '{queue_name}' is unavailable",
      error_code="QUEUE_UNAVAILABLE",
      details=details,
    )


class VersionConflictError(FileVaultError):
  """Raised when a record changed since the caller last read it."""

  http_status = 409

  def __init__(
    self,
    record_id: str,
    expected_version: Optional[int] = None,
    actual_version: Optional[int] = None,
  ):
    details: Dict[str, Any] = {"record_id": record_id}
    if expected_version is not None:
      details["expected_version"] = expected_version
    if actual_version is not None:
      details["actual_version"] = actual_version
    super().__init__(
      f"File '{record_id}' was modified concurrently",
      error_code="CONFLICT",
      details=details,
    )
