"""
Common API models shared across routers.

This module contains the Pydantic models used for consistent error and
health responses.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
  """
  Standard error response format used across all API endpoints.

  ``code`` is stable per error kind; ``retryable`` tells clients whether
  repeating the same request may succeed.
  """

  model_config = ConfigDict(
    json_schema_extra={
      "example": {
        "detail": "File 'file_01J9Z...' not found",
        "code": "NOT_FOUND",
        "retryable": False,
        "request_id": "5f0c0d56-8d6b-4a34-9c55-0f1d2a1a6e32",
        "timestamp": "2026-01-01T00:00:00Z",
      }
    }
  )

  detail: str = Field(
    ...,
    description="Human-readable error message explaining what went wrong",
    examples=["File 'file_01J9Z...' not found"],
  )
  code: str | None = Field(
    None,
    description="Machine-readable error code for programmatic handling",
    examples=["NOT_FOUND"],
  )
  retryable: bool = Field(
    False, description="Whether the same request may succeed if repeated"
  )
  details: dict[str, Any] | None = Field(
    None, description="Additional context about the error"
  )
  request_id: str | None = Field(
    None, description="Request ID for tracking and debugging"
  )
  timestamp: datetime | None = Field(
    None, description="Timestamp when the error occurred"
  )


class HealthStatus(BaseModel):
  """Health check status information."""

  status: str = Field(
    ...,
    description="Current health status",
    examples=["healthy"],
    pattern="^(healthy|degraded|unhealthy)$",
  )
  timestamp: datetime = Field(..., description="Time of health check")
  details: dict[str, Any] | None = Field(
    None, description="Additional health check details"
  )
