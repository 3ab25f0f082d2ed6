"""
Task descriptors exchanged through the ingestion Task Queue.

Payloads are validated when they are built, so an incomplete descriptor is
rejected before it is pushed and a worker only ever sees complete ones.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.ulid import parse_ulid


class TaskStatus(str, Enum):
  """Lifecycle of one large-file ingestion task."""

  QUEUED = "queued"
  PROCESSING = "processing"
  COMPLETED = "completed"
  FAILED = "failed"


class UploadTaskPayload(BaseModel):
  """Everything a worker needs to turn a staged upload into a FileRecord."""

  model_config = ConfigDict(frozen=True, extra="forbid")

  task_id: str = Field(..., description="Task identifier, also the progress key")
  record_id: str = Field(
    ..., description="Identifier the FileRecord will be created with"
  )
  temp_path: str = Field(
    ..., min_length=1, description="Staged upload location (staging blob name)"
  )
  principal_id: str = Field(..., min_length=1, description="Requesting principal")
  original_name: str = Field(..., min_length=1, max_length=255)
  mime_type: str = Field(..., min_length=1, max_length=255)
  declared_size: int = Field(..., ge=0)
  enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

  @field_validator("task_id", "record_id")
  @classmethod
  def validate_identifier(cls, value: str) -> str:
    if parse_ulid(value) is None:
      raise ValueError("must be a ULID, optionally prefixed")
    return value
