"""API models for file upload, listing, sharing and task progress."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..file_record import Visibility
from ...operations.access_control import SharePermission


class FileRecordResponse(BaseModel):
  """Metadata of a stored file."""

  model_config = ConfigDict(from_attributes=True)

  id: str = Field(..., description="File identifier", examples=["file_01J9ZQ4..."])
  original_name: str = Field(..., description="Name the file was uploaded with")
  stored_name: str = Field(..., description="Server-generated blob name")
  size_bytes: int = Field(..., ge=0, description="Size in bytes")
  mime_type: str = Field(..., description="Content type", examples=["application/pdf"])
  owner_id: str = Field(..., description="Owning principal")
  shared_with: List[str] = Field(
    default_factory=list, description="Principals the owner shared the file with"
  )
  visibility: Visibility = Field(..., description="private or public")
  version: int = Field(..., ge=1, description="Incremented on every change")
  created_at: datetime
  updated_at: datetime

  @field_validator("shared_with", mode="before")
  @classmethod
  def sort_members(cls, value):
    return sorted(value or [])


class FileListResponse(BaseModel):
  """One page of files accessible to the caller."""

  records: List[FileRecordResponse]
  total: int = Field(..., ge=0, description="Total matching files")
  page: int = Field(..., ge=1)
  page_size: int = Field(..., ge=1)
  pages: int = Field(..., ge=0, description="Total number of pages")


class QueuedUploadResponse(BaseModel):
  """Accepted large upload; poll the task for progress."""

  task_id: str = Field(..., description="Task to poll for progress")
  record_id: str = Field(
    ..., description="Identifier the file will have once processing completes"
  )
  status: str = Field("queued", description="Task status at acceptance")


class TaskProgressResponse(BaseModel):
  """Progress of a large-upload task. Unknown tasks report 0."""

  task_id: str
  progress: int = Field(..., ge=0, le=100, description="Percent complete")
  status: Optional[str] = Field(
    None, description="queued, processing, completed or failed, when known"
  )
  record_id: Optional[str] = Field(
    None, description="Created file, once the task completed"
  )
  error: Optional[str] = Field(None, description="Failure reason, if the task failed")


class ShareRequest(BaseModel):
  """Grant (read/write) or revoke (none) a principal's access."""

  target_principal_id: str = Field(..., min_length=1, max_length=255)
  permission: SharePermission = Field(SharePermission.READ)
  expected_version: Optional[int] = Field(
    None, ge=1, description="Reject with 409 if the file changed since this version"
  )


class VisibilityRequest(BaseModel):
  visibility: Visibility
  expected_version: Optional[int] = Field(None, ge=1)
