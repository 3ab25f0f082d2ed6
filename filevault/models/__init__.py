"""Database models for the FileVault Metadata Store."""

from .file_record import FileRecord, FileShare, Visibility
from .tasks import TaskStatus, UploadTaskPayload

__all__ = [
  "FileRecord",
  "FileShare",
  "TaskStatus",
  "UploadTaskPayload",
  "Visibility",
]
