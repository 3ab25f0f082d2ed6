"""
Boundary operations exposed to the HTTP layer and other collaborators.

Every operation that takes a record id goes through Access Control, so
callers never see a record they cannot read, and owner-only mutations
report Forbidden only to principals who can already see the record.
"""

from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple, Union

from ..config.constants import DEFAULT_PAGE_SIZE, DEFAULT_SORT_FIELD
from ..exceptions import FileValidationError, StorageIOError
from ..logger import logger
from ..models.file_record import FileRecord, Visibility
from ..storage.blob_store import BlobStore
from .access_control import (
  AccessMode,
  ShareAction,
  SharePermission,
  authorize,
  resolve_share,
)
from .ingestion import ByteSource, IngestionPipeline, QueuedUpload
from .metadata_store import FileFilters, MetadataStore, RecordPage
from .task_queue import TaskQueue


@dataclass(frozen=True)
class TaskState:
  task_id: str
  progress: int
  status: Optional[str] = None
  record_id: Optional[str] = None
  error: Optional[str] = None


class FileService:
  """Facade over ingestion, metadata, access control and the Task Queue."""

  def __init__(
    self,
    metadata_store: MetadataStore,
    pipeline: IngestionPipeline,
    task_queue: TaskQueue,
    blob_store: BlobStore,
  ):
    self.metadata_store = metadata_store
    self.pipeline = pipeline
    self.task_queue = task_queue
    self.blob_store = blob_store

  # ------------------------------------------------------------------
  # Ingestion
  # ------------------------------------------------------------------

  def ingest_small(
    self, principal_id: str, original_name: str, mime_type: str, source: ByteSource
  ) -> FileRecord:
    return self.pipeline.ingest_small(principal_id, original_name, mime_type, source)

  def ingest_large(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    temp_path: str,
    declared_size: int,
  ) -> QueuedUpload:
    return self.pipeline.ingest_large(
      principal_id, original_name, mime_type, temp_path, declared_size
    )

  def ingest_upload(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    source: ByteSource,
    declared_size: int,
  ) -> Union[FileRecord, QueuedUpload]:
    """Route an upload to the synchronous or queued path by its size."""
    return self.pipeline.receive(
      principal_id, original_name, mime_type, source, declared_size
    )

  def poll_progress(self, task_id: str) -> int:
    return self.task_queue.get_progress(task_id)

  def get_task_state(self, task_id: str) -> TaskState:
    status = self.task_queue.get_status(task_id) or {}
    return TaskState(
      task_id=task_id,
      progress=self.task_queue.get_progress(task_id),
      status=status.get("status"),
      record_id=status.get("record_id"),
      error=status.get("error"),
    )

  # ------------------------------------------------------------------
  # Reads
  # ------------------------------------------------------------------

  def list_accessible(
    self,
    principal_id: str,
    filters: Optional[FileFilters] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort_by: str = DEFAULT_SORT_FIELD,
    order: str = "desc",
  ) -> RecordPage:
    self._require_principal(principal_id)
    return self.metadata_store.find_accessible(
      principal_id,
      filters=filters,
      sort_by=sort_by,
      order=order,
      page=page,
      page_size=page_size,
    )

  def get_record(self, principal_id: str, record_id: str) -> FileRecord:
    self._require_principal(principal_id)
    record = self.metadata_store.get(record_id)
    return authorize(principal_id, record, AccessMode.READ, record_id)

  def open_record(
    self, principal_id: str, record_id: str
  ) -> Tuple[FileRecord, BinaryIO]:
    """
    Open a record's contents for download.

    Returns:
        The record and an open binary stream the caller must close

    Raises:
        RecordNotFoundError: If the record is absent or not readable
        BlobNotFoundError: If the record exists but its blob is gone
    """
    record = self.get_record(principal_id, record_id)
    return record, self.blob_store.read(record.blob_path)

  # ------------------------------------------------------------------
  # Mutations
  # ------------------------------------------------------------------

  def share_record(
    self,
    principal_id: str,
    record_id: str,
    target_principal_id: str,
    permission: SharePermission,
    expected_version: Optional[int] = None,
  ) -> FileRecord:
    """Grant or revoke a principal's membership; repeating a request changes nothing."""
    self._require_principal(principal_id)
    record = authorize(
      principal_id, self.metadata_store.get(record_id), AccessMode.SHARE, record_id
    )
    action = resolve_share(record, target_principal_id, permission)

    if action == ShareAction.REMOVE:
      record = self.metadata_store.remove_share(
        record, target_principal_id, expected_version
      )
    else:
      record = self.metadata_store.add_share(
        record, target_principal_id, expected_version
      )

    logger.info(
      f"Share {action.value} {target_principal_id} on {record_id}",
      extra={"record_id": record_id, "user_id": principal_id, "action": "share"},
    )
    return record

  def set_visibility(
    self,
    principal_id: str,
    record_id: str,
    visibility: Visibility,
    expected_version: Optional[int] = None,
  ) -> FileRecord:
    self._require_principal(principal_id)
    record = authorize(
      principal_id, self.metadata_store.get(record_id), AccessMode.SHARE, record_id
    )
    return self.metadata_store.set_visibility(record, visibility, expected_version)

  def delete_record(
    self,
    principal_id: str,
    record_id: str,
    expected_version: Optional[int] = None,
  ) -> None:
    """
    Delete a record and then its blob.

    The metadata is removed first; the blob removal is best-effort, so a
    missing or undeletable blob never leaves a record behind.
    """
    self._require_principal(principal_id)
    record = authorize(
      principal_id, self.metadata_store.get(record_id), AccessMode.DELETE, record_id
    )
    blob_path = record.blob_path
    self.metadata_store.delete(record, expected_version)

    try:
      self.blob_store.remove(blob_path)
    except StorageIOError as e:
      logger.warning(
        f"Record {record_id} deleted but blob removal failed: {e.message}",
        extra={"record_id": record_id},
      )

  @staticmethod
  def _require_principal(principal_id: str) -> None:
    if not principal_id:
      raise FileValidationError("Principal is required", field="principal_id")
