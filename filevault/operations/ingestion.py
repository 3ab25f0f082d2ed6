"""
Ingestion Pipeline.

Uploads at or below the size threshold are written synchronously: the blob
goes to the permanent store, then the FileRecord is persisted, and if the
record cannot be persisted the blob is removed again before the failure is
reported.

Larger uploads are staged, described by an UploadTaskPayload and pushed to
the Task Queue. A worker later drives each task through

    Reading (10) -> read done (30) -> Relocating (60)
      -> MetadataPersisted (90) -> SourceCleanedUp (100)

Progress never moves backwards. When a step fails the task ends as FAILED
with progress left at the last checkpoint reached, no FileRecord is kept,
and the staged source stays where it is.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Collection, Optional, Union

from pydantic import ValidationError

from ..config.constants import (
  DEFAULT_INGESTION_QUEUE,
  IngestionProgress,
  LARGE_FILE_THRESHOLD_BYTES,
  MAX_UPLOAD_SIZE_BYTES,
  PrefixConstants,
)
from ..exceptions import (
  FileValidationError,
  FileVaultError,
  QueueUnavailableError,
  StorageIOError,
  UploadFailedError,
)
from ..logger import logger, performance_timer
from ..models.file_record import FileRecord
from ..models.tasks import TaskStatus, UploadTaskPayload
from ..storage.blob_store import BlobStore
from ..utils.ulid import generate_prefixed_ulid
from .metadata_store import MetadataStore
from .task_queue import TaskQueue

ByteSource = Union[bytes, BinaryIO]


class IngestionState(str, Enum):
  RECEIVED = "received"
  SMALL_PATH_COMPLETE = "small_path_complete"
  LARGE_PATH_QUEUED = "large_path_queued"
  READING = "reading"
  RELOCATING = "relocating"
  METADATA_PERSISTED = "metadata_persisted"
  SOURCE_CLEANED_UP = "source_cleaned_up"
  DONE = "done"
  FAILED = "failed"


@dataclass(frozen=True)
class QueuedUpload:
  """Handle returned to the client for a large upload."""

  task_id: str
  record_id: str
  status: str = TaskStatus.QUEUED.value


@dataclass
class IngestionOutcome:
  """Result of processing one queued task."""

  task_id: str
  state: IngestionState
  progress: int
  record_id: Optional[str] = None
  error: Optional[str] = None

  @property
  def succeeded(self) -> bool:
    return self.state == IngestionState.DONE


class _ProgressReporter:
  """Reports checkpoints for one task, skipping any that would go backwards."""

  def __init__(self, task_queue: TaskQueue, task_id: str):
    self.task_queue = task_queue
    self.task_id = task_id
    self.current = task_queue.get_progress(task_id)

  def report(self, percent: int) -> None:
    if percent <= self.current:
      return
    self.current = percent
    if not self.task_queue.set_progress(self.task_id, percent):
      # The task itself is unaffected; pollers see a stale value until the next write
      logger.warning(
        f"Progress {percent} for {self.task_id} not recorded",
        extra={"task_id": self.task_id, "progress": percent},
      )


class IngestionPipeline:
  """Routes uploads to the synchronous or queued path and runs queued tasks."""

  def __init__(
    self,
    blob_store: BlobStore,
    staging_store: BlobStore,
    task_queue: TaskQueue,
    metadata_store: MetadataStore,
    threshold: int = LARGE_FILE_THRESHOLD_BYTES,
    max_upload_size: int = MAX_UPLOAD_SIZE_BYTES,
    allowed_mime_types: Optional[Collection[str]] = None,
    queue_name: str = DEFAULT_INGESTION_QUEUE,
  ):
    """
    Initialize the pipeline.

    Args:
        blob_store: Permanent blob storage
        staging_store: Storage holding uploads waiting for a worker
        task_queue: Queue client shared with the workers
        metadata_store: FileRecord persistence
        threshold: Largest size, in bytes, written synchronously
        max_upload_size: Largest accepted upload, in bytes
        allowed_mime_types: Accepted MIME types; empty or None accepts any
        queue_name: Queue that large-upload tasks are pushed to
    """
    self.blob_store = blob_store
    self.staging_store = staging_store
    self.task_queue = task_queue
    self.metadata_store = metadata_store
    self.threshold = threshold
    self.max_upload_size = max_upload_size
    self.allowed_mime_types = frozenset(allowed_mime_types or ())
    self.queue_name = queue_name

  # ------------------------------------------------------------------
  # Request path
  # ------------------------------------------------------------------

  def receive(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    source: ByteSource,
    declared_size: int,
  ) -> Union[FileRecord, QueuedUpload]:
    """
    Take an upload and route it by size.

    Returns:
        The new FileRecord for small uploads, or a QueuedUpload for large ones
    """
    self._validate_upload(principal_id, original_name, mime_type, declared_size)

    if declared_size <= self.threshold:
      return self.ingest_small(principal_id, original_name, mime_type, source)

    try:
      temp_path = self.staging_store.put(source, original_name)
    except StorageIOError as e:
      raise UploadFailedError(f"could not stage upload: {e.message}", original_name) from e

    try:
      return self.ingest_large(
        principal_id, original_name, mime_type, temp_path, declared_size
      )
    except FileVaultError:
      # No task took ownership of the staged bytes
      self._remove_quietly(self.staging_store, temp_path)
      raise

  def ingest_small(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    source: ByteSource,
  ) -> FileRecord:
    """
    Store an upload and its FileRecord synchronously.

    Raises:
        FileValidationError: If the upload is malformed
        UploadFailedError: If the blob or the record could not be written
    """
    declared = len(source) if isinstance(source, (bytes, bytearray)) else 0
    self._validate_upload(principal_id, original_name, mime_type, declared)

    try:
      blob_path = self.blob_store.put(source, original_name)
    except StorageIOError as e:
      raise UploadFailedError(e.message, original_name) from e

    try:
      size_bytes = self.blob_store.size(blob_path)
      if size_bytes > self.max_upload_size:
        raise FileValidationError(
          f"Upload exceeds the maximum size of {self.max_upload_size} bytes",
          field="size",
        )
      record = self.metadata_store.create(
        owner_id=principal_id,
        original_name=original_name,
        stored_name=blob_path,
        blob_path=blob_path,
        size_bytes=size_bytes,
        mime_type=mime_type,
      )
    except FileValidationError:
      self._remove_quietly(self.blob_store, blob_path)
      raise
    except Exception as e:
      self._remove_quietly(self.blob_store, blob_path)
      logger.error(
        f"Small upload {original_name!r} failed after blob write: {e}",
        extra={"user_id": principal_id},
      )
      reason = e.message if isinstance(e, FileVaultError) else str(e)
      raise UploadFailedError(reason, original_name) from e

    logger.info(
      f"Stored small upload {record.id} ({size_bytes} bytes)",
      extra={"record_id": record.id, "user_id": principal_id},
    )
    return record

  def ingest_large(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    temp_path: str,
    declared_size: int,
  ) -> QueuedUpload:
    """
    Queue a staged upload for a worker and return immediately.

    Raises:
        FileValidationError: If the upload or its payload is malformed
        QueueUnavailableError: If the task could not be pushed
    """
    self._validate_upload(principal_id, original_name, mime_type, declared_size)
    # Rejects paths outside the staging root before anything is queued
    self.staging_store.root.locate(temp_path)

    task_id = generate_prefixed_ulid(PrefixConstants.TASK)
    record_id = generate_prefixed_ulid(PrefixConstants.FILE)

    try:
      payload = UploadTaskPayload(
        task_id=task_id,
        record_id=record_id,
        temp_path=temp_path,
        principal_id=principal_id,
        original_name=original_name,
        mime_type=mime_type,
        declared_size=declared_size,
      )
    except ValidationError as e:
      raise FileValidationError(f"Invalid upload task: {e.errors()[0]['msg']}") from e

    # Status first so a fast worker's "processing" is not overwritten
    self.task_queue.set_status(task_id, TaskStatus.QUEUED)

    if not self.task_queue.enqueue(self.queue_name, payload):
      self.task_queue.set_status(
        task_id, TaskStatus.FAILED, error="task queue unavailable"
      )
      raise QueueUnavailableError(self.queue_name, task_id)

    logger.info(
      f"Queued large upload {task_id} ({declared_size} bytes)",
      extra={"task_id": task_id, "record_id": record_id, "user_id": principal_id},
    )
    return QueuedUpload(task_id=task_id, record_id=record_id)

  # ------------------------------------------------------------------
  # Worker path
  # ------------------------------------------------------------------

  @performance_timer(logger, "ingestion", "process_queued")
  def process_queued(self, payload: UploadTaskPayload) -> IngestionOutcome:
    """
    Drive one queued task to completion.

    Expected failures (missing source, storage errors, rejected records) end
    the task as FAILED and are returned, not raised. Anything else marks the
    task failed and propagates to the worker loop.
    """
    task_id = payload.task_id
    log_extra = {"task_id": task_id, "record_id": payload.record_id}
    progress = _ProgressReporter(self.task_queue, task_id)
    state = IngestionState.LARGE_PATH_QUEUED

    try:
      existing = self.metadata_store.find_by_task(task_id)
      if existing is not None:
        # Redelivered after the record was persisted; finish the tail only
        logger.warning(
          f"Task {task_id} already produced record {existing.id}", extra=log_extra
        )
        state = IngestionState.SOURCE_CLEANED_UP
        self._cleanup_source(payload)
        progress.report(IngestionProgress.COMPLETE)
        self.task_queue.set_status(task_id, TaskStatus.COMPLETED, record_id=existing.id)
        return IngestionOutcome(task_id, IngestionState.DONE, progress.current, existing.id)

      self.task_queue.set_status(task_id, TaskStatus.PROCESSING)

      state = IngestionState.READING
      progress.report(IngestionProgress.READING)
      with self.staging_store.read(payload.temp_path) as source:
        actual_size = os.fstat(source.fileno()).st_size
        if actual_size != payload.declared_size:
          logger.warning(
            f"Task {task_id} declared {payload.declared_size} bytes, "
            f"staged file has {actual_size}",
            extra=log_extra,
          )
        progress.report(IngestionProgress.READ_COMPLETE)

        state = IngestionState.RELOCATING
        blob_path = self.blob_store.put(source, payload.original_name)
      progress.report(IngestionProgress.RELOCATED)

      state = IngestionState.METADATA_PERSISTED
      try:
        record = self.metadata_store.create(
          owner_id=payload.principal_id,
          original_name=payload.original_name,
          stored_name=blob_path,
          blob_path=blob_path,
          size_bytes=actual_size,
          mime_type=payload.mime_type,
          record_id=payload.record_id,
          task_id=task_id,
        )
      except Exception:
        self._remove_quietly(self.blob_store, blob_path)
        raise
      progress.report(IngestionProgress.PERSISTED)

      state = IngestionState.SOURCE_CLEANED_UP
      self._cleanup_source(payload)
      progress.report(IngestionProgress.COMPLETE)

    except FileVaultError as e:
      logger.error(
        f"Task {task_id} failed while {state.value}: {e.message}",
        extra={**log_extra, "progress": progress.current},
      )
      self.task_queue.set_status(task_id, TaskStatus.FAILED, error=e.message)
      return IngestionOutcome(
        task_id, IngestionState.FAILED, progress.current, error=e.message
      )
    except Exception as e:
      self.task_queue.set_status(task_id, TaskStatus.FAILED, error=str(e))
      raise

    self.task_queue.set_status(task_id, TaskStatus.COMPLETED, record_id=record.id)
    logger.info(
      f"Task {task_id} completed as record {record.id}",
      extra={**log_extra, "user_id": payload.principal_id},
    )
    return IngestionOutcome(
      task_id, IngestionState.DONE, progress.current, record_id=record.id
    )

  # ------------------------------------------------------------------
  # Helpers
  # ------------------------------------------------------------------

  def _validate_upload(
    self,
    principal_id: str,
    original_name: str,
    mime_type: str,
    declared_size: int,
  ) -> None:
    if not principal_id:
      raise FileValidationError("Principal is required", field="principal_id")
    if not original_name or not original_name.strip():
      raise FileValidationError("File name is required", field="original_name")
    if len(original_name) > 255:
      raise FileValidationError(
        "File name must be at most 255 characters", field="original_name"
      )
    if not mime_type:
      raise FileValidationError("MIME type is required", field="mime_type")
    if self.allowed_mime_types and mime_type not in self.allowed_mime_types:
      raise FileValidationError(
        f"MIME type {mime_type} is not allowed", field="mime_type"
      )
    if declared_size is None or declared_size < 0:
      raise FileValidationError("Size must not be negative", field="size")
    if declared_size > self.max_upload_size:
      raise FileValidationError(
        f"Upload exceeds the maximum size of {self.max_upload_size} bytes",
        field="size",
      )

  def _cleanup_source(self, payload: UploadTaskPayload) -> None:
    # The record now owns the bytes; a leftover staged copy is only clutter
    try:
      self.staging_store.remove(payload.temp_path)
    except StorageIOError as e:
      logger.warning(
        f"Could not remove staged source for {payload.task_id}: {e.message}",
        extra={"task_id": payload.task_id},
      )

  @staticmethod
  def _remove_quietly(store: BlobStore, blob_path: str) -> None:
    try:
      store.remove(blob_path)
    except StorageIOError as e:
      logger.error(f"Compensating removal of blob {blob_path} failed: {e.message}")
