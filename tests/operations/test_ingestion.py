"""
Tests for the Ingestion Pipeline.

Covers size-based routing, the synchronous small path with its
compensation on failure, queueing of large uploads, and the worker-side
checkpoints of queued tasks.
"""

import io
import os
from unittest.mock import Mock, patch

import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError

from filevault.exceptions import (
  FileValidationError,
  QueueUnavailableError,
  StorageIOError,
  UploadFailedError,
)
from filevault.models.file_record import FileRecord
from filevault.models.tasks import UploadTaskPayload
from filevault.operations.ingestion import (
  IngestionPipeline,
  IngestionState,
  QueuedUpload,
)
from filevault.operations.task_queue import TaskQueue
from tests.conftest import MIB, TEST_QUEUE

CHECKPOINTS = [10, 30, 60, 90, 100]


def _queue_large(pipeline, staging_store, data=b"x" * 64, name="big.bin"):
  temp_path = staging_store.put(data, name)
  queued = pipeline.ingest_large(
    "alice", name, "application/octet-stream", temp_path, len(data)
  )
  payload = UploadTaskPayload.model_validate(
    pipeline.task_queue.dequeue(TEST_QUEUE)
  )
  return queued, payload


class TestSmallPath:
  """Synchronous ingestion at or below the threshold."""

  def test_one_byte_upload(self, pipeline, blob_store):
    record = pipeline.ingest_small("alice", "a.txt", "text/plain", b"a")

    assert record.size_bytes == 1
    assert record.owner_id == "alice"
    assert record.original_name == "a.txt"
    assert record.mime_type == "text/plain"
    assert record.shared_with == frozenset()
    assert record.stored_name.endswith(".txt")
    assert record.blob_path == record.stored_name
    assert blob_store.exists(record.blob_path)

  def test_stream_source(self, pipeline):
    record = pipeline.ingest_small(
      "alice", "notes.md", "text/markdown", io.BytesIO(b"# notes\n")
    )
    assert record.size_bytes == 8

  def test_empty_file_is_accepted(self, pipeline):
    record = pipeline.ingest_small("alice", "empty.txt", "text/plain", b"")
    assert record.size_bytes == 0

  @pytest.mark.parametrize(
    "principal, name, mime",
    [("", "a.txt", "text/plain"), ("alice", "", "text/plain"), ("alice", "a.txt", "")],
  )
  def test_validation_failure_stores_nothing(
    self, pipeline, blob_store, db_session, principal, name, mime
  ):
    with pytest.raises(FileValidationError):
      pipeline.ingest_small(principal, name, mime, b"a")

    assert os.listdir(blob_store.root.path) == []
    assert db_session.query(FileRecord).count() == 0

  def test_blob_write_failure(self, pipeline, db_session):
    with patch.object(
      pipeline.blob_store, "put", side_effect=StorageIOError("disk full", operation="put")
    ):
      with pytest.raises(UploadFailedError):
        pipeline.ingest_small("alice", "a.txt", "text/plain", b"a")

    assert db_session.query(FileRecord).count() == 0

  def test_metadata_failure_removes_blob(self, pipeline, blob_store):
    with patch.object(
      pipeline.metadata_store,
      "create",
      side_effect=StorageIOError("database down", operation="create"),
    ):
      with pytest.raises(UploadFailedError) as exc_info:
        pipeline.ingest_small("alice", "a.txt", "text/plain", b"a")

    assert exc_info.value.retryable
    assert os.listdir(blob_store.root.path) == []

  def test_oversized_stream_is_rejected_after_write(self, pipeline, blob_store):
    pipeline.max_upload_size = 4

    with pytest.raises(FileValidationError):
      pipeline.ingest_small("alice", "a.txt", "text/plain", io.BytesIO(b"12345"))

    assert os.listdir(blob_store.root.path) == []

  def test_disallowed_mime_type(self, pipeline):
    pipeline.allowed_mime_types = frozenset({"image/png"})

    with pytest.raises(FileValidationError):
      pipeline.ingest_small("alice", "a.txt", "text/plain", b"a")


class TestLargePath:
  """Queueing of staged uploads."""

  def test_ingest_large_queues_task(self, pipeline, staging_store, task_queue):
    temp_path = staging_store.put(b"x" * 10, "big.bin")

    queued = pipeline.ingest_large(
      "alice", "big.bin", "application/octet-stream", temp_path, 10
    )

    assert isinstance(queued, QueuedUpload)
    assert queued.task_id.startswith("task_")
    assert queued.record_id.startswith("file_")
    assert task_queue.queue_length(TEST_QUEUE) == 1
    assert task_queue.get_progress(queued.task_id) == 0
    assert task_queue.get_status(queued.task_id)["status"] == "queued"

  def test_queued_payload_is_complete(self, pipeline, staging_store):
    queued, payload = _queue_large(pipeline, staging_store)

    assert payload.task_id == queued.task_id
    assert payload.record_id == queued.record_id
    assert payload.principal_id == "alice"
    assert payload.declared_size == 64

  def test_temp_path_outside_staging_rejected(self, pipeline, task_queue):
    with pytest.raises(FileValidationError):
      pipeline.ingest_large("alice", "big.bin", "text/plain", "../etc/passwd", 10)

    assert task_queue.queue_length(TEST_QUEUE) == 0

  def test_queue_unavailable(self, blob_store, staging_store, metadata_store):
    client = Mock(spec=redis.Redis)
    client.lpush.side_effect = RedisConnectionError("connection refused")
    client.get.return_value = None
    broken = IngestionPipeline(
      blob_store, staging_store, TaskQueue(client), metadata_store, queue_name=TEST_QUEUE
    )
    temp_path = staging_store.put(b"x" * 10, "big.bin")

    with pytest.raises(QueueUnavailableError) as exc_info:
      broken.ingest_large("alice", "big.bin", "text/plain", temp_path, 10)

    assert exc_info.value.retryable
    assert exc_info.value.details["queue"] == TEST_QUEUE


class TestReceive:
  """Routing by declared size."""

  def test_at_threshold_is_small(self, pipeline):
    pipeline.threshold = 8
    result = pipeline.receive("alice", "a.bin", "application/octet-stream", b"x" * 8, 8)
    assert isinstance(result, FileRecord)

  def test_above_threshold_is_queued(self, pipeline, staging_store):
    pipeline.threshold = 8
    result = pipeline.receive(
      "alice", "a.bin", "application/octet-stream", io.BytesIO(b"x" * 9), 9
    )

    assert isinstance(result, QueuedUpload)
    assert len(os.listdir(staging_store.root.path)) == 1

  def test_queue_failure_discards_staged_copy(self, pipeline, staging_store):
    pipeline.threshold = 8

    with patch.object(pipeline.task_queue, "enqueue", return_value=False):
      with pytest.raises(QueueUnavailableError):
        pipeline.receive("alice", "a.bin", "text/plain", io.BytesIO(b"x" * 9), 9)

    assert os.listdir(staging_store.root.path) == []

  def test_over_maximum_is_rejected_before_storage(self, pipeline, staging_store):
    pipeline.max_upload_size = 10

    with pytest.raises(FileValidationError):
      pipeline.receive("alice", "a.bin", "text/plain", io.BytesIO(b"x" * 11), 11)

    assert os.listdir(staging_store.root.path) == []


class TestProcessQueued:
  """Worker-side processing of a queued task."""

  def test_six_mebibyte_upload_completes(
    self, pipeline, staging_store, blob_store, metadata_store, progress_writes
  ):
    data = os.urandom(6 * MIB)
    queued = pipeline.receive("alice", "video.mp4", "video/mp4", data, len(data))
    assert isinstance(queued, QueuedUpload)
    payload = UploadTaskPayload.model_validate(pipeline.task_queue.dequeue(TEST_QUEUE))

    outcome = pipeline.process_queued(payload)

    assert outcome.succeeded
    assert outcome.progress == 100
    assert outcome.record_id == queued.record_id
    assert progress_writes(queued.task_id) == CHECKPOINTS
    record = metadata_store.get(queued.record_id)
    assert record.size_bytes == 6 * MIB
    assert record.owner_id == "alice"
    assert record.task_id == queued.task_id
    with blob_store.read(record.blob_path) as stream:
      assert stream.read() == data
    assert os.listdir(staging_store.root.path) == []
    assert pipeline.task_queue.get_status(queued.task_id) == {
      "status": "completed",
      "record_id": queued.record_id,
    }

  def test_missing_staged_file_fails_at_reading(
    self, pipeline, staging_store, metadata_store, task_queue
  ):
    queued, payload = _queue_large(pipeline, staging_store)
    staging_store.remove(payload.temp_path)

    outcome = pipeline.process_queued(payload)

    assert outcome.state == IngestionState.FAILED
    assert outcome.progress == 10
    assert task_queue.get_progress(queued.task_id) == 10
    assert task_queue.get_status(queued.task_id)["status"] == "failed"
    assert metadata_store.get(queued.record_id) is None

  def test_relocation_failure_keeps_staged_source(
    self, pipeline, staging_store, blob_store, metadata_store
  ):
    queued, payload = _queue_large(pipeline, staging_store)

    with patch.object(
      blob_store, "put", side_effect=StorageIOError("disk full", operation="put")
    ):
      outcome = pipeline.process_queued(payload)

    assert outcome.state == IngestionState.FAILED
    assert outcome.progress == 30
    assert staging_store.exists(payload.temp_path)
    assert metadata_store.get(queued.record_id) is None

  def test_metadata_failure_removes_relocated_blob(
    self, pipeline, staging_store, blob_store, metadata_store
  ):
    queued, payload = _queue_large(pipeline, staging_store)

    with patch.object(
      metadata_store,
      "create",
      side_effect=StorageIOError("database down", operation="create"),
    ):
      outcome = pipeline.process_queued(payload)

    assert outcome.state == IngestionState.FAILED
    assert outcome.progress == 60
    assert os.listdir(blob_store.root.path) == []
    assert staging_store.exists(payload.temp_path)

  def test_cleanup_failure_still_completes(self, pipeline, staging_store, metadata_store):
    queued, payload = _queue_large(pipeline, staging_store)

    with patch.object(
      staging_store, "remove", side_effect=StorageIOError("busy", operation="remove")
    ):
      outcome = pipeline.process_queued(payload)

    assert outcome.succeeded
    assert outcome.progress == 100
    assert metadata_store.get(queued.record_id) is not None

  def test_redelivered_task_is_idempotent(self, pipeline, staging_store, db_session):
    queued, payload = _queue_large(pipeline, staging_store)

    first = pipeline.process_queued(payload)
    second = pipeline.process_queued(payload)

    assert first.succeeded and second.succeeded
    assert second.record_id == first.record_id
    assert db_session.query(FileRecord).count() == 1

  def test_progress_never_moves_backwards(
    self, pipeline, staging_store, progress_writes
  ):
    queued, payload = _queue_large(pipeline, staging_store)
    pipeline.task_queue.set_progress(queued.task_id, 50)

    outcome = pipeline.process_queued(payload)

    assert outcome.succeeded
    assert progress_writes(queued.task_id) == [50, 60, 90, 100]

  def test_progress_store_outage_does_not_fail_task(
    self, pipeline, staging_store, metadata_store
  ):
    queued, payload = _queue_large(pipeline, staging_store)

    with patch.object(pipeline.task_queue, "set_progress", return_value=False):
      outcome = pipeline.process_queued(payload)

    assert outcome.succeeded
    assert metadata_store.get(queued.record_id) is not None

  def test_unexpected_error_propagates(self, pipeline, staging_store, task_queue):
    queued, payload = _queue_large(pipeline, staging_store)

    with patch.object(pipeline.blob_store, "put", side_effect=RuntimeError("bug")):
      with pytest.raises(RuntimeError):
        pipeline.process_queued(payload)

    assert task_queue.get_status(queued.task_id)["status"] == "failed"
