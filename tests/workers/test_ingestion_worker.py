"""Tests for the ingestion worker loop."""

from unittest.mock import Mock, patch

import pytest

from filevault.operations.ingestion import IngestionOutcome, IngestionState
from filevault.workers.ingestion_worker import IngestionWorker, main
from tests.conftest import TEST_QUEUE


@pytest.fixture
def worker(task_queue, pipeline):
  return IngestionWorker(
    task_queue=task_queue,
    pipeline=pipeline,
    queue_name=TEST_QUEUE,
    idle_interval=0.5,
    error_backoff=5.0,
  )


def _stub_wait(worker):
  """Replace the stop event's wait so the loop never actually sleeps."""
  wait = Mock(return_value=False)
  worker._stop_event.wait = wait
  return wait


def _queue_upload(pipeline, staging_store, name="big.bin", size=32):
  temp_path = staging_store.put(b"x" * size, name)
  return pipeline.ingest_large("alice", name, "application/octet-stream", temp_path, size)


class TestRunOnce:
  def test_empty_queue(self, worker):
    assert worker.run_once() is None

  def test_processes_one_task(self, worker, pipeline, staging_store, metadata_store):
    queued = _queue_upload(pipeline, staging_store)

    outcome = worker.run_once()

    assert outcome.succeeded
    assert outcome.record_id == queued.record_id
    assert worker.processed == 1
    assert metadata_store.get(queued.record_id) is not None

  def test_tasks_are_processed_in_order(self, worker, pipeline, staging_store):
    first = _queue_upload(pipeline, staging_store, "one.bin")
    second = _queue_upload(pipeline, staging_store, "two.bin")

    assert worker.run_once().task_id == first.task_id
    assert worker.run_once().task_id == second.task_id

  def test_failed_task_is_counted(self, worker, pipeline, staging_store):
    temp_path = staging_store.put(b"x" * 32, "big.bin")
    queued = pipeline.ingest_large(
      "alice", "big.bin", "application/octet-stream", temp_path, 32
    )
    staging_store.remove(temp_path)

    outcome = worker.run_once()

    assert outcome.state == IngestionState.FAILED
    assert worker.failed == 1
    assert worker.task_queue.get_status(queued.task_id)["status"] == "failed"

  def test_invalid_payload_is_rejected(self, worker, task_queue):
    task_queue.enqueue(TEST_QUEUE, {"task_id": "task_01HBROKEN", "temp_path": "x"})

    outcome = worker.run_once()

    assert outcome.state == IngestionState.FAILED
    assert "invalid task payload" in outcome.error
    assert task_queue.get_status("task_01HBROKEN")["status"] == "failed"

  def test_session_released_after_each_task(self, task_queue, pipeline, staging_store):
    release = Mock()
    worker = IngestionWorker(
      task_queue, pipeline, queue_name=TEST_QUEUE, release_session=release
    )
    _queue_upload(pipeline, staging_store)

    worker.run_once()

    release.assert_called_once()


class TestRunLoop:
  def test_sleeps_idle_interval_on_empty_queue(self, worker):
    wait = _stub_wait(worker)

    worker.run(max_iterations=3)

    assert [c.args[0] for c in wait.call_args_list] == [0.5, 0.5, 0.5]

  def test_no_sleep_while_tasks_remain(self, worker, pipeline, staging_store):
    wait = _stub_wait(worker)
    _queue_upload(pipeline, staging_store, "one.bin")
    _queue_upload(pipeline, staging_store, "two.bin")

    worker.run(max_iterations=3)

    assert worker.processed == 2
    assert [c.args[0] for c in wait.call_args_list] == [0.5]

  def test_backs_off_and_keeps_running_after_error(self, task_queue):
    pipeline = Mock()
    pipeline.process_queued.side_effect = [
      RuntimeError("database exploded"),
      IngestionOutcome("task_2", IngestionState.DONE, 100, record_id="file_2"),
    ]
    worker = IngestionWorker(
      task_queue, pipeline, queue_name=TEST_QUEUE, idle_interval=0.5, error_backoff=5.0
    )
    wait = _stub_wait(worker)
    valid = Mock(task_id="task_x")

    with patch(
      "filevault.workers.ingestion_worker.UploadTaskPayload.model_validate",
      return_value=valid,
    ):
      task_queue.enqueue(TEST_QUEUE, {"n": 1})
      task_queue.enqueue(TEST_QUEUE, {"n": 2})
      worker.run(max_iterations=3)

    assert pipeline.process_queued.call_count == 2
    assert worker.failed == 1
    assert worker.processed == 1
    assert [c.args[0] for c in wait.call_args_list] == [5.0, 0.5]

  def test_stop_ends_loop(self, worker):
    worker.stop()
    worker.run()

    assert worker.stopping


class TestMain:
  def test_once_with_empty_queue_exits_cleanly(self, task_queue, fake_redis):
    with patch(
      "sys.argv", ["filevault-worker", "--once", "--queue", TEST_QUEUE]
    ), patch(
      "filevault.config.valkey_registry.create_redis_client", return_value=fake_redis
    ), patch("signal.signal"):
      with pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 0
