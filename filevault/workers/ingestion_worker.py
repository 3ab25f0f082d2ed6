"""
Ingestion worker: drains the large-upload Task Queue.

Run one or more instances against the same queue; the queue's atomic pop
hands each task to exactly one of them.

Usage:
    python -m filevault.workers.ingestion_worker [--queue NAME] [--once]
"""

import argparse
import signal
import sys
import threading
from typing import Callable, Optional

from pydantic import ValidationError

from ..config import env
from ..logger import log_app_error, worker_logger as logger
from ..models.tasks import TaskStatus, UploadTaskPayload
from ..operations.ingestion import IngestionOutcome, IngestionPipeline, IngestionState
from ..operations.task_queue import TaskQueue


class IngestionWorker:
  """
  Polls a queue and runs each task through the ingestion pipeline.

  An empty queue is polled again after ``idle_interval`` seconds. An
  unexpected error while handling a task is logged and followed by a pause
  of ``error_backoff`` seconds; the loop itself only ends through ``stop``.
  """

  def __init__(
    self,
    task_queue: TaskQueue,
    pipeline: IngestionPipeline,
    queue_name: str = env.INGESTION_QUEUE_NAME,
    idle_interval: float = env.WORKER_IDLE_INTERVAL_SECONDS,
    error_backoff: float = env.WORKER_ERROR_BACKOFF_SECONDS,
    release_session: Optional[Callable[[], None]] = None,
  ):
    """
    Initialize the worker.

    Args:
        task_queue: Queue client, shared with the pipeline
        pipeline: Pipeline whose queued path processes each task
        queue_name: Queue to drain
        idle_interval: Seconds to sleep after an empty poll
        error_backoff: Seconds to sleep after an unexpected error
        release_session: Called after every task to return the DB session
    """
    self.task_queue = task_queue
    self.pipeline = pipeline
    self.queue_name = queue_name
    self.idle_interval = idle_interval
    self.error_backoff = error_backoff
    self.release_session = release_session
    self._stop_event = threading.Event()
    self.processed = 0
    self.failed = 0

  @property
  def stopping(self) -> bool:
    return self._stop_event.is_set()

  def stop(self) -> None:
    """Ask the loop to exit after the current task."""
    self._stop_event.set()

  def run_once(self) -> Optional[IngestionOutcome]:
    """
    Pop and process at most one task.

    Returns:
        The task outcome, or None when the queue was empty
    """
    raw = self.task_queue.dequeue(self.queue_name)
    if raw is None:
      return None

    try:
      try:
        payload = UploadTaskPayload.model_validate(raw)
      except ValidationError as e:
        return self._reject_payload(raw, e)

      logger.info(
        f"Processing task {payload.task_id}",
        extra={"task_id": payload.task_id, "queue": self.queue_name},
      )
      outcome = self.pipeline.process_queued(payload)
    finally:
      if self.release_session is not None:
        self.release_session()

    if outcome.succeeded:
      self.processed += 1
    else:
      self.failed += 1
    return outcome

  def run(self, max_iterations: Optional[int] = None) -> None:
    """
    Run the polling loop until stopped.

    Args:
        max_iterations: Stop after this many polls (None runs until ``stop``)
    """
    logger.info(
      f"Ingestion worker started on queue {self.queue_name}",
      extra={"queue": self.queue_name},
    )
    iterations = 0

    while not self._stop_event.is_set():
      if max_iterations is not None and iterations >= max_iterations:
        break
      iterations += 1

      try:
        outcome = self.run_once()
      except Exception as e:
        self.failed += 1
        log_app_error(
          e,
          component="ingestion_worker",
          action="process_task",
          metadata={"queue": self.queue_name},
        )
        self._stop_event.wait(self.error_backoff)
        continue

      if outcome is None:
        self._stop_event.wait(self.idle_interval)

    logger.info(
      f"Ingestion worker stopped: {self.processed} completed, {self.failed} failed",
      extra={"queue": self.queue_name},
    )

  def _reject_payload(self, raw: dict, error: ValidationError) -> IngestionOutcome:
    task_id = raw.get("task_id") if isinstance(raw.get("task_id"), str) else None
    message = f"invalid task payload: {error.errors()[0]['msg']}"
    logger.error(
      f"Discarding task from {self.queue_name}: {message}",
      extra={"task_id": task_id, "queue": self.queue_name},
    )
    if task_id:
      self.task_queue.set_status(task_id, TaskStatus.FAILED, error=message)
    return IngestionOutcome(
      task_id=task_id or "unknown",
      state=IngestionState.FAILED,
      progress=0,
      error=message,
    )


def main():
  """Main CLI entry point."""
  parser = argparse.ArgumentParser(
    description="Process queued large-file uploads into stored files"
  )
  parser.add_argument(
    "--queue",
    default=env.INGESTION_QUEUE_NAME,
    help="Queue to drain",
  )
  parser.add_argument(
    "--idle-interval",
    type=float,
    default=env.WORKER_IDLE_INTERVAL_SECONDS,
    help="Seconds to wait after an empty poll",
  )
  parser.add_argument(
    "--error-backoff",
    type=float,
    default=env.WORKER_ERROR_BACKOFF_SECONDS,
    help="Seconds to wait after an unexpected error",
  )
  parser.add_argument(
    "--once",
    action="store_true",
    help="Process at most one task and exit",
  )
  args = parser.parse_args()

  from ..config.valkey_registry import ValkeyDatabase, create_redis_client
  from ..config.validation import ConfigValidationError, EnvValidator
  from ..database import session
  from ..operations.factory import build_pipeline

  try:
    EnvValidator.validate_startup(env)
  except ConfigValidationError as e:
    logger.error(f"Refusing to start worker: {e}")
    sys.exit(1)

  task_queue = TaskQueue(
    create_redis_client(ValkeyDatabase.TASK_QUEUE),
    state_ttl=env.TASK_STATE_TTL_SECONDS,
  )
  worker = IngestionWorker(
    task_queue=task_queue,
    pipeline=build_pipeline(session, task_queue),
    queue_name=args.queue,
    idle_interval=args.idle_interval,
    error_backoff=args.error_backoff,
    release_session=session.remove,
  )

  def _handle_signal(signum, _frame):
    logger.info(f"Received signal {signum}, stopping after current task")
    worker.stop()

  signal.signal(signal.SIGINT, _handle_signal)
  signal.signal(signal.SIGTERM, _handle_signal)

  if args.once:
    outcome = worker.run_once()
    sys.exit(0 if outcome is None or outcome.succeeded else 1)

  worker.run()
  sys.exit(0)


if __name__ == "__main__":
  main()
