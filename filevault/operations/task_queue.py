"""
Valkey-backed Task Queue for deferred ingestion work.

Each named queue is a Valkey list: producers LPUSH and consumers RPOP, which
gives FIFO order and hands every payload to exactly one consumer. Progress
and status for each task live in separate keys next to the queue:

- ``progress:{task_id}``: integer 0-100
- ``task_status:{task_id}``: hash with ``status``, ``record_id`` and ``error``

Both keys expire ``state_ttl`` seconds after their last write.

The client is injected by the caller. Every operation absorbs Valkey errors:
writes return False and reads return their empty default, so the request
path and the worker decide how to degrade.
"""

import json
from typing import Any, Dict, Mapping, Optional, Union

import redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from ..config.constants import (
  TASK_PROGRESS_KEY_PREFIX,
  TASK_STATE_TTL_SECONDS,
  TASK_STATUS_KEY_PREFIX,
)
from ..logger import logger
from ..models.tasks import TaskStatus


class TaskQueue:
  """Named FIFO queues plus a per-task progress map."""

  def __init__(
    self, redis_client: redis.Redis, state_ttl: int = TASK_STATE_TTL_SECONDS
  ):
    """
    Initialize the queue.

    Args:
        redis_client: Valkey/Redis client shared by producers and consumers
        state_ttl: Seconds to keep progress and status keys after a write
    """
    self.redis = redis_client
    self.state_ttl = state_ttl

  @staticmethod
  def progress_key(task_id: str) -> str:
    return f"{TASK_PROGRESS_KEY_PREFIX}:{task_id}"

  @staticmethod
  def status_key(task_id: str) -> str:
    return f"{TASK_STATUS_KEY_PREFIX}:{task_id}"

  def enqueue(
    self, queue_name: str, payload: Union[BaseModel, Mapping[str, Any]]
  ) -> bool:
    """
    Push a payload onto a queue.

    Returns:
        True if the payload was pushed, False if Valkey was unavailable
    """
    if isinstance(payload, BaseModel):
      message = payload.model_dump_json()
    else:
      message = json.dumps(dict(payload), default=str)

    try:
      self.redis.lpush(queue_name, message)
      return True
    except RedisError as e:
      logger.error(
        f"Failed to enqueue task on {queue_name}: {e}",
        extra={"queue": queue_name},
      )
      return False

  def dequeue(self, queue_name: str) -> Optional[Dict[str, Any]]:
    """
    Pop the oldest payload from a queue without blocking.

    Returns:
        The decoded payload, or None if the queue is empty, unreachable,
        or the popped message was not a JSON object
    """
    try:
      message = self.redis.rpop(queue_name)
    except RedisError as e:
      logger.error(
        f"Failed to dequeue from {queue_name}: {e}", extra={"queue": queue_name}
      )
      return None
    except UnicodeDecodeError as e:
      # decode_responses clients decode after the pop
      logger.error(
        f"Dropping non-UTF-8 message from {queue_name}: {e}",
        extra={"queue": queue_name},
      )
      return None

    if message is None:
      return None

    try:
      if isinstance(message, bytes):
        message = message.decode("utf-8")
      payload = json.loads(message)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
      logger.error(
        f"Dropping undecodable message from {queue_name}: {e}",
        extra={"queue": queue_name},
      )
      return None

    if not isinstance(payload, dict):
      logger.error(
        f"Dropping non-object message from {queue_name}",
        extra={"queue": queue_name},
      )
      return None

    return payload

  def queue_length(self, queue_name: str) -> int:
    try:
      return int(self.redis.llen(queue_name))
    except RedisError as e:
      logger.warning(f"Failed to read length of {queue_name}: {e}")
      return 0

  def set_progress(self, task_id: str, percent: int) -> bool:
    """
    Record task progress.

    Args:
        task_id: Task identifier
        percent: Integer between 0 and 100

    Returns:
        True if stored, False if Valkey was unavailable

    Raises:
        ValueError: If percent is outside 0-100
    """
    if not 0 <= percent <= 100:
      raise ValueError(f"Progress must be between 0 and 100, got {percent}")

    try:
      self.redis.set(self.progress_key(task_id), int(percent), ex=self.state_ttl)
      return True
    except RedisError as e:
      logger.warning(
        f"Failed to set progress for {task_id}: {e}",
        extra={"task_id": task_id, "progress": percent},
      )
      return False

  def get_progress(self, task_id: str) -> int:
    """Get task progress; unknown tasks and read failures report 0."""
    try:
      value = self.redis.get(self.progress_key(task_id))
    except RedisError as e:
      logger.warning(
        f"Failed to read progress for {task_id}: {e}", extra={"task_id": task_id}
      )
      return 0

    if value is None:
      return 0

    try:
      return int(value)
    except (TypeError, ValueError):
      logger.warning(
        f"Ignoring malformed progress value for {task_id}: {value!r}",
        extra={"task_id": task_id},
      )
      return 0

  def set_status(
    self,
    task_id: str,
    status: TaskStatus,
    record_id: Optional[str] = None,
    error: Optional[str] = None,
  ) -> bool:
    """Record the lifecycle status of a task, with the produced record or error."""
    fields = {"status": status.value}
    if record_id:
      fields["record_id"] = record_id
    if error:
      fields["error"] = error[:500]

    key = self.status_key(task_id)
    try:
      pipe = self.redis.pipeline()
      if status != TaskStatus.FAILED:
        # Clear the error left by an earlier failed attempt
        pipe.hdel(key, "error")
      pipe.hset(key, mapping=fields)
      pipe.expire(key, self.state_ttl)
      pipe.execute()
      return True
    except RedisError as e:
      logger.warning(
        f"Failed to set status {status.value} for {task_id}: {e}",
        extra={"task_id": task_id},
      )
      return False

  def get_status(self, task_id: str) -> Optional[Dict[str, str]]:
    """Get the status hash of a task, or None when unknown or unreadable."""
    try:
      fields = self.redis.hgetall(self.status_key(task_id))
    except RedisError as e:
      logger.warning(
        f"Failed to read status for {task_id}: {e}", extra={"task_id": task_id}
      )
      return None

    if not fields:
      return None

    return {
      (k.decode("utf-8") if isinstance(k, bytes) else k): (
        v.decode("utf-8") if isinstance(v, bytes) else v
      )
      for k, v in fields.items()
    }
