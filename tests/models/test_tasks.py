"""Tests for the upload task payload."""

import pytest
from pydantic import ValidationError

from filevault.models.tasks import TaskStatus, UploadTaskPayload
from filevault.utils.ulid import generate_prefixed_ulid


def _payload(**overrides):
  fields = {
    "task_id": generate_prefixed_ulid("task"),
    "record_id": generate_prefixed_ulid("file"),
    "temp_path": "1700000000000-abcdef0123456789.bin",
    "principal_id": "alice",
    "original_name": "video.mp4",
    "mime_type": "video/mp4",
    "declared_size": 6 * 1024 * 1024,
  }
  fields.update(overrides)
  return fields


class TestUploadTaskPayload:
  def test_valid_payload(self):
    payload = UploadTaskPayload(**_payload())
    assert payload.principal_id == "alice"
    assert payload.enqueued_at.tzinfo is not None

  def test_json_round_trip_preserves_fields(self):
    payload = UploadTaskPayload(**_payload())
    restored = UploadTaskPayload.model_validate_json(payload.model_dump_json())
    assert restored == payload

  @pytest.mark.parametrize(
    "field", ["task_id", "record_id", "temp_path", "principal_id", "mime_type"]
  )
  def test_required_fields(self, field):
    fields = _payload()
    del fields[field]

    with pytest.raises(ValidationError):
      UploadTaskPayload(**fields)

  def test_empty_principal_rejected(self):
    with pytest.raises(ValidationError):
      UploadTaskPayload(**_payload(principal_id=""))

  def test_negative_size_rejected(self):
    with pytest.raises(ValidationError):
      UploadTaskPayload(**_payload(declared_size=-1))

  def test_non_ulid_task_id_rejected(self):
    with pytest.raises(ValidationError):
      UploadTaskPayload(**_payload(task_id="task_not-a-ulid"))

  def test_unknown_fields_rejected(self):
    with pytest.raises(ValidationError):
      UploadTaskPayload(**_payload(priority="high"))

  def test_payload_is_immutable(self):
    payload = UploadTaskPayload(**_payload())
    with pytest.raises(ValidationError):
      payload.principal_id = "mallory"


def test_task_status_values():
  assert [s.value for s in TaskStatus] == ["queued", "processing", "completed", "failed"]
