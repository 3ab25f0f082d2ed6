"""
Access Control for FileRecords.

Reading is allowed to the owner, to members of the shared-with set, and to
anyone when the record is public. Sharing, visibility changes and deletion
are owner-only. A caller who cannot read a record is told it does not exist,
so existence is never disclosed; a caller who can read it but may not modify
it gets Forbidden.
"""

from enum import Enum
from typing import Optional

from ..exceptions import FileValidationError, ForbiddenError, RecordNotFoundError
from ..models.file_record import FileRecord


class AccessMode(str, Enum):
  READ = "read"
  SHARE = "share"
  DELETE = "delete"


class SharePermission(str, Enum):
  """
  Permission requested when sharing.

  Only membership is tracked: READ and WRITE both grant membership, NONE
  revokes it.
  """

  READ = "read"
  WRITE = "write"
  NONE = "none"


class ShareAction(str, Enum):
  ADD = "add"
  REMOVE = "remove"


def can_access(principal_id: str, record: FileRecord, mode: AccessMode) -> bool:
  if not principal_id:
    return False

  is_owner = principal_id == record.owner_id
  if mode == AccessMode.READ:
    return is_owner or record.is_public or record.is_shared_with(principal_id)

  return is_owner


def authorize(
  principal_id: str,
  record: Optional[FileRecord],
  mode: AccessMode,
  record_id: str,
) -> FileRecord:
  """
  Check that a principal may perform ``mode`` on a record.

  Args:
      principal_id: Requesting principal
      record: The loaded record, or None if it does not exist
      mode: Requested access mode
      record_id: Identifier the caller asked for, used in error details

  Returns:
      The record, when access is allowed

  Raises:
      RecordNotFoundError: If the record is absent or unreadable by the principal
      ForbiddenError: If the principal can read the record but not perform ``mode``
  """
  if record is None or not can_access(principal_id, record, AccessMode.READ):
    raise RecordNotFoundError(record_id)

  if mode != AccessMode.READ and not can_access(principal_id, record, mode):
    raise ForbiddenError(record_id, mode.value)

  return record


def resolve_share(
  record: FileRecord, target_principal_id: str, permission: SharePermission
) -> ShareAction:
  """
  Decide what a share request does to the shared-with set.

  Raises:
      FileValidationError: If the target is empty or is the owner
  """
  if not target_principal_id or not target_principal_id.strip():
    raise FileValidationError(
      "Target principal is required", field="target_principal_id"
    )
  if target_principal_id == record.owner_id:
    raise FileValidationError(
      "Cannot share a file with its owner", field="target_principal_id"
    )

  if SharePermission(permission) == SharePermission.NONE:
    return ShareAction.REMOVE
  return ShareAction.ADD
