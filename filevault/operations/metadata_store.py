"""
Metadata Store for FileRecords.

Wraps a SQLAlchemy session with the record operations the ingestion and
access-control layers need. Required-field checks run before anything is
sent to the database; database failures roll the session back and surface
as StorageIOError; concurrent modification surfaces as VersionConflictError.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, exists, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config.constants import (
  DEFAULT_PAGE_SIZE,
  DEFAULT_SORT_FIELD,
  MAX_PAGE_SIZE,
  SORTABLE_FIELDS,
)
from ..exceptions import (
  FileValidationError,
  RecordNotFoundError,
  StorageIOError,
  VersionConflictError,
)
from ..logger import logger
from ..models.file_record import FileRecord, FileShare, Visibility


@dataclass
class FileFilters:
  """Optional narrowing applied to an accessible-records listing."""

  query: Optional[str] = None
  mime_type: Optional[str] = None
  min_size: Optional[int] = None
  max_size: Optional[int] = None
  created_after: Optional[datetime] = None
  created_before: Optional[datetime] = None

  def validate(self) -> None:
    if self.min_size is not None and self.min_size < 0:
      raise FileValidationError("min_size must not be negative", field="min_size")
    if self.max_size is not None and self.max_size < 0:
      raise FileValidationError("max_size must not be negative", field="max_size")
    if (
      self.min_size is not None
      and self.max_size is not None
      and self.min_size > self.max_size
    ):
      raise FileValidationError(
        "min_size must not exceed max_size", field="min_size"
      )
    if (
      self.created_after is not None
      and self.created_before is not None
      and self.created_after > self.created_before
    ):
      raise FileValidationError(
        "created_after must not be later than created_before",
        field="created_after",
      )


@dataclass
class RecordPage:
  """One page of records plus the totals needed to page through the rest."""

  records: List[FileRecord] = field(default_factory=list)
  total: int = 0
  page: int = 1
  page_size: int = DEFAULT_PAGE_SIZE

  @property
  def pages(self) -> int:
    return math.ceil(self.total / self.page_size) if self.page_size else 0


def _escape_like(value: str) -> str:
  return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MetadataStore:
  """FileRecord persistence on top of one SQLAlchemy session."""

  def __init__(self, session: Session):
    self.session = session

  # ------------------------------------------------------------------
  # Create / read
  # ------------------------------------------------------------------

  def create(
    self,
    owner_id: str,
    original_name: str,
    stored_name: str,
    blob_path: str,
    size_bytes: int,
    mime_type: str,
    record_id: Optional[str] = None,
    task_id: Optional[str] = None,
    visibility: Visibility = Visibility.PRIVATE,
  ) -> FileRecord:
    """
    Persist a new FileRecord.

    Raises:
        FileValidationError: If a required field is missing or invalid
        StorageIOError: If the database rejected or failed the write
    """
    if not owner_id:
      raise FileValidationError("Owner is required", field="owner_id")
    if size_bytes is None or size_bytes < 0:
      raise FileValidationError("Size must not be negative", field="size_bytes")
    if not mime_type:
      raise FileValidationError("MIME type is required", field="mime_type")
    if not original_name:
      raise FileValidationError("Original name is required", field="original_name")
    if not stored_name or not blob_path:
      raise FileValidationError("Stored blob is required", field="blob_path")

    record = FileRecord(
      owner_id=owner_id,
      original_name=original_name,
      stored_name=stored_name,
      blob_path=blob_path,
      size_bytes=size_bytes,
      mime_type=mime_type,
      visibility=Visibility(visibility).value,
      task_id=task_id,
    )
    if record_id:
      record.id = record_id

    self.session.add(record)
    self._commit("create", record_id=record_id)
    self.session.refresh(record)

    logger.info(
      f"Created file record {record.id}",
      extra={"record_id": record.id, "user_id": owner_id, "task_id": task_id},
    )
    return record

  def get(self, record_id: str) -> Optional[FileRecord]:
    try:
      return FileRecord.get_by_id(record_id, self.session)
    except SQLAlchemyError as e:
      self.session.rollback()
      raise StorageIOError(
        f"Failed loading file record: {e}", operation="get", record_id=record_id
      ) from e

  def find_by_task(self, task_id: str) -> Optional[FileRecord]:
    try:
      return FileRecord.get_by_task_id(task_id, self.session)
    except SQLAlchemyError as e:
      self.session.rollback()
      raise StorageIOError(
        f"Failed loading file record for task: {e}",
        operation="find_by_task",
        task_id=task_id,
      ) from e

  def find_owned(self, owner_id: str, record_id: str) -> FileRecord:
    """
    Load a record owned by ``owner_id``.

    Raises:
        RecordNotFoundError: If the record is absent or owned by someone else
    """
    record = self.get(record_id)
    if record is None or record.owner_id != owner_id:
      raise RecordNotFoundError(record_id)
    return record

  def find_accessible(
    self,
    principal_id: str,
    filters: Optional[FileFilters] = None,
    sort_by: str = DEFAULT_SORT_FIELD,
    order: str = "desc",
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
  ) -> RecordPage:
    """
    List records the principal owns, is a member of, or that are public.

    Args:
        principal_id: Requesting principal
        filters: Optional name query, MIME type, size and creation-date bounds
        sort_by: One of SORTABLE_FIELDS
        order: "asc" or "desc"
        page: 1-based page number
        page_size: Records per page, at most MAX_PAGE_SIZE

    Returns:
        RecordPage with the requested slice and the total match count
    """
    if sort_by not in SORTABLE_FIELDS:
      raise FileValidationError(
        f"Cannot sort by '{sort_by}'; allowed: {', '.join(SORTABLE_FIELDS)}",
        field="sort_by",
      )
    if order not in ("asc", "desc"):
      raise FileValidationError("Order must be 'asc' or 'desc'", field="order")
    if page < 1:
      raise FileValidationError("Page must be at least 1", field="page")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
      raise FileValidationError(
        f"Page size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
      )

    filters = filters or FileFilters()
    filters.validate()

    is_member = exists().where(
      and_(FileShare.file_id == FileRecord.id, FileShare.principal_id == principal_id)
    )
    query = self.session.query(FileRecord).filter(
      or_(
        FileRecord.owner_id == principal_id,
        FileRecord.visibility == Visibility.PUBLIC.value,
        is_member,
      )
    )

    if filters.query:
      pattern = f"%{_escape_like(filters.query)}%"
      query = query.filter(
        or_(
          FileRecord.original_name.ilike(pattern, escape="\\"),
          FileRecord.stored_name.ilike(pattern, escape="\\"),
        )
      )
    if filters.mime_type:
      query = query.filter(FileRecord.mime_type == filters.mime_type)
    if filters.min_size is not None:
      query = query.filter(FileRecord.size_bytes >= filters.min_size)
    if filters.max_size is not None:
      query = query.filter(FileRecord.size_bytes <= filters.max_size)
    if filters.created_after is not None:
      query = query.filter(FileRecord.created_at >= filters.created_after)
    if filters.created_before is not None:
      query = query.filter(FileRecord.created_at <= filters.created_before)

    sort_column = getattr(FileRecord, sort_by)
    if order == "asc":
      ordering = (sort_column.asc(), FileRecord.id.asc())
    else:
      ordering = (sort_column.desc(), FileRecord.id.desc())

    try:
      total = query.count()
      records = (
        query.order_by(*ordering)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
      )
    except SQLAlchemyError as e:
      self.session.rollback()
      raise StorageIOError(
        f"Failed listing file records: {e}", operation="find_accessible"
      ) from e

    return RecordPage(records=records, total=total, page=page, page_size=page_size)

  # ------------------------------------------------------------------
  # Mutations
  # ------------------------------------------------------------------

  def add_share(
    self,
    record: FileRecord,
    principal_id: str,
    expected_version: Optional[int] = None,
  ) -> FileRecord:
    """Add a principal to the shared-with set; an existing member is a no-op."""
    self._check_version(record, expected_version)
    if record.is_shared_with(principal_id):
      return record

    record.shares.append(FileShare(principal_id=principal_id))
    self._touch(record)
    self._commit("add_share", record_id=record.id)
    self.session.refresh(record)
    return record

  def remove_share(
    self,
    record: FileRecord,
    principal_id: str,
    expected_version: Optional[int] = None,
  ) -> FileRecord:
    """Remove a principal from the shared-with set; a non-member is a no-op."""
    self._check_version(record, expected_version)
    remaining = [s for s in record.shares if s.principal_id != principal_id]
    if len(remaining) == len(record.shares):
      return record

    record.shares = remaining
    self._touch(record)
    self._commit("remove_share", record_id=record.id)
    self.session.refresh(record)
    return record

  def set_visibility(
    self,
    record: FileRecord,
    visibility: Visibility,
    expected_version: Optional[int] = None,
  ) -> FileRecord:
    self._check_version(record, expected_version)
    value = Visibility(visibility).value
    if record.visibility == value:
      return record

    record.visibility = value
    self._touch(record)
    self._commit("set_visibility", record_id=record.id)
    self.session.refresh(record)
    return record

  def delete(self, record: FileRecord, expected_version: Optional[int] = None) -> None:
    self._check_version(record, expected_version)
    record_id = record.id
    self.session.delete(record)
    self._commit("delete", record_id=record_id)
    logger.info(f"Deleted file record {record_id}", extra={"record_id": record_id})

  # ------------------------------------------------------------------
  # Helpers
  # ------------------------------------------------------------------

  @staticmethod
  def _check_version(record: FileRecord, expected_version: Optional[int]) -> None:
    if expected_version is not None and record.version != expected_version:
      raise VersionConflictError(record.id, expected_version, record.version)

  @staticmethod
  def _touch(record: FileRecord) -> None:
    # Dirties the row itself so membership changes also bump the version
    record.updated_at = datetime.now(timezone.utc)

  def _commit(self, operation: str, record_id: Optional[str] = None) -> None:
    try:
      self.session.commit()
    except StaleDataError as e:
      self.session.rollback()
      raise VersionConflictError(record_id or "unknown") from e
    except SQLAlchemyError as e:
      self.session.rollback()
      logger.error(
        f"Metadata store {operation} failed: {e}",
        extra={"action": operation, "record_id": record_id},
      )
      raise StorageIOError(
        f"Metadata store unavailable during {operation}",
        operation=operation,
        record_id=record_id,
      ) from e
