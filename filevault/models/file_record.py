from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional

from sqlalchemy import (
  Column,
  String,
  DateTime,
  ForeignKey,
  BigInteger,
  Integer,
  Index,
  UniqueConstraint,
)
from sqlalchemy.orm import relationship, Session

from ..config.constants import PrefixConstants
from ..database import Base
from ..utils.ulid import generate_prefixed_ulid


class Visibility(str, Enum):
  """Who besides the owner and explicit members may read a file."""

  PRIVATE = "private"
  PUBLIC = "public"


def _utcnow() -> datetime:
  return datetime.now(timezone.utc)


class FileRecord(Base):
  """
  Metadata row describing one stored blob and its access rules.

  ``stored_name``, ``original_name`` and ``owner_id`` never change after
  creation. ``version`` is maintained by the mapper: it starts at 1 and every
  UPDATE or DELETE is issued with ``WHERE version = <loaded version>``, so a
  concurrent writer fails with StaleDataError instead of silently overwriting.
  """

  __tablename__ = "file_records"
  __table_args__ = (
    Index("idx_file_records_owner_id", "owner_id"),
    Index("idx_file_records_visibility", "visibility"),
    Index("idx_file_records_created_at", "created_at"),
    UniqueConstraint("task_id", name="uq_file_records_task_id"),
  )

  id = Column(
    String,
    primary_key=True,
    default=lambda: generate_prefixed_ulid(PrefixConstants.FILE),
  )
  stored_name = Column(String, nullable=False, unique=True)
  original_name = Column(String, nullable=False)
  blob_path = Column(String, nullable=False)
  size_bytes = Column(BigInteger, nullable=False)
  mime_type = Column(String, nullable=False)
  owner_id = Column(String, nullable=False)
  visibility = Column(String, nullable=False, default=Visibility.PRIVATE.value)
  version = Column(Integer, nullable=False)

  # Large-path task that produced this record, if any
  task_id = Column(String, nullable=True)

  created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
  updated_at = Column(
    DateTime(timezone=True),
    default=_utcnow,
    onupdate=_utcnow,
    nullable=False,
  )

  shares = relationship(
    "FileShare",
    back_populates="file",
    cascade="all, delete-orphan",
    lazy="selectin",
  )

  __mapper_args__ = {"version_id_col": version}

  def __repr__(self) -> str:
    return f"<FileRecord {self.id} owner={self.owner_id} name={self.original_name} v{self.version}>"

  @property
  def shared_with(self) -> FrozenSet[str]:
    return frozenset(share.principal_id for share in self.shares)

  @property
  def is_public(self) -> bool:
    return self.visibility == Visibility.PUBLIC.value

  def is_shared_with(self, principal_id: str) -> bool:
    return any(share.principal_id == principal_id for share in self.shares)

  @classmethod
  def get_by_id(cls, record_id: str, session: Session) -> Optional["FileRecord"]:
    return session.query(cls).filter(cls.id == record_id).first()

  @classmethod
  def get_by_task_id(cls, task_id: str, session: Session) -> Optional["FileRecord"]:
    return session.query(cls).filter(cls.task_id == task_id).first()


class FileShare(Base):
  """Membership of one principal in a file's shared-with set."""

  __tablename__ = "file_shares"
  __table_args__ = (
    UniqueConstraint("file_id", "principal_id", name="uq_file_shares_file_principal"),
    Index("idx_file_shares_principal_id", "principal_id"),
  )

  id = Column(Integer, primary_key=True, autoincrement=True)
  file_id = Column(
    String,
    ForeignKey("file_records.id", ondelete="CASCADE"),
    nullable=False,
  )
  principal_id = Column(String, nullable=False)
  created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

  file = relationship("FileRecord", back_populates="shares")

  def __repr__(self) -> str:
    return f"<FileShare file_id={self.file_id} principal_id={self.principal_id}>"
