"""
Local filesystem Blob Store.

Blobs are written under a single root directory with server-generated names.
The handle returned by ``put`` (``blob_path``) is the name relative to the
root, so records stay valid if the root is mounted elsewhere.
"""

import os
import re
import secrets
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

from filevault.config.constants import BLOB_COPY_CHUNK_SIZE, MAX_STORED_EXTENSION_LENGTH
from filevault.exceptions import BlobNotFoundError, StorageIOError
from filevault.logger import storage_logger
from filevault.utils.path_validation import resolve_within_root

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]+$")

# Attempts at a fresh name when an exclusive create collides
_MAX_NAME_ATTEMPTS = 3


def generate_blob_name(
  original_name: str,
  timestamp_ms: Optional[int] = None,
  token: Optional[str] = None,
) -> str:
  """
  Build a unique stored name for an upload.

  The name is ``<epoch millis>-<16 hex chars><ext>``. Only the lower-cased
  extension of the original name survives, and only when it is a short
  alphanumeric suffix; everything else the client sent is discarded.

  Args:
      original_name: Client-supplied display name
      timestamp_ms: Override for the time component
      token: Override for the random component

  Returns:
      A single-segment file name safe to use under a storage root
  """
  if timestamp_ms is None:
    timestamp_ms = time.time_ns() // 1_000_000
  if token is None:
    token = secrets.token_hex(8)

  extension = os.path.splitext(os.path.basename(original_name or ""))[1].lower()
  if len(extension) > MAX_STORED_EXTENSION_LENGTH or not _EXTENSION_RE.match(
    extension
  ):
    extension = ""

  return f"{timestamp_ms}-{token}{extension}"


@dataclass(frozen=True)
class StorageRoot:
  """Directory under which a Blob Store keeps its blobs."""

  path: Path

  @classmethod
  def from_setting(cls, value: Union[str, Path]) -> "StorageRoot":
    return cls(Path(value).expanduser().resolve())

  def ensure(self) -> "StorageRoot":
    """Create the directory if it does not exist yet."""
    try:
      self.path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
      raise StorageIOError(
        f"Storage root {self.path} is not usable: {e}", operation="ensure_root"
      ) from e
    return self

  def locate(self, blob_path: str) -> Path:
    return resolve_within_root(self.path, blob_path)


class BlobStore:
  """
  Writes, reads and removes blobs under one StorageRoot.

  Writes never replace existing content: files are opened with exclusive
  create, and a collision is retried under a fresh name.
  """

  def __init__(self, root: StorageRoot, chunk_size: int = BLOB_COPY_CHUNK_SIZE):
    self.root = root.ensure()
    self.chunk_size = chunk_size

  def put(self, source: Union[bytes, BinaryIO], original_name: str = "") -> str:
    """
    Write bytes to a newly generated blob.

    Args:
        source: Raw bytes or a readable binary stream
        original_name: Display name, used only for the stored extension

    Returns:
        The blob path handle for the new blob

    Raises:
        StorageIOError: If the root is not writable or the disk is full
    """
    for _ in range(_MAX_NAME_ATTEMPTS):
      blob_name = generate_blob_name(original_name)
      target = self.root.locate(blob_name)
      try:
        handle = open(target, "xb")
      except FileExistsError:
        storage_logger.warning(f"Blob name collision on {blob_name}, regenerating")
        continue
      except OSError as e:
        raise StorageIOError(
          f"Cannot create blob in {self.root.path}: {e}", operation="put"
        ) from e

      try:
        with handle:
          if isinstance(source, (bytes, bytearray, memoryview)):
            handle.write(source)
          else:
            shutil.copyfileobj(source, handle, self.chunk_size)
          handle.flush()
          os.fsync(handle.fileno())
      except OSError as e:
        self._discard_partial(target)
        raise StorageIOError(
          f"Failed writing blob {blob_name}: {e}", operation="put"
        ) from e

      storage_logger.debug(f"Stored blob {blob_name}")
      return blob_name

    raise StorageIOError(
      "Could not allocate a unique blob name", operation="put"
    )

  def read(self, blob_path: str) -> BinaryIO:
    """
    Open a blob for reading. The caller closes the returned stream.

    Raises:
        BlobNotFoundError: If the blob does not exist
        StorageIOError: If the blob exists but cannot be opened
    """
    target = self.root.locate(blob_path)
    try:
      return open(target, "rb")
    except FileNotFoundError as e:
      raise BlobNotFoundError(blob_path) from e
    except OSError as e:
      raise StorageIOError(
        f"Failed opening blob {blob_path}: {e}", operation="read"
      ) from e

  def size(self, blob_path: str) -> int:
    target = self.root.locate(blob_path)
    try:
      return target.stat().st_size
    except FileNotFoundError as e:
      raise BlobNotFoundError(blob_path) from e
    except OSError as e:
      raise StorageIOError(
        f"Failed reading size of blob {blob_path}: {e}", operation="size"
      ) from e

  def exists(self, blob_path: str) -> bool:
    return self.root.locate(blob_path).is_file()

  def remove(self, blob_path: str) -> bool:
    """
    Delete a blob. A blob that is already gone counts as removed.

    Returns:
        True if a file was deleted, False if it was already absent

    Raises:
        StorageIOError: If the file exists but cannot be deleted
    """
    target = self.root.locate(blob_path)
    try:
      target.unlink()
    except FileNotFoundError:
      storage_logger.info(f"Blob {blob_path} already absent, nothing to remove")
      return False
    except OSError as e:
      raise StorageIOError(
        f"Failed removing blob {blob_path}: {e}", operation="remove"
      ) from e
    storage_logger.debug(f"Removed blob {blob_path}")
    return True

  def _discard_partial(self, target: Path) -> None:
    try:
      target.unlink()
    except FileNotFoundError:
      pass
    except OSError as e:
      storage_logger.error(f"Could not remove partial blob {target.name}: {e}")
