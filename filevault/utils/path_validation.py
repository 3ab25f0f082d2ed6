import re
from pathlib import Path

from filevault.exceptions import FileValidationError
from filevault.logger import storage_logger

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_blob_name(blob_name: str) -> str:
  """
  Validate a blob name to prevent path traversal attacks.

  Blob names are single path segments generated by the Blob Store; anything
  else reaching this function came from outside and is rejected.

  Args:
      blob_name: Stored blob name to validate

  Returns:
      The validated blob name

  Raises:
      FileValidationError: If blob_name contains illegal characters or patterns
  """
  if not blob_name:
    raise FileValidationError("Blob name cannot be empty", field="blob_path")

  if ".." in blob_name or "/" in blob_name or "\\" in blob_name or "\x00" in blob_name:
    storage_logger.warning(
      f"Path traversal attempt detected in blob name: {blob_name[:50]}"
    )
    raise FileValidationError(
      "Invalid blob name: contains illegal characters", field="blob_path"
    )

  if not _SAFE_SEGMENT_RE.match(blob_name):
    storage_logger.warning(f"Invalid blob name format: {blob_name[:50]}")
    raise FileValidationError("Invalid blob name format", field="blob_path")

  return blob_name


def resolve_within_root(root: Path, blob_name: str) -> Path:
  """
  Build the absolute path of a blob and check it stays under ``root``.

  Args:
      root: Storage root directory
      blob_name: Blob name relative to the root

  Returns:
      Resolved Path inside the root

  Raises:
      FileValidationError: If the name is invalid or escapes the root
  """
  validated = validate_blob_name(blob_name)
  candidate = root / validated

  try:
    resolved_path = candidate.resolve()
    resolved_root = root.resolve()
    resolved_path.relative_to(resolved_root)
  except (ValueError, RuntimeError) as e:
    storage_logger.error(
      f"Path validation failed for blob {blob_name}: {e}",
      extra={"metadata": {"root": str(root)}},
    )
    raise FileValidationError(
      "Invalid blob name: path outside storage root", field="blob_path"
    )

  if resolved_path == resolved_root:
    raise FileValidationError("Invalid blob name", field="blob_path")

  return resolved_path
