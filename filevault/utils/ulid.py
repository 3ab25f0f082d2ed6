"""
Prefixed ULID identifiers.

Records and tasks are named ``file_<ULID>`` and ``task_<ULID>``. The ULID
part sorts by creation time, so ids read in order in logs and index scans.
"""

from typing import Optional

from ulid import ULID


def generate_ulid() -> str:
  """Bare 26-character ULID, e.g. ``01ARZ3NDEKTSV4RRFFQ69G5FAV``."""
  return str(ULID())


def generate_prefixed_ulid(prefix: str) -> str:
  return f"{prefix}_{generate_ulid()}"


def parse_ulid(value: str) -> Optional[ULID]:
  """
  Recover the ULID from a bare or prefixed identifier.

  Args:
      value: ``01ARZ...`` or ``task_01ARZ...``

  Returns:
      The parsed ULID, or None when the identifier is malformed
  """
  _, _, encoded = value.rpartition("_")
  try:
    return ULID.from_str(encoded)
  except ValueError:
    return None
