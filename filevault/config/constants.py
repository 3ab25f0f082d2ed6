"""
Static constants configuration.

This module contains operational constants (sizes, timeouts, progress
checkpoints) that don't change based on environment. Environment-tunable
values read these as their defaults in env.py.
"""

# =============================================================================
# UPLOAD LIMITS
# =============================================================================

MEBIBYTE = 1024 * 1024

# Uploads at or below this size take the synchronous path
LARGE_FILE_THRESHOLD_BYTES = 5 * MEBIBYTE

# Hard ceiling for a single upload
MAX_UPLOAD_SIZE_BYTES = 100 * MEBIBYTE

# Chunk size used when streaming blobs to and from disk
BLOB_COPY_CHUNK_SIZE = 1 * MEBIBYTE

DEFAULT_MIME_TYPE = "application/octet-stream"

# Longest extension preserved on stored names (dot included)
MAX_STORED_EXTENSION_LENGTH = 16

# =============================================================================
# TASK QUEUE
# =============================================================================

DEFAULT_INGESTION_QUEUE = "file-processing"

# Key prefixes in Valkey
TASK_PROGRESS_KEY_PREFIX = "progress"
TASK_STATUS_KEY_PREFIX = "task_status"

# Progress/status retention (seconds)
TASK_STATE_TTL_SECONDS = 86400  # 24 hours


class IngestionProgress:
  """Progress checkpoints reported by the large-file path."""

  QUEUED = 0
  READING = 10
  READ_COMPLETE = 30
  RELOCATED = 60
  PERSISTED = 90
  COMPLETE = 100


# =============================================================================
# WORKER LOOP
# =============================================================================

WORKER_IDLE_INTERVAL_SECONDS = 1.0
WORKER_ERROR_BACKOFF_SECONDS = 5.0

# =============================================================================
# DATABASE
# =============================================================================

DEFAULT_POOL_SIZE = 10
DEFAULT_MAX_OVERFLOW = 20
DEFAULT_POOL_TIMEOUT = 30
DEFAULT_POOL_RECYCLE = 3600

# =============================================================================
# LISTING
# =============================================================================

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SORTABLE_FIELDS = (
  "created_at",
  "updated_at",
  "original_name",
  "size_bytes",
  "mime_type",
)
DEFAULT_SORT_FIELD = "created_at"

# =============================================================================
# IDENTIFIER PREFIXES
# =============================================================================


class PrefixConstants:
  """Prefixes for ULID-based identifiers."""

  FILE = "file"
  TASK = "task"
