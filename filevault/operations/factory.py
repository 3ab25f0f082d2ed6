"""Construction of the ingestion components from environment configuration."""

from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..config import env
from ..storage.blob_store import BlobStore, StorageRoot
from .file_service import FileService
from .ingestion import IngestionPipeline
from .metadata_store import MetadataStore
from .task_queue import TaskQueue


def build_blob_stores() -> Tuple[BlobStore, BlobStore]:
  """Create the permanent and staging Blob Stores, creating their roots."""
  blob_store = BlobStore(StorageRoot.from_setting(env.STORAGE_ROOT))
  staging_store = BlobStore(StorageRoot.from_setting(env.STAGING_ROOT))
  return blob_store, staging_store


def build_pipeline(
  session: Session,
  task_queue: TaskQueue,
  blob_store: Optional[BlobStore] = None,
  staging_store: Optional[BlobStore] = None,
) -> IngestionPipeline:
  if blob_store is None or staging_store is None:
    default_blob, default_staging = build_blob_stores()
    blob_store = blob_store or default_blob
    staging_store = staging_store or default_staging

  return IngestionPipeline(
    blob_store=blob_store,
    staging_store=staging_store,
    task_queue=task_queue,
    metadata_store=MetadataStore(session),
    threshold=env.LARGE_FILE_THRESHOLD_BYTES,
    max_upload_size=env.MAX_UPLOAD_SIZE_BYTES,
    allowed_mime_types=env.UPLOAD_ALLOWED_MIME_TYPES,
    queue_name=env.INGESTION_QUEUE_NAME,
  )


def build_file_service(
  session: Session,
  task_queue: TaskQueue,
  blob_store: BlobStore,
  staging_store: BlobStore,
) -> FileService:
  pipeline = build_pipeline(session, task_queue, blob_store, staging_store)
  return FileService(
    metadata_store=pipeline.metadata_store,
    pipeline=pipeline,
    task_queue=task_queue,
    blob_store=blob_store,
  )
