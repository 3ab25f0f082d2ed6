"""
File Storage Endpoints.

Upload Workflow:
1. `POST /v1/files` with a multipart `file`
2. Files up to the large-file threshold are stored immediately (201 with
   the file record)
3. Larger files are accepted for background processing (202 with a
   `task_id` and the future `record_id`)
4. Poll `GET /v1/files/tasks/{task_id}/progress` until progress is 100,
   then read the record

Access Rules:
- Owners, principals the file is shared with, and everyone for public
  files can read
- Only owners can share, change visibility or delete
- Files a caller cannot read are reported as not found
"""

import os
from datetime import datetime
from typing import Iterator, Optional
from urllib.parse import quote

from fastapi import (
  APIRouter,
  Body,
  Depends,
  File,
  Path,
  Query,
  UploadFile,
  status,
)
from fastapi.responses import JSONResponse, StreamingResponse

from ..config.constants import (
  BLOB_COPY_CHUNK_SIZE,
  DEFAULT_MIME_TYPE,
  DEFAULT_PAGE_SIZE,
  DEFAULT_SORT_FIELD,
  MAX_PAGE_SIZE,
)
from ..logger import api_logger
from ..models.api.common import ErrorResponse
from ..models.api.files import (
  FileListResponse,
  FileRecordResponse,
  QueuedUploadResponse,
  ShareRequest,
  TaskProgressResponse,
  VisibilityRequest,
)
from ..models.file_record import FileRecord
from ..operations.file_service import FileService
from ..operations.ingestion import QueuedUpload
from ..operations.metadata_store import FileFilters
from .dependencies import get_current_principal, get_file_service

router = APIRouter(prefix="/v1/files", tags=["Files"])

ERROR_RESPONSES = {
  400: {"description": "Invalid request", "model": ErrorResponse},
  401: {"description": "Authentication required", "model": ErrorResponse},
  404: {"description": "File not found", "model": ErrorResponse},
  503: {"description": "Storage or queue unavailable, retry", "model": ErrorResponse},
}


def _upload_size(upload: UploadFile) -> int:
  if upload.size is not None:
    return upload.size
  handle = upload.file
  handle.seek(0, os.SEEK_END)
  size = handle.tell()
  handle.seek(0)
  return size


@router.post(
  "",
  operation_id="uploadFile",
  summary="Upload File",
  status_code=status.HTTP_201_CREATED,
  responses={
    201: {"description": "File stored", "model": FileRecordResponse},
    202: {"description": "Large file accepted for processing", "model": QueuedUploadResponse},
    **ERROR_RESPONSES,
  },
)
def upload_file(
  file: UploadFile = File(..., description="File contents"),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> JSONResponse:
  """
  Upload a file.

  Small files are written before the response is sent. Large files are
  staged and queued; the response carries the task to poll.
  """
  size = _upload_size(file)
  result = service.ingest_upload(
    principal_id=principal_id,
    original_name=file.filename or "",
    mime_type=file.content_type or DEFAULT_MIME_TYPE,
    source=file.file,
    declared_size=size,
  )

  if isinstance(result, QueuedUpload):
    body = QueuedUploadResponse(
      task_id=result.task_id, record_id=result.record_id, status=result.status
    )
    return JSONResponse(
      status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json")
    )

  body = FileRecordResponse.model_validate(result)
  return JSONResponse(
    status_code=status.HTTP_201_CREATED, content=body.model_dump(mode="json")
  )


@router.get(
  "/tasks/{task_id}/progress",
  response_model=TaskProgressResponse,
  operation_id="getUploadProgress",
  summary="Get Upload Progress",
  responses=ERROR_RESPONSES,
)
def get_upload_progress(
  task_id: str = Path(..., min_length=1, max_length=64),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> TaskProgressResponse:
  """Progress of a large upload, 0-100. Unknown tasks report 0."""
  state = service.get_task_state(task_id)
  return TaskProgressResponse(
    task_id=state.task_id,
    progress=state.progress,
    status=state.status,
    record_id=state.record_id,
    error=state.error,
  )


@router.get(
  "",
  response_model=FileListResponse,
  operation_id="listFiles",
  summary="List Accessible Files",
  responses=ERROR_RESPONSES,
)
def list_files(
  q: Optional[str] = Query(None, max_length=255, description="Name contains (case-insensitive)"),
  mime_type: Optional[str] = Query(None, description="Exact content type"),
  min_size: Optional[int] = Query(None, ge=0),
  max_size: Optional[int] = Query(None, ge=0),
  created_after: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
  created_before: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
  sort_by: str = Query(DEFAULT_SORT_FIELD),
  order: str = Query("desc", pattern="^(asc|desc)$"),
  page: int = Query(1, ge=1),
  page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> FileListResponse:
  """Files the caller owns, was shared, or that are public."""
  filters = FileFilters(
    query=q,
    mime_type=mime_type,
    min_size=min_size,
    max_size=max_size,
    created_after=created_after,
    created_before=created_before,
  )
  result = service.list_accessible(
    principal_id,
    filters=filters,
    page=page,
    page_size=page_size,
    sort_by=sort_by,
    order=order,
  )
  return FileListResponse(
    records=[FileRecordResponse.model_validate(r) for r in result.records],
    total=result.total,
    page=result.page,
    page_size=result.page_size,
    pages=result.pages,
  )


@router.get(
  "/{record_id}",
  response_model=FileRecordResponse,
  operation_id="getFile",
  summary="Get File",
  responses=ERROR_RESPONSES,
)
def get_file(
  record_id: str = Path(..., min_length=1, max_length=64),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> FileRecordResponse:
  return FileRecordResponse.model_validate(service.get_record(principal_id, record_id))


@router.get(
  "/{record_id}/download",
  operation_id="downloadFile",
  summary="Download File",
  response_class=StreamingResponse,
  responses=ERROR_RESPONSES,
)
def download_file(
  record_id: str = Path(..., min_length=1, max_length=64),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> StreamingResponse:
  record, stream = service.open_record(principal_id, record_id)

  def iter_blob() -> Iterator[bytes]:
    try:
      while chunk := stream.read(BLOB_COPY_CHUNK_SIZE):
        yield chunk
    finally:
      stream.close()

  return StreamingResponse(
    iter_blob(),
    media_type=record.mime_type,
    headers={
      "Content-Disposition": _content_disposition(record),
      "Content-Length": str(record.size_bytes),
    },
  )


@router.post(
  "/{record_id}/share",
  response_model=FileRecordResponse,
  operation_id="shareFile",
  summary="Share File",
  responses={
    403: {"description": "Only the owner can share", "model": ErrorResponse},
    409: {"description": "File changed since expected_version", "model": ErrorResponse},
    **ERROR_RESPONSES,
  },
)
def share_file(
  record_id: str = Path(..., min_length=1, max_length=64),
  request: ShareRequest = Body(...),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> FileRecordResponse:
  """Grant access with `read`/`write`, revoke it with `none`. Repeats are no-ops."""
  record = service.share_record(
    principal_id,
    record_id,
    request.target_principal_id,
    request.permission,
    expected_version=request.expected_version,
  )
  return FileRecordResponse.model_validate(record)


@router.patch(
  "/{record_id}/visibility",
  response_model=FileRecordResponse,
  operation_id="setFileVisibility",
  summary="Set File Visibility",
  responses={
    403: {"description": "Only the owner can change visibility", "model": ErrorResponse},
    409: {"description": "File changed since expected_version", "model": ErrorResponse},
    **ERROR_RESPONSES,
  },
)
def set_file_visibility(
  record_id: str = Path(..., min_length=1, max_length=64),
  request: VisibilityRequest = Body(...),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> FileRecordResponse:
  record = service.set_visibility(
    principal_id,
    record_id,
    request.visibility,
    expected_version=request.expected_version,
  )
  return FileRecordResponse.model_validate(record)


@router.delete(
  "/{record_id}",
  status_code=status.HTTP_204_NO_CONTENT,
  operation_id="deleteFile",
  summary="Delete File",
  responses={
    403: {"description": "Only the owner can delete", "model": ErrorResponse},
    409: {"description": "File changed since expected_version", "model": ErrorResponse},
    **ERROR_RESPONSES,
  },
)
def delete_file(
  record_id: str = Path(..., min_length=1, max_length=64),
  expected_version: Optional[int] = Query(None, ge=1),
  principal_id: str = Depends(get_current_principal),
  service: FileService = Depends(get_file_service),
) -> None:
  service.delete_record(principal_id, record_id, expected_version=expected_version)
  api_logger.info(
    f"File {record_id} deleted",
    extra={"record_id": record_id, "user_id": principal_id},
  )


def _content_disposition(record: FileRecord) -> str:
  return f"attachment; filename*=UTF-8''{quote(record.original_name)}"
