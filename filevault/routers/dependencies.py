"""
FastAPI dependencies for the file routes.

Authentication happens upstream: the gateway verifies the caller and
forwards the principal id in a header (``PRINCIPAL_HEADER``). This module
only reads it. Queue and storage clients are built once at startup and
kept on ``app.state``.
"""

from typing import Protocol

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..config import env
from ..database import get_db_session
from ..operations.factory import build_file_service
from ..operations.file_service import FileService
from ..operations.task_queue import TaskQueue
from ..storage.blob_store import BlobStore


class Authenticator(Protocol):
  def __call__(self, request: Request) -> str: ...


class HeaderAuthenticator:
  """Trusts the principal id the auth gateway put in a request header."""

  def __init__(self, header_name: str = env.PRINCIPAL_HEADER):
    self.header_name = header_name

  def __call__(self, request: Request) -> str:
    principal_id = (request.headers.get(self.header_name) or "").strip()
    if not principal_id:
      raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
      )
    return principal_id


def get_current_principal(request: Request) -> str:
  authenticator: Authenticator = getattr(
    request.app.state, "authenticator", None
  ) or HeaderAuthenticator()
  principal_id = authenticator(request)
  request.state.principal_id = principal_id
  return principal_id


def get_task_queue(request: Request) -> TaskQueue:
  return request.app.state.task_queue


def get_blob_store(request: Request) -> BlobStore:
  return request.app.state.blob_store


def get_staging_store(request: Request) -> BlobStore:
  return request.app.state.staging_store


def get_file_service(
  db: Session = Depends(get_db_session),
  task_queue: TaskQueue = Depends(get_task_queue),
  blob_store: BlobStore = Depends(get_blob_store),
  staging_store: BlobStore = Depends(get_staging_store),
) -> FileService:
  return build_file_service(db, task_queue, blob_store, staging_store)
