"""
Metadata Store engine and session registry.

One `scoped_session` serves both processes. Inside the API each request gets
its own scope, opened by `DatabaseSessionMiddleware`. The ingestion worker
falls back to one session per thread.
"""

import asyncio
import contextvars
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from filevault.config import env

_POSTGRES_SCHEMES = ("postgresql://", "postgres://")
_IN_MEMORY_SQLITE = ("sqlite://", "sqlite:///:memory:")


def get_database_url() -> str:
  """Configured URL, with ``sslmode=require`` forced for Postgres in prod and staging."""
  url = env.get_database_url()
  needs_tls = env.is_production() or env.is_staging()
  if not (needs_tls and url.startswith(_POSTGRES_SCHEMES)) or "sslmode" in url:
    return url
  separator = "&" if "?" in url else "?"
  return f"{url}{separator}sslmode=require"


def get_engine_options(database_url: str) -> Dict[str, Any]:
  """
  Keyword arguments for `create_engine`.

  SQLite gets no pool tuning. An in-memory database must stay on a single
  connection or every checkout would see an empty schema.
  """
  if not database_url.startswith("sqlite"):
    return {
      "echo": env.DATABASE_ECHO,
      "pool_pre_ping": True,
      "pool_size": env.DATABASE_POOL_SIZE,
      "max_overflow": env.DATABASE_MAX_OVERFLOW,
      "pool_timeout": env.DATABASE_POOL_TIMEOUT,
      "pool_recycle": env.DATABASE_POOL_RECYCLE,
    }

  options: Dict[str, Any] = {
    "echo": env.DATABASE_ECHO,
    "connect_args": {"check_same_thread": False},
  }
  if database_url in _IN_MEMORY_SQLITE:
    options["poolclass"] = StaticPool
  return options


_request_scope: contextvars.ContextVar[Optional[object]] = contextvars.ContextVar(
  "filevault_request_scope", default=None
)


@contextmanager
def request_scope() -> Iterator[None]:
  """
  Bind the session registry to a fresh per-request key.

  Nested use keeps the outer key. The key is cleared on exit even when the
  context was copied into a threadpool in between.
  """
  if _request_scope.get() is not None:
    yield
    return

  token = _request_scope.set(object())
  try:
    yield
  finally:
    try:
      _request_scope.reset(token)
    except ValueError:
      _request_scope.set(None)


def _scope_key() -> object:
  key = _request_scope.get()
  if key is not None:
    return key
  try:
    task = asyncio.current_task()
  except RuntimeError:
    task = None
  return task if task is not None else threading.get_ident()


_database_url = get_database_url()
engine = create_engine(_database_url, **get_engine_options(_database_url))
SessionFactory = sessionmaker(bind=engine, autoflush=False)
session = scoped_session(SessionFactory, scopefunc=_scope_key)


class Base(DeclarativeBase):
  pass


Model = Base


def get_db_session() -> Iterator[Session]:
  """FastAPI dependency yielding the scoped session for this request."""
  db = session()
  try:
    yield db
  finally:
    session.remove()
