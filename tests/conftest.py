import os
import tempfile
from unittest.mock import patch

# Settings are read at import time, so they must be in place before filevault loads
_TEST_ROOT = tempfile.mkdtemp(prefix="filevault-tests-")
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_ROOT, "blobs")
os.environ["STAGING_ROOT"] = os.path.join(_TEST_ROOT, "staging")

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import filevault.models  # noqa: E402, F401
from filevault.database import Model as Base, SessionFactory, engine, get_db_session  # noqa: E402
from filevault.operations.file_service import FileService  # noqa: E402
from filevault.operations.ingestion import IngestionPipeline  # noqa: E402
from filevault.operations.metadata_store import MetadataStore  # noqa: E402
from filevault.operations.task_queue import TaskQueue  # noqa: E402
from filevault.storage.blob_store import BlobStore, StorageRoot  # noqa: E402

TEST_QUEUE = "file-processing-test"
MIB = 1024 * 1024


@pytest.fixture(scope="session", autouse=True)
def create_schema():
  """Create all tables once in the in-memory database."""
  Base.metadata.create_all(bind=engine)
  yield
  Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
  """A session whose rows are wiped after each test."""
  db = SessionFactory()
  try:
    yield db
  finally:
    db.rollback()
    db.close()
    with engine.begin() as conn:
      for table in reversed(Base.metadata.sorted_tables):
        conn.execute(table.delete())


@pytest.fixture
def fake_redis():
  """In-memory Valkey with its own server, decoding responses like production."""
  return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def progress_writes(fake_redis):
  """Every value written to a task's progress key, in write order."""
  with patch.object(fake_redis, "set", wraps=fake_redis.set) as set_spy:

    def writes(task_id):
      key = TaskQueue.progress_key(task_id)
      return [int(c.args[1]) for c in set_spy.call_args_list if c.args[0] == key]

    yield writes


@pytest.fixture
def task_queue(fake_redis):
  return TaskQueue(fake_redis, state_ttl=60)


@pytest.fixture
def blob_store(tmp_path):
  return BlobStore(StorageRoot.from_setting(tmp_path / "blobs"))


@pytest.fixture
def staging_store(tmp_path):
  return BlobStore(StorageRoot.from_setting(tmp_path / "staging"))


@pytest.fixture
def metadata_store(db_session):
  return MetadataStore(db_session)


@pytest.fixture
def pipeline(blob_store, staging_store, task_queue, metadata_store):
  return IngestionPipeline(
    blob_store=blob_store,
    staging_store=staging_store,
    task_queue=task_queue,
    metadata_store=metadata_store,
    threshold=5 * MIB,
    max_upload_size=100 * MIB,
    queue_name=TEST_QUEUE,
  )


@pytest.fixture
def file_service(metadata_store, pipeline, task_queue, blob_store):
  return FileService(
    metadata_store=metadata_store,
    pipeline=pipeline,
    task_queue=task_queue,
    blob_store=blob_store,
  )


@pytest.fixture
def app(task_queue, blob_store, staging_store, db_session):
  from main import create_app

  application = create_app(
    task_queue=task_queue, blob_store=blob_store, staging_store=staging_store
  )
  application.dependency_overrides[get_db_session] = lambda: db_session
  yield application
  application.dependency_overrides.clear()


@pytest.fixture
def client(app):
  """Create a test client."""
  return TestClient(app)


def auth_headers(principal_id: str) -> dict:
  return {"X-Principal-Id": principal_id}
