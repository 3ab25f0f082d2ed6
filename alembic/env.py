"""Migration runner for the file_records and file_shares schema."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from filevault.database import Model, get_database_url

# Registers the tables on Model.metadata for autogenerate
from filevault.models.file_record import FileRecord, FileShare  # noqa: F401

config = context.config

if config.config_file_name is not None:
  fileConfig(config.config_file_name)

# DATABASE_URL wins over the ini so migrations hit the same database as the app
_url = get_database_url()
if _url:
  config.set_main_option("sqlalchemy.url", _url)

target_metadata = Model.metadata


def _configure(**kwargs) -> None:
  url = config.get_main_option("sqlalchemy.url") or ""
  context.configure(
    target_metadata=target_metadata,
    compare_type=True,
    render_as_batch=url.startswith("sqlite"),
    **kwargs,
  )
  with context.begin_transaction():
    context.run_migrations()


def run_migrations_offline() -> None:
  """Emit SQL to stdout without connecting."""
  _configure(
    url=config.get_main_option("sqlalchemy.url"),
    literal_binds=True,
    dialect_opts={"paramstyle": "named"},
  )


def run_migrations_online() -> None:
  connectable = engine_from_config(
    config.get_section(config.config_ini_section, {}),
    prefix="sqlalchemy.",
    poolclass=pool.NullPool,
  )
  with connectable.connect() as connection:
    _configure(connection=connection)


if context.is_offline_mode():
  run_migrations_offline()
else:
  run_migrations_online()
