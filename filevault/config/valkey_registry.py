"""
Valkey database allocation and client construction.

FileVault keeps its queue, progress and status keys in a single logical
database. New consumers must claim a free number here rather than share one.
"""

import os
import ssl
from enum import IntEnum
from typing import Any, Dict, Optional
from urllib.parse import quote, urlsplit

import redis

# Logical databases a Valkey server exposes by default
DATABASE_SLOTS = 16

_TLS_ENVIRONMENTS = ("prod", "staging")


class ValkeyDatabase(IntEnum):
  """
  Logical database numbers in use.

  - 0: ingestion queue, ``progress:*`` and ``task_status:*`` keys
  """

  TASK_QUEUE = 0

  @classmethod
  def get_next_available(cls) -> int:
    """Lowest unallocated number; raises ValueError when all are taken."""
    taken = {member.value for member in cls}
    free = [slot for slot in range(DATABASE_SLOTS) if slot not in taken]
    if not free:
      raise ValueError(f"All {DATABASE_SLOTS} Valkey databases are allocated")
    return free[0]


def _current_environment() -> str:
  return os.getenv("ENVIRONMENT", "dev").lower()


class ValkeyURLBuilder:
  """Builds ``redis://`` URLs pointing at a registered database."""

  @staticmethod
  def get_base_url() -> str:
    return os.getenv("VALKEY_URL", "redis://localhost:6379")

  @staticmethod
  def get_auth_token() -> Optional[str]:
    """AUTH token for the server, or None when it runs without one."""
    return os.getenv("VALKEY_AUTH_TOKEN") or None

  @staticmethod
  def build_url(
    base_url: Optional[str] = None,
    database: ValkeyDatabase = ValkeyDatabase.TASK_QUEUE,
    auth_token: Optional[str] = None,
    use_tls: Optional[bool] = None,
    include_ssl_params: bool = True,
  ) -> str:
    """
    Point a base URL at ``database``.

    Credentials and any database number already in ``base_url`` are
    replaced. TLS is switched on automatically for authenticated
    connections in prod and staging.

    Args:
        base_url: Server URL; read from VALKEY_URL when None
        database: Registered database to select
        auth_token: Password sent as the ``default`` user
        use_tls: Force ``rediss://`` on or off
        include_ssl_params: Append ``ssl_cert_reqs`` for TLS URLs

    Examples:
        >>> ValkeyURLBuilder.build_url("redis://localhost:6379/5", ValkeyDatabase.TASK_QUEUE)
        'redis://localhost:6379/0'
    """
    parts = urlsplit(base_url or ValkeyURLBuilder.get_base_url())
    host = parts.netloc.rpartition("@")[2]

    if use_tls is None:
      use_tls = auth_token is not None and _current_environment() in _TLS_ENVIRONMENTS

    scheme = "rediss" if use_tls else "redis"
    credentials = f"default:{quote(auth_token, safe='')}@" if auth_token else ""
    url = f"{scheme}://{credentials}{host}/{int(database)}"

    if use_tls and include_ssl_params:
      url = f"{url}?ssl_cert_reqs=CERT_NONE"
    return url

  @staticmethod
  def build_authenticated_url(
    database: ValkeyDatabase = ValkeyDatabase.TASK_QUEUE,
    base_url: Optional[str] = None,
    include_ssl_params: bool = True,
  ) -> str:
    return ValkeyURLBuilder.build_url(
      base_url=base_url,
      database=database,
      auth_token=ValkeyURLBuilder.get_auth_token(),
      include_ssl_params=include_ssl_params,
    )

  @staticmethod
  def parse_url(url: str) -> tuple[str, Optional[int]]:
    """
    Split a URL into its server part and database number.

    Example:
        >>> ValkeyURLBuilder.parse_url("redis://localhost:6379/2")
        ('redis://localhost:6379', 2)
    """
    parts = urlsplit(url)
    db_part = parts.path.strip("/")
    if not db_part.isdigit():
      return url, None
    return f"{parts.scheme}://{parts.netloc}", int(db_part)


def get_redis_connection_params(environment: Optional[str] = None) -> Dict[str, Any]:
  """
  Client keyword arguments for the given environment.

  Args:
      environment: Environment name; read from ENVIRONMENT when None
  """
  environment = (environment or _current_environment()).lower()
  timeout = float(os.getenv("VALKEY_SOCKET_TIMEOUT", "5"))

  params: Dict[str, Any] = {
    "decode_responses": True,
    "socket_connect_timeout": timeout,
    "socket_timeout": timeout,
    "retry_on_timeout": True,
    "health_check_interval": 30,
  }

  # Managed instances present self-signed certificates
  if environment in _TLS_ENVIRONMENTS:
    params.update(
      ssl_cert_reqs=ssl.CERT_NONE,
      ssl_check_hostname=False,
      ssl_ca_certs=None,
    )
  return params


def create_redis_client(
  database: ValkeyDatabase = ValkeyDatabase.TASK_QUEUE,
  decode_responses: bool = True,
  **kwargs,
) -> redis.Redis:
  """
  Connected client for ``database`` with the environment's settings.

  Extra keyword arguments override the defaults from
  `get_redis_connection_params`.
  """
  url = ValkeyURLBuilder.build_authenticated_url(database, include_ssl_params=False)
  params = get_redis_connection_params()
  params["decode_responses"] = decode_responses
  params.update(kwargs)
  return redis.Redis.from_url(url, **params)
