"""
Centralized configuration package for the FileVault service.

This package provides a single source of truth for configuration settings:
environment variables, static constants, and the Valkey database registry.
"""

from .constants import IngestionProgress, PrefixConstants
from .env import EnvConfig, env
from .validation import ConfigValidationError, EnvValidator
from .valkey_registry import ValkeyDatabase, ValkeyURLBuilder, create_redis_client

__all__ = [
  "ConfigValidationError",
  "EnvConfig",
  "EnvValidator",
  "IngestionProgress",
  "PrefixConstants",
  "ValkeyDatabase",
  "ValkeyURLBuilder",
  "create_redis_client",
  "env",
]
