"""
Startup checks shared by the API and the ingestion worker.

Problems that would break uploads are errors. Settings that merely look
suspicious are logged as warnings. Errors stop a production process and are
only logged elsewhere.
"""

import logging
import os
from typing import List

logger = logging.getLogger(__name__)

# Accepted URL schemes per connection setting
URL_SCHEMES = {
  "DATABASE_URL": ("postgresql://", "postgres://", "sqlite://"),
  "VALKEY_URL": ("redis://", "rediss://", "valkey://"),
}

STORAGE_DIRECTORIES = {
  "STORAGE_ROOT": "blob storage",
  "STAGING_ROOT": "upload staging",
}


class ConfigValidationError(Exception):
  pass


class EnvValidator:
  @staticmethod
  def collect(env_config) -> tuple[List[str], List[str]]:
    """
    Gather configuration problems without acting on them.

    Returns:
        ``(errors, warnings)``
    """
    errors: List[str] = list(env_config.validate())
    warnings: List[str] = []

    for name, schemes in URL_SCHEMES.items():
      value = getattr(env_config, name, None)
      if value and not value.startswith(schemes):
        errors.append(f"{name}: unsupported URL scheme in {value}")

    for name, purpose in STORAGE_DIRECTORIES.items():
      value = getattr(env_config, name, None)
      if not value or os.path.exists(value):
        continue
      # The store creates the directory itself, but not missing ancestors
      if not os.path.exists(os.path.dirname(os.path.abspath(value))):
        warnings.append(f"{name}: parent of the {purpose} directory is missing ({value})")

    if not env_config.UPLOAD_ALLOWED_MIME_TYPES:
      warnings.append("UPLOAD_ALLOWED_MIME_TYPES: empty, every content type is accepted")

    return errors, warnings

  @staticmethod
  def validate_required_vars(env_config) -> None:
    """
    Log every problem and raise when any of them is an error.

    Raises:
        ConfigValidationError: If at least one error was found
    """
    errors, warnings = EnvValidator.collect(env_config)

    for warning in warnings:
      logger.warning(f"Config validation warning: {warning}")

    if errors:
      for error in errors:
        logger.error(f"Config validation error: {error}")
      raise ConfigValidationError(
        f"Configuration invalid: {len(errors)} errors found in environment variables"
      )

    logger.info("Configuration validation passed")

  @staticmethod
  def validate_startup(env_config) -> bool:
    """
    Validate at process start.

    Returns:
        True when the configuration is valid, False when it is not and the
        process runs outside production

    Raises:
        ConfigValidationError: In production when validation fails
    """
    try:
      EnvValidator.validate_required_vars(env_config)
    except ConfigValidationError:
      if env_config.is_production():
        raise
      logger.warning("Starting with an invalid configuration outside production")
      return False
    return True
