"""Tests for environment configuration helpers and EnvConfig."""

import os
from unittest.mock import patch

import pytest

from filevault.config.env import (
  EnvConfig,
  get_bool_env,
  get_float_env,
  get_int_env,
  get_list_env,
)
from filevault.config.valkey_registry import ValkeyDatabase


class TestEnvHelpers:
  """Type-safe environment accessors."""

  def test_get_int_env_parses_value(self):
    with patch.dict(os.environ, {"FV_TEST_INT": "42"}):
      assert get_int_env("FV_TEST_INT", 1) == 42

  def test_get_int_env_falls_back_on_garbage(self):
    with patch.dict(os.environ, {"FV_TEST_INT": "forty-two"}):
      assert get_int_env("FV_TEST_INT", 7) == 7

  def test_get_float_env(self):
    with patch.dict(os.environ, {"FV_TEST_FLOAT": "0.25"}):
      assert get_float_env("FV_TEST_FLOAT", 1.0) == 0.25

  @pytest.mark.parametrize("raw", ["true", "1", "YES", "on"])
  def test_get_bool_env_truthy(self, raw):
    with patch.dict(os.environ, {"FV_TEST_BOOL": raw}):
      assert get_bool_env("FV_TEST_BOOL") is True

  def test_get_bool_env_default(self):
    os.environ.pop("FV_TEST_BOOL", None)
    assert get_bool_env("FV_TEST_BOOL", False) is False

  def test_get_list_env_strips_items(self):
    with patch.dict(os.environ, {"FV_TEST_LIST": "text/plain, image/png ,,"}):
      assert get_list_env("FV_TEST_LIST") == ["text/plain", "image/png"]

  def test_get_list_env_empty(self):
    os.environ.pop("FV_TEST_LIST", None)
    assert get_list_env("FV_TEST_LIST") == []


class TestEnvConfig:
  """Environment detection and validation."""

  def test_test_environment_detected(self):
    assert EnvConfig.is_test()
    assert not EnvConfig.is_production()

  def test_environment_key_defaults_to_development(self):
    with patch.object(EnvConfig, "ENVIRONMENT", "test"):
      assert EnvConfig.get_environment_key() == "development"
    with patch.object(EnvConfig, "ENVIRONMENT", "prod"):
      assert EnvConfig.get_environment_key() == "production"

  def test_defaults_are_valid(self):
    assert EnvConfig.validate() == []

  def test_threshold_larger_than_max_is_invalid(self):
    with patch.object(EnvConfig, "LARGE_FILE_THRESHOLD_BYTES", 10), patch.object(
      EnvConfig, "MAX_UPLOAD_SIZE_BYTES", 5
    ):
      errors = EnvConfig.validate()

    assert any("MAX_UPLOAD_SIZE_BYTES" in e for e in errors)

  def test_non_positive_worker_intervals_are_invalid(self):
    with patch.object(EnvConfig, "WORKER_IDLE_INTERVAL_SECONDS", 0):
      errors = EnvConfig.validate()

    assert "WORKER_IDLE_INTERVAL_SECONDS must be positive" in errors

  def test_production_requires_urls(self):
    with patch.object(EnvConfig, "ENVIRONMENT", "prod"), patch.dict(
      os.environ, {}, clear=True
    ):
      errors = EnvConfig.validate()

    assert "DATABASE_URL must be set in production" in errors
    assert "VALKEY_URL must be set in production" in errors

  def test_get_valkey_url_with_database(self):
    with patch.object(EnvConfig, "VALKEY_URL", "redis://cache:6379"):
      assert EnvConfig.get_valkey_url() == "redis://cache:6379"
      assert EnvConfig.get_valkey_url(3) == "redis://cache:6379/3"
      assert (
        EnvConfig.get_valkey_url(ValkeyDatabase.TASK_QUEUE) == "redis://cache:6379/0"
      )
