"""Tests for structured logging configuration."""

import json
import logging

from filevault.config.logging import (
  StructuredFormatter,
  TieredLogFilter,
  get_logging_config,
)


def _record(level=logging.INFO, msg="hello", **extra):
  record = logging.LogRecord("filevault", level, __file__, 1, msg, None, None)
  for key, value in extra.items():
    setattr(record, key, value)
  return record


class TestStructuredFormatter:
  def test_formats_json_with_trace_fields(self):
    formatter = StructuredFormatter()
    output = formatter.format(
      _record(task_id="task_01", record_id="file_01", progress=30)
    )

    data = json.loads(output)
    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["task_id"] == "task_01"
    assert data["record_id"] == "file_01"
    assert data["progress"] == 30

  def test_omits_unset_trace_fields(self):
    data = json.loads(StructuredFormatter().format(_record()))
    assert "task_id" not in data


class TestTieredLogFilter:
  def test_critical_tier(self):
    tier = TieredLogFilter("critical")
    assert tier.filter(_record(logging.ERROR))
    assert not tier.filter(_record(logging.INFO))

  def test_operational_tier(self):
    tier = TieredLogFilter("operational")
    assert tier.filter(_record(logging.INFO))
    assert tier.filter(_record(logging.WARNING))
    assert not tier.filter(_record(logging.ERROR))


class TestLoggingConfig:
  def test_test_environment_is_quiet(self):
    config = get_logging_config("test")
    assert config["loggers"]["filevault"]["level"] == "WARNING"
    assert config["loggers"]["filevault.workers"]["propagate"] is False

  def test_dev_uses_console(self):
    config = get_logging_config("dev")
    assert config["loggers"]["filevault"]["handlers"] == ["console"]

  def test_staging_adds_debug_handler(self):
    config = get_logging_config("staging")
    assert "debug" in config["handlers"]
    assert "debug" in config["loggers"]["filevault.storage"]["handlers"]
