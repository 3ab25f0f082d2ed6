"""Tests for blob name validation."""

import pytest

from filevault.exceptions import FileValidationError
from filevault.utils.path_validation import resolve_within_root, validate_blob_name


class TestValidateBlobName:
  def test_valid_name(self):
    assert validate_blob_name("1700000000000-abcdef0123456789.pdf") == (
      "1700000000000-abcdef0123456789.pdf"
    )

  @pytest.mark.parametrize(
    "name",
    ["", "..", "a/b", "a\\b", "a\x00b", "../etc/passwd", "with space", "semi;colon"],
  )
  def test_invalid_names(self, name):
    with pytest.raises(FileValidationError):
      validate_blob_name(name)


class TestResolveWithinRoot:
  def test_resolves_under_root(self, tmp_path):
    resolved = resolve_within_root(tmp_path, "1-abc.txt")
    assert resolved == (tmp_path / "1-abc.txt").resolve()

  def test_root_itself_is_rejected(self, tmp_path):
    with pytest.raises(FileValidationError):
      resolve_within_root(tmp_path, ".")

  def test_symlink_escape_is_rejected(self, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    root = tmp_path / "root"
    root.mkdir()
    (root / "link").symlink_to(outside / "secret")

    with pytest.raises(FileValidationError):
      resolve_within_root(root, "link")
