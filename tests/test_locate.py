"""
Tests for source tree traversal.
"""

import logging
import os

import pytest

import exif_extract
from exif_extract import TraversalError, locate


def names(paths):
    return sorted(p.name for p in paths)


class TestLocate:
    """Test extension filtering and traversal failure handling."""

    @pytest.fixture
    def tree(self, src_dir):
        (src_dir / "a.jpg").write_bytes(b"a")
        (src_dir / "sub").mkdir()
        (src_dir / "sub" / "b.jpeg").write_bytes(b"b")
        (src_dir / "sub" / "deeper").mkdir()
        (src_dir / "sub" / "deeper" / "c.JPG").write_bytes(b"c")
        (src_dir / "d.png").write_bytes(b"d")
        (src_dir / "folder.jpg").mkdir()
        (src_dir / "folder.jpg" / "notes.txt").write_text("x")
        return src_dir

    def test_recursive_extension_filter(self, tree, logger):
        """Only regular files with a listed extension are yielded."""
        found = list(locate(tree, frozenset({".jpg", ".jpeg"}), logger))
        assert names(found) == ["a.jpg", "b.jpeg"]

    def test_extension_match_is_case_sensitive(self, tree, logger):
        found = list(locate(tree, frozenset({".JPG"}), logger))
        assert names(found) == ["c.JPG"]

    def test_paths_are_absolute(self, tree, logger):
        found = list(locate(tree.resolve(), frozenset({".jpg"}), logger))
        assert found and all(p.is_absolute() for p in found)

    def test_symlinks_are_skipped(self, tree, logger):
        os.symlink(tree / "a.jpg", tree / "link.jpg")
        found = list(locate(tree, frozenset({".jpg"}), logger))
        assert names(found) == ["a.jpg"]

    def test_excluded_directory_is_pruned(self, tree, logger):
        """A destination nested inside the source is never scanned."""
        nested = tree / "selected"
        nested.mkdir()
        (nested / "copied.jpg").write_bytes(b"c")
        found = list(locate(tree, frozenset({".jpg"}), logger, exclude_dir=nested))
        assert names(found) == ["a.jpg"]

    def test_empty_tree(self, src_dir, logger):
        assert list(locate(src_dir, frozenset({".jpg"}), logger)) == []


class TestTraversalErrors:
    """Test the strict and the skipping traversal modes."""

    @pytest.fixture
    def unreadable_walk(self, monkeypatch):
        real_walk = os.walk

        def fake_walk(top, onerror=None, followlinks=False):
            onerror(PermissionError(13, "Permission denied", os.path.join(top, "locked")))
            yield from real_walk(top, onerror=onerror, followlinks=followlinks)

        monkeypatch.setattr(exif_extract.os, "walk", fake_walk)

    def test_unreadable_directory_is_fatal_by_default(self, src_dir, logger, unreadable_walk):
        (src_dir / "a.jpg").write_bytes(b"a")
        with pytest.raises(TraversalError, match="locked"):
            list(locate(src_dir, frozenset({".jpg"}), logger))

    def test_unreadable_directory_can_be_skipped(self, src_dir, logger, unreadable_walk, caplog):
        (src_dir / "a.jpg").write_bytes(b"a")
        with caplog.at_level(logging.WARNING, logger="exif_extract.tests"):
            found = list(locate(src_dir, frozenset({".jpg"}), logger, skip_unreadable=True))
        assert names(found) == ["a.jpg"]
        assert "Skipping unreadable directory" in caplog.text
