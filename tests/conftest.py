"""
Shared fixtures: temporary source/destination trees, a JPEG factory and a
scriptable in-memory metadata backend.
"""

import logging
import threading
import time
from pathlib import Path

import pytest
from PIL import Image

from exif_extract import (
    Config,
    ExtractionError,
    MetadataBackend,
    metadata_session,
    run_pipeline,
)


class FakeBackend(MetadataBackend):
    """Returns values keyed by file base name and records every call."""
    name = "fake"

    def __init__(self, values=None, errors=(), thread_safe=True, delay=0.0):
        self.values = dict(values or {})
        self.errors = set(errors)
        self.thread_safe = thread_safe
        self.delay = delay
        self.calls = []
        self.opened = False
        self.closed = False
        self.max_active = 0
        self._active = 0
        self._guard = threading.Lock()

    def open(self):
        self.opened = True

    def close(self):
        self.closed = True

    def extract(self, path, key):
        with self._guard:
            self.calls.append((path.name, key))
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if path.name in self.errors:
                raise ExtractionError(f"cannot read {path.name}")
            return self.values.get(path.name)
        finally:
            with self._guard:
                self._active -= 1

    @property
    def looked_up(self):
        return {name for name, _ in self.calls}


@pytest.fixture
def src_dir(tmp_path):
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def dst_dir(tmp_path):
    path = tmp_path / "dst"
    path.mkdir()
    return path


@pytest.fixture
def logger():
    return logging.getLogger("exif_extract.tests")


@pytest.fixture
def make_config(src_dir, dst_dir):
    """Build a Config for the temporary trees; keyword overrides win."""
    def _make(**overrides):
        options = dict(
            src_dir=src_dir,
            dst_dir=dst_dir,
            key="Keywords",
            targets=("beach",),
            workers=4,
            progress=False,
        )
        options.update(overrides)
        return Config(**options)
    return _make


@pytest.fixture
def make_jpeg():
    """Write a small JPEG, optionally carrying an EXIF ImageDescription."""
    def _make(path: Path, description=None, color=(200, 120, 40)):
        path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.new("RGB", (16, 16), color)
        exif = Image.Exif()
        if description is not None:
            exif[0x010E] = description
        img.save(path, "JPEG", exif=exif)
        return path
    return _make


@pytest.fixture
def run(logger):
    """Run the whole pipeline against a backend and return (stats, results)."""
    def _run(config, backend, report_writer=None):
        with metadata_session(backend) as session:
            return run_pipeline(config, session, logger, report_writer)
    return _run
