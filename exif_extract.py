#!/usr/bin/env python3
"""
exif_extract.py - Copy photos whose embedded metadata matches a query.

Walks a source directory tree, looks up one metadata key per image through a
metadata backend (ExifTool or Pillow), and copies every image whose value
matches one of the query strings into a flat destination directory:
  - Files whose base name already exists in the destination are skipped
    before any metadata lookup.
  - Lookups that fail or find nothing count as "no match", never as fatal.
  - Copies go through a temporary file and are published without
    overwriting anything that appeared in the meantime.

License: MIT
"""

import argparse
import csv
import logging
import os
import shutil
import struct
import sys
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from tqdm import tqdm
from PIL import ExifTags, Image, IptcImagePlugin, UnidentifiedImageError
from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException

# Optional HEIC support
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HEIC_SUPPORTED = True
except ImportError:
    HEIC_SUPPORTED = False

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DEFAULT_EXTENSIONS = (".jpg", ".jpeg")
DEFAULT_WORKERS = min(8, os.cpu_count() or 4)
DEFAULT_BACKEND = "exiftool"
REPORT_FLUSH_EVERY = 500

# Environment fallbacks for the command-line options
ENV_SRC = "EXIF_EXTRACT_SRC"
ENV_DST = "EXIF_EXTRACT_DST"
ENV_KEY = "EXIF_EXTRACT_KEY"
ENV_QUERY = "EXIF_EXTRACT_QUERY"
ENV_EXTENSIONS = "EXIF_EXTRACT_EXTENSIONS"
ENV_BACKEND = "EXIF_EXTRACT_BACKEND"

# Prefix of in-flight copies inside the destination directory
TEMP_PREFIX = ".exif_extract-"

# Exif sub-IFD pointer (ExifTags.IFD.Exif on newer Pillow)
EXIF_SUB_IFD = 0x8769
EXIF_TAG_IDS = {name: tag for tag, name in ExifTags.TAGS.items()}
# Windows XP* tags are stored as UTF-16LE byte strings
XP_TAGS = {"XPTitle", "XPComment", "XPAuthor", "XPKeywords", "XPSubject"}

# IIM (IPTC) record 2 datasets readable through Pillow
IPTC_DATASETS = {
    "ObjectName": (2, 5),
    "Keywords": (2, 25),
    "By-line": (2, 80),
    "City": (2, 90),
    "Province-State": (2, 95),
    "Country-PrimaryLocationName": (2, 101),
    "Headline": (2, 105),
    "Credit": (2, 110),
    "Source": (2, 115),
    "CopyrightNotice": (2, 116),
    "Caption-Abstract": (2, 120),
}

# A single string, or the entries of a multi-valued tag such as Keywords
MetadataValue = Union[str, list[str]]

# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------

class MatchPolicy(str, Enum):
    """How an extracted value is compared against the query targets."""
    CONTAINS = "contains"
    EXACT = "exact"


@dataclass(frozen=True)
class Config:
    """Immutable run configuration, built once by build_config()."""
    src_dir: Path
    dst_dir: Path
    key: str
    targets: tuple[str, ...]
    extensions: frozenset[str] = frozenset(DEFAULT_EXTENSIONS)
    policy: MatchPolicy = MatchPolicy.CONTAINS
    backend: str = DEFAULT_BACKEND
    exiftool_path: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    dry_run: bool = False
    fail_fast: bool = False
    skip_unreadable: bool = False
    report_path: Optional[Path] = None
    log_file: Optional[Path] = None
    progress: bool = True


@dataclass(frozen=True)
class Candidate:
    """A located file pending match evaluation."""
    path: Path
    key: str
    targets: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class MetadataResult:
    """Outcome of one metadata lookup. An empty value never matches."""
    candidate: Candidate
    value: str = ""
    items: tuple[str, ...] = ()  # individual entries of a multi-valued tag
    found: bool = False
    error: Optional[Exception] = None

    @property
    def usable(self) -> bool:
        return self.found and self.error is None


@dataclass
class ProcessingResult:
    """Result of processing a single candidate."""
    source_path: str
    action: str  # already_present, no_match, copied, would_copy, error, cancelled
    value: str = ""
    reason: str = ""


@dataclass
class Stats:
    """Statistics for the run."""
    total_scanned: int = 0
    copied: int = 0
    would_copy: int = 0
    already_present: int = 0
    no_match: int = 0
    lookup_failures: int = 0
    errors: int = 0
    cancelled: int = 0
    aborted: bool = False
    elapsed: float = 0.0

    def record(self, result: ProcessingResult):
        if result.action == "copied":
            self.copied += 1
        elif result.action == "would_copy":
            self.would_copy += 1
        elif result.action == "already_present":
            self.already_present += 1
        elif result.action == "no_match":
            self.no_match += 1
            if not result.value:
                self.lookup_failures += 1
        elif result.action == "error":
            self.errors += 1
        elif result.action == "cancelled":
            self.cancelled += 1


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class ExifExtractError(Exception):
    """Base error for the tool."""


class ConfigurationError(ExifExtractError):
    """A required option is missing or a referenced directory is invalid."""


class TraversalError(ExifExtractError):
    """The source tree could not be read."""


class MetadataServiceUnavailable(ExifExtractError):
    """The metadata backend could not be started."""


class ExtractionError(ExifExtractError):
    """Metadata could not be read from one file."""


class CopyError(ExifExtractError):
    """A matching file could not be copied."""


# -----------------------------------------------------------------------------
# Utility Functions
# -----------------------------------------------------------------------------

def setup_logging(log_file: Optional[Path] = None) -> logging.Logger:
    """Configure logging to console and, optionally, to a file."""
    logger = logging.getLogger("exif_extract")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler - summary only
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(ch)

    # File handler - detailed
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logger.addHandler(fh)

    return logger


def parse_targets(query: str) -> tuple[str, ...]:
    """Split a comma-separated query into trimmed, non-empty targets."""
    return tuple(t.strip() for t in query.split(',') if t.strip())


def parse_extensions(value: str) -> frozenset[str]:
    """
    Parse a comma-separated extension list.

    A missing leading dot is added. Case is preserved because extension
    matching is case-sensitive.
    """
    extensions = set()
    for ext in value.split(','):
        ext = ext.strip()
        if not ext:
            continue
        extensions.add(ext if ext.startswith('.') else f".{ext}")
    return frozenset(extensions)


def format_value(value: Any) -> str:
    """Coerce a metadata value (list, number, bytes) into a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore").rstrip("\x00")
    if isinstance(value, (list, tuple, set)):
        return ", ".join(format_value(v) for v in value if format_value(v).strip())
    return str(value)


def normalize_value(value: Any) -> MetadataValue:
    """Format a raw metadata value, keeping the entries of a list tag apart."""
    if isinstance(value, list):
        return [format_value(v) for v in value if format_value(v).strip()]
    return format_value(value)


def split_group(key: str) -> tuple[Optional[str], str]:
    """Split 'IPTC:Keywords' into ('IPTC', 'Keywords')."""
    if ':' in key:
        group, name = key.rsplit(':', 1)
        return group, name
    return None, key


# -----------------------------------------------------------------------------
# File Location
# -----------------------------------------------------------------------------

def locate(
    root_dir: Path,
    extensions: frozenset[str],
    logger: logging.Logger,
    exclude_dir: Optional[Path] = None,
    skip_unreadable: bool = False
) -> Iterator[Path]:
    """
    Recursively yield files under root_dir whose extension is in extensions.

    The extension comparison is case-sensitive and includes the leading dot.
    Symlinks are SKIPPED (not resolved), the same as directories and
    non-matching files. exclude_dir is pruned from the walk so that a
    destination nested inside the source is never rescanned.

    An unreadable directory raises TraversalError unless skip_unreadable is
    set, in which case it is logged and its subtree is skipped.
    """
    def on_error(err: OSError):
        if skip_unreadable:
            logger.warning(f"Skipping unreadable directory {err.filename}: {err.strerror}")
            return
        raise TraversalError(f"Cannot read {err.filename}: {err}") from err

    for dirpath, dirnames, filenames in os.walk(root_dir, onerror=on_error, followlinks=False):
        current = Path(dirpath)

        if exclude_dir is not None:
            dirnames[:] = [d for d in dirnames if (current / d) != exclude_dir]

        for filename in filenames:
            if os.path.splitext(filename)[1] not in extensions:
                continue

            file_path = current / filename

            if file_path.is_symlink():
                logger.debug(f"Skipping symlink: {file_path}")
                continue

            if not file_path.is_file():
                continue

            yield file_path


# -----------------------------------------------------------------------------
# Destination Gate / Copier
# -----------------------------------------------------------------------------

def destination_path(dst_dir: Path, source: Path) -> Path:
    """Destination of a copy: always dst_dir / basename(source)."""
    return dst_dir / source.name


def already_present(dst_dir: Path, source: Path) -> bool:
    """
    Report whether a file with the source's base name exists in dst_dir.

    Advisory only: another task may create it right after this returns.
    """
    return os.path.lexists(destination_path(dst_dir, source))


def copy_file(src: Path, dst: Path, logger: logging.Logger) -> bool:
    """
    Copy src to dst unless dst already exists.

    The data is written to a hidden temporary file next to dst and then
    published with os.link, which refuses to replace an existing file. On
    filesystems without hard links the existence check is repeated and the
    temporary file is renamed over dst.

    Returns True if the copy was published, False if dst already existed.
    Raises CopyError on any I/O failure; the temporary file is always removed.
    """
    if os.path.lexists(dst):
        return False

    tmp = dst.parent / f"{TEMP_PREFIX}{uuid.uuid4().hex}{dst.suffix}"
    try:
        shutil.copy2(src, tmp)
        try:
            os.link(tmp, dst)
        except FileExistsError:
            logger.debug(f"Destination appeared during copy: {dst.name}")
            return False
        except OSError as e:
            logger.debug(f"Hard link unavailable for {dst.name} ({e}), renaming instead")
            if os.path.lexists(dst):
                return False
            os.replace(tmp, dst)
        return True
    except OSError as e:
        raise CopyError(f"Failed to copy {src} to {dst}: {e}") from e
    finally:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass


# -----------------------------------------------------------------------------
# Matching
# -----------------------------------------------------------------------------

def is_match(
    value: str,
    targets: tuple[str, ...],
    policy: MatchPolicy = MatchPolicy.CONTAINS,
    items: tuple[str, ...] = ()
) -> bool:
    """
    Check an extracted value against the query targets.

    CONTAINS matches when any target is a literal, case-sensitive substring
    of value; EXACT when value, or one of the entries of a multi-valued tag
    given as items, equals a target. An empty value never matches and empty
    targets are ignored, so a blank query term cannot match everything.
    """
    if not value:
        return False

    for target in targets:
        if not target:
            continue
        if policy == MatchPolicy.EXACT:
            if value == target or target in items:
                return True
        elif target in value:
            return True

    return False


# -----------------------------------------------------------------------------
# Metadata Backends
# -----------------------------------------------------------------------------

class MetadataBackend:
    """
    Source of embedded metadata values.

    open() starts the backend (raising MetadataServiceUnavailable), extract()
    returns the value of one key (a list for multi-valued tags) or None when
    the key is absent and raises ExtractionError when the file cannot be
    read, close() releases it.
    """
    name = "base"
    thread_safe = False

    def open(self):
        pass

    def close(self):
        pass

    def extract(self, path: Path, key: str) -> Optional[MetadataValue]:
        raise NotImplementedError


class ExifToolBackend(MetadataBackend):
    """Reads tags through a single long-running exiftool process."""
    name = "exiftool"
    thread_safe = False

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable
        self._helper: Optional[ExifToolHelper] = None

    def open(self):
        kwargs = {"common_args": ["-G"]}
        if self.executable:
            kwargs["executable"] = self.executable
        try:
            self._helper = ExifToolHelper(**kwargs)
            self._helper.run()
        except (OSError, ExifToolException) as e:
            self._helper = None
            raise MetadataServiceUnavailable(f"Cannot start exiftool: {e}") from e

    def close(self):
        if self._helper is not None and self._helper.running:
            self._helper.terminate()
        self._helper = None

    def extract(self, path: Path, key: str) -> Optional[MetadataValue]:
        if self._helper is None:
            raise ExtractionError("exiftool session is not open")
        try:
            blocks = self._helper.get_tags(files=[str(path)], tags=[key])
        except (ValueError, TypeError, ExifToolException) as e:
            raise ExtractionError(f"exiftool failed on {path.name}: {e}") from e

        for block in blocks:
            value = self.resolve_tag(block, key)
            if value not in (None, ""):
                return normalize_value(value)
        return None

    @staticmethod
    def resolve_tag(block: dict, key: str) -> Any:
        """Find key in an exiftool result block, with or without a group prefix."""
        if key in block:
            return block[key]
        group, name = split_group(key)
        if group is not None:
            return None
        for tag, value in block.items():
            if tag != "SourceFile" and split_group(tag)[1] == name:
                return value
        return None


class PillowBackend(MetadataBackend):
    """Reads EXIF and IPTC (IIM) values with Pillow; safe for concurrent use."""
    name = "pillow"
    thread_safe = True

    def extract(self, path: Path, key: str) -> Optional[MetadataValue]:
        group, name = split_group(key)
        try:
            with Image.open(path) as img:
                value = None
                if group in (None, "EXIF", "IFD0", "ExifIFD"):
                    value = self._exif_value(img.getexif(), name)
                if value is None and group in (None, "IPTC"):
                    value = self._iptc_value(img, name)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError,
                SyntaxError, ValueError, struct.error) as e:
            raise ExtractionError(f"Pillow cannot read {path.name}: {e}") from e

        if value in (None, "", []):
            return None
        return value

    @staticmethod
    def _exif_value(exif: Image.Exif, name: str) -> Optional[str]:
        tag = EXIF_TAG_IDS.get(name)
        if tag is None:
            return None

        raw = exif.get(tag)
        if raw is None:
            raw = exif.get_ifd(EXIF_SUB_IFD).get(tag)
        if raw is None:
            return None

        if name in XP_TAGS:
            if isinstance(raw, tuple):
                raw = bytes(raw)
            return raw.decode("utf-16-le", errors="ignore").rstrip("\x00")
        return format_value(raw)

    @staticmethod
    def _iptc_value(img: Image.Image, name: str) -> Optional[MetadataValue]:
        dataset = IPTC_DATASETS.get(name)
        if dataset is None:
            return None
        info = IptcImagePlugin.getiptcinfo(img)
        if not info or dataset not in info:
            return None
        return normalize_value(info[dataset])


BACKENDS: dict[str, Callable[[Config], MetadataBackend]] = {
    "exiftool": lambda config: ExifToolBackend(config.exiftool_path),
    "pillow": lambda config: PillowBackend(),
}


class MetadataSession:
    """
    Shared handle on an open backend, used by every task of a run.

    Calls into a backend that is not thread-safe are serialized with a lock.
    Lookups never raise: a backend failure of any kind comes back as a
    MetadataResult whose error is set, and counts as "no value".
    """

    def __init__(self, backend: MetadataBackend):
        self.backend = backend
        self._lock = None if backend.thread_safe else threading.Lock()

    def lookup(self, candidate: Candidate) -> MetadataResult:
        try:
            if self._lock is None:
                value = self.backend.extract(candidate.path, candidate.key)
            else:
                with self._lock:
                    value = self.backend.extract(candidate.path, candidate.key)
        except ExtractionError as e:
            return MetadataResult(candidate=candidate, error=e)
        except Exception as e:
            error = ExtractionError(f"{self.backend.name} failed on {candidate.name}: {e!r}")
            error.__cause__ = e
            return MetadataResult(candidate=candidate, error=error)

        if isinstance(value, list):
            items = tuple(value)
            value = ", ".join(items)
        else:
            items = (value,) if value else ()

        if not value:
            return MetadataResult(candidate=candidate)
        return MetadataResult(candidate=candidate, value=value, items=items, found=True)


@contextmanager
def metadata_session(backend: MetadataBackend) -> Iterator[MetadataSession]:
    """Open backend for the duration of a run and always close it."""
    backend.open()
    try:
        yield MetadataSession(backend)
    finally:
        backend.close()


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------

def process_candidate(
    candidate: Candidate,
    config: Config,
    session: MetadataSession,
    logger: logging.Logger
) -> ProcessingResult:
    """
    Process a single candidate: skip-check, lookup, match, copy.
    """
    source_str = str(candidate.path)
    name = candidate.name

    try:
        if already_present(config.dst_dir, candidate.path):
            logger.info(f"Skipping (already in destination): {name}")
            return ProcessingResult(
                source_path=source_str,
                action="already_present",
                reason="Base name exists in destination"
            )

        result = session.lookup(candidate)
        if result.error is not None:
            logger.debug(f"Metadata lookup failed for {name}: {result.error}")
        elif not result.found:
            logger.debug(f"No {candidate.key} value in {name}")

        if not is_match(result.value, candidate.targets, config.policy, result.items):
            logger.info(f"No match: {name}")
            return ProcessingResult(
                source_path=source_str,
                action="no_match",
                value=result.value,
                reason=f"Lookup error: {result.error}" if result.error else ""
            )

        dst = destination_path(config.dst_dir, candidate.path)

        if config.dry_run:
            logger.info(f"[DRY-RUN] Would copy: {name}")
            return ProcessingResult(
                source_path=source_str,
                action="would_copy",
                value=result.value,
                reason=f"[DRY-RUN] Would copy to {dst}"
            )

        if not copy_file(candidate.path, dst, logger):
            logger.info(f"Skipping (appeared in destination): {name}")
            return ProcessingResult(
                source_path=source_str,
                action="already_present",
                value=result.value,
                reason="Destination appeared before copy"
            )

        logger.info(f"Copied: {name}")
        return ProcessingResult(
            source_path=source_str,
            action="copied",
            value=result.value,
            reason=f"Copied to {dst}"
        )

    except Exception as e:
        logger.error(f"Error processing {name}: {e}")
        return ProcessingResult(
            source_path=source_str,
            action="error",
            reason=f"Error: {e}"
        )


def run_pipeline(
    config: Config,
    session: MetadataSession,
    logger: logging.Logger,
    report_writer: Optional[Callable[[ProcessingResult], None]] = None
) -> tuple[Stats, list[ProcessingResult]]:
    """
    Main workflow: locate candidates and process each one on the worker pool.

    Every candidate is a future of the same executor and the function only
    returns once all of them are done or cancelled. With fail_fast, the first
    error cancels everything not yet started; in-flight tasks still finish.
    KeyboardInterrupt does the same and is re-raised after the pool drains.

    Args:
        report_writer: Optional callback to write results incrementally.
    """
    stats = Stats()
    results = []
    start = time.perf_counter()

    logger.info(f"Scanning {config.src_dir}...")
    exclude = config.dst_dir if config.dst_dir.is_relative_to(config.src_dir) else None
    candidates = [
        Candidate(path=p, key=config.key, targets=config.targets)
        for p in locate(config.src_dir, config.extensions, logger,
                        exclude_dir=exclude, skip_unreadable=config.skip_unreadable)
    ]
    stats.total_scanned = len(candidates)
    logger.info(f"Found {len(candidates)} candidate files")

    if not candidates:
        stats.elapsed = time.perf_counter() - start
        return stats, results

    if config.dry_run:
        logger.info("*** DRY-RUN MODE - No files will be copied ***")

    def finish(result: ProcessingResult):
        results.append(result)
        stats.record(result)
        if report_writer:
            report_writer(result)

    executor = ThreadPoolExecutor(max_workers=config.workers)
    futures = {
        executor.submit(process_candidate, c, config, session, logger): c
        for c in candidates
    }
    consumed = set()
    interrupted = False

    try:
        for future in tqdm(as_completed(futures), total=len(futures),
                           desc="Matching", unit="files", disable=not config.progress):
            if future.cancelled():
                continue
            consumed.add(future)
            result = future.result()
            finish(result)

            if config.fail_fast and result.action == "error" and not stats.aborted:
                logger.error("Fail-fast: cancelling remaining candidates")
                stats.aborted = True
                for pending in futures:
                    pending.cancel()
    except KeyboardInterrupt:
        interrupted = True
        logger.info("\nInterrupted: cancelling remaining candidates")
        for pending in futures:
            pending.cancel()
    finally:
        executor.shutdown(wait=True)

    # Cancelled candidates, and any that finished after an interrupt,
    # still get a result
    for future, candidate in futures.items():
        if future in consumed:
            continue
        if future.cancelled():
            finish(ProcessingResult(
                source_path=str(candidate.path),
                action="cancelled",
                reason="Cancelled before start"
            ))
        else:
            finish(future.result())

    stats.elapsed = time.perf_counter() - start
    if interrupted:
        raise KeyboardInterrupt
    return stats, results


@contextmanager
def streaming_report_writer(report_path: Optional[Path]):
    """
    Context manager for streaming CSV results.

    Yields None when no report was requested.
    """
    if report_path is None:
        yield None
        return

    report_path.parent.mkdir(parents=True, exist_ok=True)
    f = open(report_path, 'w', newline='', encoding='utf-8')
    writer = csv.writer(f)
    writer.writerow(["source_path", "action", "value", "reason"])
    row_count = [0]  # mutable counter for closure

    def write_result(result: ProcessingResult):
        writer.writerow([result.source_path, result.action, result.value, result.reason])
        row_count[0] += 1
        if row_count[0] % REPORT_FLUSH_EVERY == 0:
            f.flush()

    try:
        yield write_result
    finally:
        f.close()


def print_summary(stats: Stats, logger: logging.Logger, dry_run: bool):
    """Print final summary statistics."""
    logger.info("")
    logger.info("=" * 60)
    logger.info("SUMMARY" + (" (DRY-RUN)" if dry_run else ""))
    logger.info("=" * 60)
    logger.info(f"Total scanned:      {stats.total_scanned:,}")
    if dry_run:
        logger.info(f"Would copy:         {stats.would_copy:,}")
    else:
        logger.info(f"Copied:             {stats.copied:,}")
    logger.info(f"Already present:    {stats.already_present:,}")
    logger.info(f"No match:           {stats.no_match:,}")
    logger.info(f"  without value:    {stats.lookup_failures:,}")
    logger.info(f"Errors:             {stats.errors:,}")
    if stats.cancelled:
        logger.info(f"Cancelled:          {stats.cancelled:,}")
    logger.info("=" * 60)


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments, falling back to the environment."""
    env = os.environ
    parser = argparse.ArgumentParser(
        description="Copy images whose metadata matches a query into a destination directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Copy every JPEG whose Keywords contain "beach" or "sunset"
  exif-extract --src ~/Pictures --dst ~/Selected --key Keywords --query beach,sunset

  # Exact match on the camera model, read with Pillow instead of exiftool
  exif-extract --src ./raw --dst ./canon --key Model --query "Canon EOS R5" \\
      --policy exact --backend pillow

  # Show what would be copied
  exif-extract --src ./in --dst ./out --key IPTC:City --query Kyoto --dry-run

Environment:
  {ENV_SRC}, {ENV_DST}, {ENV_KEY}, {ENV_QUERY},
  {ENV_EXTENSIONS}, {ENV_BACKEND} provide defaults for the matching options.
        """
    )

    parser.add_argument(
        "--src", "--srcDir", dest="src", default=env.get(ENV_SRC),
        help="Directory to scan"
    )
    parser.add_argument(
        "--dst", "--dstDir", dest="dst", default=env.get(ENV_DST),
        help="Directory to receive matching files"
    )
    parser.add_argument(
        "--key", "--exifKey", dest="key", default=env.get(ENV_KEY),
        help="Metadata key to query (e.g. Keywords or IPTC:Keywords)"
    )
    parser.add_argument(
        "--query", "--exifQuery", dest="query", default=env.get(ENV_QUERY),
        help="Values to find (comma-separated)"
    )
    parser.add_argument(
        "--extensions", type=str, default=env.get(ENV_EXTENSIONS, ",".join(DEFAULT_EXTENSIONS)),
        help=f"Comma-separated, case-sensitive extensions to scan (default: {','.join(DEFAULT_EXTENSIONS)})"
    )
    parser.add_argument(
        "--policy", choices=[p.value for p in MatchPolicy], default=MatchPolicy.CONTAINS.value,
        help="contains: any query value is a substring; exact: value, or one entry of a multi-valued tag, equals a query value"
    )
    parser.add_argument(
        "--backend", choices=sorted(BACKENDS), default=env.get(ENV_BACKEND, DEFAULT_BACKEND),
        help=f"Metadata backend (default: {DEFAULT_BACKEND})"
    )
    parser.add_argument(
        "--exiftool", type=str, default=None,
        help="Path to the exiftool executable (default: exiftool on PATH)"
    )
    parser.add_argument(
        "--workers", type=int, default=DEFAULT_WORKERS,
        help=f"Number of worker threads (default: {DEFAULT_WORKERS})"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Show what would be copied without actually copying"
    )
    parser.add_argument(
        "--fail-fast", action="store_true",
        help="Stop starting new files after the first error"
    )
    parser.add_argument(
        "--skip-unreadable", action="store_true",
        help="Log and skip unreadable directories instead of aborting"
    )
    parser.add_argument(
        "--report", type=Path, default=None,
        help="Write a CSV line per file to this path"
    )
    parser.add_argument(
        "--log-file", type=Path, default=None,
        help="Write a detailed log to this path"
    )
    parser.add_argument(
        "--no-progress", action="store_true",
        help="Disable the progress bar"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Validate parsed arguments and freeze them into a Config."""
    missing = [
        opt for opt, value in (("--src", args.src), ("--dst", args.dst),
                               ("--key", args.key), ("--query", args.query))
        if value is None or not str(value).strip()
    ]
    if missing:
        raise ConfigurationError(f"Missing required option(s): {', '.join(missing)}")

    targets = parse_targets(args.query)
    if not targets:
        raise ConfigurationError(f"Query has no usable values: {args.query!r}")

    extensions = parse_extensions(args.extensions or "")
    if not extensions:
        raise ConfigurationError("No file extensions to scan")

    if args.backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown backend: {args.backend!r} (choose from {', '.join(sorted(BACKENDS))})"
        )

    if args.workers < 1:
        raise ConfigurationError(f"--workers must be at least 1, got {args.workers}")

    src_dir = Path(args.src).expanduser().resolve()
    dst_dir = Path(args.dst).expanduser().resolve()
    for label, path in (("Source", src_dir), ("Destination", dst_dir)):
        if not path.exists():
            raise ConfigurationError(f"{label} directory does not exist: {path}")
        if not path.is_dir():
            raise ConfigurationError(f"{label} is not a directory: {path}")

    if src_dir == dst_dir:
        raise ConfigurationError("Destination directory cannot be the same as source")

    return Config(
        src_dir=src_dir,
        dst_dir=dst_dir,
        key=args.key.strip(),
        targets=targets,
        extensions=extensions,
        policy=MatchPolicy(args.policy),
        backend=args.backend,
        exiftool_path=args.exiftool,
        workers=args.workers,
        dry_run=args.dry_run,
        fail_fast=args.fail_fast,
        skip_unreadable=args.skip_unreadable,
        report_path=args.report,
        log_file=args.log_file,
        progress=not args.no_progress,
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(config.log_file)

    # Log configuration
    logger.info("=" * 60)
    logger.info("EXIF EXTRACT")
    logger.info("=" * 60)
    logger.info(f"Source:        {config.src_dir}")
    logger.info(f"Destination:   {config.dst_dir}")
    logger.info(f"Key:           {config.key}")
    logger.info(f"Query:         {', '.join(config.targets)}")
    logger.info(f"Policy:        {config.policy.value}")
    logger.info(f"Extensions:    {', '.join(sorted(config.extensions))}")
    logger.info(f"Backend:       {config.backend}")
    logger.info(f"Workers:       {config.workers}")
    logger.info(f"HEIC support:  {HEIC_SUPPORTED}")
    logger.info(f"Dry-run:       {config.dry_run}")
    logger.info(f"Started:       {datetime.now().isoformat()}")
    logger.info("=" * 60)

    backend = BACKENDS[config.backend](config)

    try:
        with metadata_session(backend) as session, \
                streaming_report_writer(config.report_path) as report_writer:
            stats, _ = run_pipeline(config, session, logger, report_writer)

        if config.report_path is not None:
            logger.info(f"Results written to: {config.report_path}")

        print_summary(stats, logger, config.dry_run)
        logger.info(f"Scan completed in {stats.elapsed:.2f}s")

    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
        return 130
    except MetadataServiceUnavailable as e:
        logger.error(f"ERROR: {e}")
        return 1
    except TraversalError as e:
        logger.error(f"ERROR: {e}")
        return 1

    return 1 if stats.aborted else 0


if __name__ == "__main__":
    sys.exit(main())
