"""Hash-keyed dependency cache for the Maven local repository.

A cache entry is a gzip tarball named after its key. Keys look like
``Linux-maven-<sha256>``; restoring falls back to the newest entry sharing the
``Linux-maven`` prefix. Nothing here is allowed to fail a run: every problem is
reported as a warning and the build simply downloads its dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import os
import platform
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .issues import RuntimeIssue

ARCHIVE_SUFFIX = ".tar.gz"
DEFAULT_MAX_ENTRIES = 3


def hash_files(paths: Iterable[Path]) -> str:
    """sha256 over the sorted per-file sha256 digests; empty string when no files match."""
    digests = []
    for path in sorted(paths):
        file_hash = hashlib.sha256()
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(65536), b""):
                file_hash.update(chunk)
        digests.append(file_hash.digest())

    if not digests:
        return ""

    combined = hashlib.sha256()
    for digest in digests:
        combined.update(digest)
    return combined.hexdigest()


def runner_os() -> str:
    """Operating system label used as the key prefix, e.g. 'Linux'."""
    return platform.system() or "unknown"


@dataclass(slots=True)
class CacheKey:
    key: str
    restore_prefix: str

    @classmethod
    def for_manifests(cls, manifests: Iterable[Path], tool: str = "maven") -> "CacheKey":
        prefix = f"{runner_os()}-{tool}"
        return cls(key=f"{prefix}-{hash_files(manifests)}", restore_prefix=prefix)


@dataclass(slots=True)
class CacheRestoreResult:
    issues: List[RuntimeIssue] = field(default_factory=list)
    matched_key: Optional[str] = None
    exact_hit: bool = False


@dataclass(slots=True)
class CacheSaveResult:
    issues: List[RuntimeIssue] = field(default_factory=list)
    saved: bool = False
    archive_path: Optional[Path] = None
    pruned: List[Path] = field(default_factory=list)


class DependencyCache:
    """Store and restore a directory as key-addressed tarballs under cache_root."""

    def __init__(
        self,
        cache_root: Path,
        target_path: Path,
        logger: Optional[logging.Logger] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self.cache_root = cache_root
        self.target_path = target_path
        self.max_entries = max(1, max_entries)
        self.logger = logger or logging.getLogger(__name__)

    def archive_path(self, key: str) -> Path:
        return self.cache_root / f"{key}{ARCHIVE_SUFFIX}"

    def find_entry(self, cache_key: CacheKey) -> Optional[Path]:
        exact = self.archive_path(cache_key.key)
        if exact.is_file():
            return exact

        if not self.cache_root.is_dir():
            return None

        candidates = [
            path
            for path in self.cache_root.iterdir()
            if path.is_file() and path.name.endswith(ARCHIVE_SUFFIX) and path.name.startswith(cache_key.restore_prefix)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda path: path.stat().st_mtime)

    def restore(self, cache_key: CacheKey) -> CacheRestoreResult:
        entry = self.find_entry(cache_key)
        if entry is None:
            self.logger.info("Cache miss for key %s", cache_key.key)
            return CacheRestoreResult(
                issues=[
                    RuntimeIssue(
                        code="CACHE_MISS",
                        message=f"No cache entry for {cache_key.key}; dependencies will be downloaded",
                        severity="info",
                        subject=cache_key.key,
                    )
                ]
            )

        matched_key = entry.name[: -len(ARCHIVE_SUFFIX)]
        try:
            self.target_path.parent.mkdir(parents=True, exist_ok=True)
            with tarfile.open(entry, "r:gz") as archive:
                _safe_extract(archive, self.target_path.parent)
        except (OSError, tarfile.TarError, ValueError) as exc:
            self.logger.warning("Failed to restore cache entry %s: %s", entry, exc)
            return CacheRestoreResult(
                issues=[
                    RuntimeIssue(
                        code="CACHE_RESTORE_FAILED",
                        message=f"Failed to restore cache entry {matched_key}: {exc}",
                        severity="warning",
                        subject=str(entry),
                    )
                ]
            )

        exact = matched_key == cache_key.key
        self.logger.info("Restored cache %s (%s match)", matched_key, "exact" if exact else "prefix")
        return CacheRestoreResult(matched_key=matched_key, exact_hit=exact)

    def save(self, cache_key: CacheKey) -> CacheSaveResult:
        if not self.target_path.is_dir():
            return CacheSaveResult(
                issues=[
                    RuntimeIssue(
                        code="CACHE_PATH_MISSING",
                        message=f"Nothing to cache: {self.target_path} does not exist",
                        severity="warning",
                        subject=str(self.target_path),
                    )
                ]
            )

        destination = self.archive_path(cache_key.key)
        tmp_name: Optional[str] = None
        try:
            self.cache_root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.cache_root, suffix=".partial")
            os.close(fd)
            with tarfile.open(tmp_name, "w:gz") as archive:
                archive.add(str(self.target_path), arcname=self.target_path.name)
            os.replace(tmp_name, destination)
            tmp_name = None
        except (OSError, tarfile.TarError) as exc:
            self.logger.warning("Failed to save cache %s: %s", cache_key.key, exc)
            return CacheSaveResult(
                issues=[
                    RuntimeIssue(
                        code="CACHE_SAVE_FAILED",
                        message=f"Failed to save cache {cache_key.key}: {exc}",
                        severity="warning",
                        subject=str(destination),
                    )
                ]
            )
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        self.logger.info("Saved cache %s", cache_key.key)
        pruned = self.prune(cache_key.restore_prefix)
        return CacheSaveResult(saved=True, archive_path=destination, pruned=pruned)

    def prune(self, restore_prefix: str) -> List[Path]:
        """Delete all but the newest max_entries archives sharing restore_prefix."""
        entries = sorted(
            (
                path
                for path in self.cache_root.glob(f"{restore_prefix}-*{ARCHIVE_SUFFIX}")
                if path.is_file()
            ),
            key=lambda path: path.stat().st_mtime,
            reverse=True,
        )
        removed: List[Path] = []
        for stale in entries[self.max_entries :]:
            try:
                stale.unlink()
            except OSError as exc:
                self.logger.warning("Could not remove stale cache entry %s: %s", stale, exc)
                continue
            self.logger.info("Removed stale cache entry %s", stale.name)
            removed.append(stale)
        return removed


def _safe_extract(archive: tarfile.TarFile, destination: Path) -> None:
    root = destination.resolve()
    for member in archive.getmembers():
        member_path = (root / member.name).resolve()
        if member_path != root and root not in member_path.parents:
            raise ValueError(f"Archive member escapes cache directory: {member.name}")
        if member.issym() or member.islnk():
            link_target = (member_path.parent / member.linkname).resolve()
            if root not in link_target.parents and link_target != root:
                raise ValueError(f"Archive link escapes cache directory: {member.name}")
    if hasattr(tarfile, "data_filter"):
        archive.extractall(root, filter="data")
    else:
        archive.extractall(root)
