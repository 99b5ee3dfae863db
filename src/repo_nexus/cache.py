"""Persistent analysis cache.

Records live in a small key-value store (one JSON file per key) under the
``repoAnalysis_`` prefix, alongside a global schema-version marker. Reads
drop anything malformed or written under another schema version; writes
always overwrite. Level monotonicity is the orchestrator's job.
"""

from __future__ import annotations

import errno
import json
import re
import time
from pathlib import Path

from .errors import QuotaExceeded
from .logging import get_logger
from .records import (
    DETAILED,
    SUPERFICIAL,
    AnalysisPayload,
    AnalysisRecord,
    check_level,
)

logger = get_logger("cache")

CACHE_SCHEMA_VERSION = 1
PAYLOAD_REVISION = 2
CACHE_KEY_PREFIX = "repoAnalysis_"
CACHE_VERSION_KEY = "cacheSchemaVersion"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class JsonFileStore:
    """Key-value store of text values, one file per key.

    ``quota_bytes`` caps the total size of stored values; a write that would
    exceed it, or that fails because the disk is full, raises QuotaExceeded.
    """

    SUFFIX = ".json"

    def __init__(self, directory: str | Path, quota_bytes: int | None = None):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}{self.SUFFIX}"

    def get_item(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        if self.quota_bytes is not None:
            current = self.size() - (path.stat().st_size if path.exists() else 0)
            if current + len(value.encode("utf-8")) > self.quota_bytes:
                raise QuotaExceeded(
                    f"Writing {key} would exceed the {self.quota_bytes} byte cache quota"
                )
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            if e.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
                raise QuotaExceeded(f"No space left writing {key}: {e}")
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.name[: -len(self.SUFFIX)] for p in self.directory.glob(f"*{self.SUFFIX}"))

    def size(self) -> int:
        if not self.directory.is_dir():
            return 0
        return sum(p.stat().st_size for p in self.directory.glob(f"*{self.SUFFIX}"))


class AnalysisCache:
    """Versioned analysis records keyed by repository id."""

    def __init__(self, store: JsonFileStore, schema_version: int = CACHE_SCHEMA_VERSION):
        self.store = store
        self.schema_version = schema_version

    @staticmethod
    def _key(repo_id: str | int) -> str:
        return f"{CACHE_KEY_PREFIX}{repo_id}"

    def get(self, repo_id: str | int) -> AnalysisRecord | None:
        """Return the cached record, or None if absent, malformed or stale-shaped."""
        key = self._key(repo_id)
        raw = self.store.get_item(key)
        if raw is None:
            return None

        try:
            record = AnalysisRecord.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping unreadable cache entry for repo %s: %s", repo_id, e)
            self.store.remove_item(key)
            return None

        if record.schema_version != self.schema_version:
            logger.warning(
                "Cache schema mismatch for repo %s. Expected %s, got %s. Clearing entry.",
                repo_id, self.schema_version, record.schema_version,
            )
            self.store.remove_item(key)
            return None
        return record

    def put(
        self,
        repo_id: str | int,
        repo_snapshot: dict[str, str],
        payload: AnalysisPayload,
        level: str = SUPERFICIAL,
    ) -> AnalysisRecord:
        """Store a successful analysis, overwriting any previous record.

        The record is returned even when the store rejects the write, so the
        caller can still use it for the rest of the session.
        """
        record = AnalysisRecord(
            schema_version=self.schema_version,
            cached_at=int(time.time() * 1000),
            repo_snapshot=dict(repo_snapshot),
            level=check_level(level),
            payload=payload,
            payload_revision=PAYLOAD_REVISION,
        )
        try:
            self.store.set_item(self._key(repo_id), json.dumps(record.to_dict()))
        except QuotaExceeded as e:
            logger.warning("Analysis for repo %s not persisted: %s", repo_id, e.message)
        return record

    def clear(self, repo_id: str | int | None = None) -> int:
        """Remove one record, or every record when ``repo_id`` is None.

        Returns the number of records removed.
        """
        if repo_id is not None:
            key = self._key(repo_id)
            existed = self.store.get_item(key) is not None
            self.store.remove_item(key)
            return int(existed)

        removed = 0
        for key in self.store.keys():
            if key.startswith(CACHE_KEY_PREFIX):
                self.store.remove_item(key)
                removed += 1
        return removed

    def list_all(self) -> list[AnalysisRecord]:
        records = []
        for key in self.store.keys():
            if key.startswith(CACHE_KEY_PREFIX):
                record = self.get(key[len(CACHE_KEY_PREFIX):])
                if record is not None:
                    records.append(record)
        return records

    def migrate(self) -> bool:
        """Clear every record if the stored schema marker is older than ours.

        Returns True when a migration ran. Called once at process start.
        """
        stored = self.store.get_item(CACHE_VERSION_KEY)
        try:
            stored_version = int(stored) if stored is not None else 0
        except ValueError:
            stored_version = 0

        if stored_version == self.schema_version:
            return False

        logger.info("Cache migration: %s -> %s", stored_version, self.schema_version)
        if stored_version < self.schema_version:
            removed = self.clear()
            logger.warning("Cache schema changed; cleared %d cached analyses", removed)

        try:
            self.store.set_item(CACHE_VERSION_KEY, str(self.schema_version))
        except QuotaExceeded as e:
            logger.warning("Could not record cache schema version: %s", e.message)
        return True


def satisfies(record: AnalysisRecord | None, level: str) -> bool:
    """True if ``record`` answers a request at ``level`` without new work."""
    if record is None:
        return False
    return level == SUPERFICIAL or record.level == DETAILED


def format_cache_age(cached_at: int, now: float | None = None) -> str:
    """Human-readable age of a record, e.g. "3 hours ago"."""
    now_ms = (time.time() if now is None else now) * 1000
    age_seconds = max(0, int((now_ms - cached_at) // 1000))
    minutes, hours, days = age_seconds // 60, age_seconds // 3600, age_seconds // 86400

    if days > 0:
        return f"{days} day{'s' if days != 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    return "just now"
