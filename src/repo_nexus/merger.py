"""Union of remote and local repository collections.

Local scans accumulate across runs (first-seen record wins for a given
full name or directory) and are persisted as a snapshot so the filesystem is not
rescanned every session.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from .logging import get_logger
from .records import RepositoryRecord

logger = get_logger("merger")


def dedupe_by_full_name(records: Iterable[RepositoryRecord]) -> list[RepositoryRecord]:
    """Drop later records whose full name was already seen, keeping order."""
    seen: set[str] = set()
    unique = []
    for record in records:
        if record.full_name not in seen:
            seen.add(record.full_name)
            unique.append(record)
    return unique


def dedupe_local(records: Iterable[RepositoryRecord]) -> list[RepositoryRecord]:
    """Like dedupe_by_full_name, but a directory scanned under two roots counts once."""
    paths: set[str] = set()
    unique = []
    for record in dedupe_by_full_name(records):
        if record.local_path and record.local_path in paths:
            logger.debug("Already known under another name: %s", record.local_path)
            continue
        paths.add(record.local_path)
        unique.append(record)
    return unique


class RepositoryMerger:
    """Keeps the accumulated local collection and merges it with remote listings."""

    def __init__(self, snapshot_path: str | Path | None = None):
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._local: list[RepositoryRecord] = self.load_snapshot()

    @property
    def local_records(self) -> list[RepositoryRecord]:
        return list(self._local)

    def merge(
        self,
        remote: list[RepositoryRecord],
        local: list[RepositoryRecord],
    ) -> list[RepositoryRecord]:
        """Return remote records followed by every local record seen so far.

        Remote and local records live in disjoint full-name namespaces and are
        never compared with each other.
        """
        before = len(self._local)
        self._local = dedupe_local([*self._local, *local])
        if len(self._local) != before:
            self.save_snapshot()
        return [*dedupe_by_full_name(remote), *self._local]

    def forget_local(self) -> None:
        """Drop the accumulated local collection and its snapshot."""
        self._local = []
        if self.snapshot_path is not None:
            self.snapshot_path.unlink(missing_ok=True)

    def load_snapshot(self) -> list[RepositoryRecord]:
        if self.snapshot_path is None or not self.snapshot_path.is_file():
            return []
        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
            return dedupe_local(RepositoryRecord.from_dict(item) for item in data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable local scan snapshot %s: %s", self.snapshot_path, e)
            return []

    def save_snapshot(self) -> None:
        if self.snapshot_path is None:
            return
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        self.snapshot_path.write_text(
            json.dumps([r.to_dict() for r in self._local], indent=2), encoding="utf-8"
        )
