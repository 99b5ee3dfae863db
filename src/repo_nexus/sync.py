"""Batch synchronization - drives the orchestrator across a collection.

Repositories are processed one at a time, in list order. Both GitHub and
the AI provider throttle per caller, so the batch never fans out.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable

from .cache import PAYLOAD_REVISION, AnalysisCache, satisfies
from .logging import get_logger
from .orchestrator import AnalysisOrchestrator
from .records import SUPERFICIAL, RepositoryRecord, SyncProgress, check_level

logger = get_logger("sync")


@dataclass
class SyncReport:
    """What a batch pass did."""

    total: int = 0
    analyzed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False


class SyncCoordinator:
    """Sequentially analyzes up to ``limit`` repositories."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        cache: AnalysisCache | None = None,
        progress_callback: Callable[[SyncProgress], None] | None = None,
    ):
        self.orchestrator = orchestrator
        self.cache = cache or orchestrator.cache
        self.progress_callback = progress_callback

    def run(
        self,
        repos: list[RepositoryRecord],
        limit: int,
        level: str = SUPERFICIAL,
        deep: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> SyncReport:
        """Analyze ``repos[:limit]`` one after another.

        With ``deep``, records written before the current payload revision
        are re-analyzed even when they already satisfy ``level``. This is the
        one place a detailed record may be replaced by a superficial one.
        """
        check_level(level)
        batch = repos[: max(0, limit)]
        report = SyncReport(total=len(batch))

        for completed, repo in enumerate(batch):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Sync cancelled after %d of %d repositories", completed, len(batch))
                report.cancelled = True
                break

            if self.progress_callback:
                self.progress_callback(SyncProgress(completed, len(batch), repo.name))

            cached = self.cache.get(repo.id)
            stale = deep and cached is not None and cached.payload_revision < PAYLOAD_REVISION
            if satisfies(cached, level) and not stale:
                logger.debug("Skipping %s - cache already satisfies %s", repo.name, level)
                report.skipped.append(repo.name)
                continue

            try:
                outcome = self.orchestrator.analyze(
                    repo, level, force=stale, allow_downgrade=stale
                )
            except Exception as e:
                logger.exception("Failed to sync %s", repo.name)
                report.failed.append(repo.name)
                report.errors.append(f"{repo.name}: {e}")
                continue

            if outcome.ok:
                report.analyzed.append(repo.name)
            else:
                logger.error(
                    "Failed to sync %s: %s: %s", repo.name, outcome.error.kind, outcome.error.message
                )
                report.failed.append(repo.name)
                report.errors.append(f"{repo.name}: {outcome.error.kind}: {outcome.error.message}")

        if self.progress_callback and not report.cancelled:
            self.progress_callback(SyncProgress(len(batch), len(batch), ""))
        return report
