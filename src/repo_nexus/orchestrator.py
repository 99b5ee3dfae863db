"""Per-repository analysis pipeline.

States: idle -> fetching_context -> analyzing -> success | error.

A cached record answers any superficial request and any request at all once
it is detailed; only cache misses and superficial-to-detailed upgrades reach
the network. Successful results are written back to the cache, failures
never are.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from .cache import AnalysisCache, satisfies
from .errors import AnalysisError, AnalysisInFlight, NexusError, NotFound
from .logging import get_logger
from .provider import AnalysisProvider
from .records import DETAILED, SUPERFICIAL, AnalysisRecord, RepositoryRecord, check_level
from .sources import RepositorySource, TreeEntry

logger = get_logger("orchestrator")

IDLE = "idle"
FETCHING_CONTEXT = "fetching_context"
ANALYZING = "analyzing"
SUCCESS = "success"
ERROR = "error"

MISSING_CONTEXT_PLACEHOLDER = "No README content found for this repository."


@dataclass
class AnalysisOutcome:
    """Terminal state of one orchestration."""

    repo: RepositoryRecord
    level: str
    state: str
    record: AnalysisRecord | None = None
    error: AnalysisError | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.state == SUCCESS


class InFlightRegistry:
    """Single-flight guard: at most one orchestration per repository id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: set[str] = set()

    def acquire(self, repo_id: str) -> bool:
        with self._lock:
            if repo_id in self._ids:
                return False
            self._ids.add(repo_id)
            return True

    def release(self, repo_id: str) -> None:
        with self._lock:
            self._ids.discard(repo_id)

    def __contains__(self, repo_id: str) -> bool:
        with self._lock:
            return repo_id in self._ids

    @contextmanager
    def hold(self, repo_id: str) -> Iterator[None]:
        if not self.acquire(repo_id):
            raise AnalysisInFlight(f"An analysis for repository {repo_id} is already running")
        try:
            yield
        finally:
            self.release(repo_id)


def render_tree(entries: list[TreeEntry]) -> str:
    """Render a flat listing as one ``[DIR]``/``[FILE]`` line per path."""
    return "\n".join(
        f"{'[DIR]' if e.is_directory else '[FILE]'} {e.path}" for e in entries
    )


class AnalysisOrchestrator:
    """Combines cache lookup, context retrieval and the AI provider."""

    def __init__(
        self,
        cache: AnalysisCache,
        source: RepositorySource,
        provider: AnalysisProvider,
        in_flight: InFlightRegistry | None = None,
        on_transition: Callable[[RepositoryRecord, str], None] | None = None,
    ):
        self.cache = cache
        self.source = source
        self.provider = provider
        self.in_flight = in_flight or InFlightRegistry()
        self.on_transition = on_transition

    def analyze(
        self,
        repo: RepositoryRecord,
        level: str = SUPERFICIAL,
        force: bool = False,
        allow_downgrade: bool = False,
    ) -> AnalysisOutcome:
        """Run the pipeline for one repository.

        With ``force`` the cache short-circuit is skipped; any cached context
        is still reused. A forced run never replaces a detailed record with a
        superficial one unless ``allow_downgrade`` is set; the request is
        raised to the detailed level instead. Errors are returned on the
        outcome, not raised.
        """
        check_level(level)
        self._transition(repo, IDLE)
        try:
            with self.in_flight.hold(repo.id):
                cached = self.cache.get(repo.id)
                if not force and satisfies(cached, level):
                    logger.debug("Cache hit for %s (%s)", repo.full_name, cached.level)
                    self._transition(repo, SUCCESS)
                    return AnalysisOutcome(repo, level, SUCCESS, record=cached, from_cache=True)
                if cached is not None and cached.level == DETAILED and not allow_downgrade:
                    level = DETAILED
                record = self._run(repo, level, cached)
        except NexusError as e:
            logger.warning("Analysis of %s failed (%s): %s", repo.full_name, e.kind, e.message)
            self._transition(repo, ERROR)
            return AnalysisOutcome(repo, level, ERROR, error=AnalysisError.from_exception(e))

        self._transition(repo, SUCCESS)
        return AnalysisOutcome(repo, level, SUCCESS, record=record)

    def retry(self, repo: RepositoryRecord, level: str = SUPERFICIAL) -> AnalysisOutcome:
        """Re-enter at context fetching after an error, at the same level."""
        return self.analyze(repo, level, force=True)

    def _run(
        self,
        repo: RepositoryRecord,
        level: str,
        cached: AnalysisRecord | None,
    ) -> AnalysisRecord:
        self._transition(repo, FETCHING_CONTEXT)
        context = self._context(repo, cached)
        tree_text = self._tree_text(repo) if level == DETAILED else None

        self._transition(repo, ANALYZING)
        payload = self.provider.analyze(repo, context, level, tree_text)
        payload.full_readme = context
        return self.cache.put(repo.id, repo.snapshot(), payload, level=level)

    def _context(self, repo: RepositoryRecord, cached: AnalysisRecord | None) -> str:
        if cached is not None and cached.payload.full_readme:
            return cached.payload.full_readme
        if repo.readme_content:
            return repo.readme_content
        try:
            return self.source.fetch_context(repo.full_name)
        except NotFound:
            logger.info("No README for %s, proceeding with metadata only", repo.full_name)
            return MISSING_CONTEXT_PLACEHOLDER

    def _tree_text(self, repo: RepositoryRecord) -> str:
        try:
            return render_tree(self.source.fetch_tree(repo.full_name))
        except NotFound:
            logger.info("No file tree for %s", repo.full_name)
            return ""

    def _transition(self, repo: RepositoryRecord, state: str) -> None:
        logger.debug("%s -> %s", repo.full_name, state)
        if self.on_transition is not None:
            self.on_transition(repo, state)
