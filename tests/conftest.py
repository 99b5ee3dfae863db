"""Shared fixtures: an on-disk cache and fake collaborators."""

import pytest

from repo_nexus.cache import AnalysisCache, JsonFileStore
from repo_nexus.errors import NotFound
from repo_nexus.records import AnalysisPayload, RepositoryRecord
from repo_nexus.sources import TreeEntry


class FakeSource:
    """RepositorySource double that records every call."""

    def __init__(self, readmes=None, trees=None):
        self.readmes = readmes or {}
        self.trees = trees or {}
        self.calls = []

    def fetch_metadata_list(self):
        self.calls.append(("list",))
        return []

    def fetch_context(self, full_name):
        self.calls.append(("context", full_name))
        if full_name not in self.readmes:
            raise NotFound(f"No README for {full_name}")
        return self.readmes[full_name]

    def fetch_tree(self, full_name):
        self.calls.append(("tree", full_name))
        if full_name not in self.trees:
            raise NotFound(f"No tree for {full_name}")
        return self.trees[full_name]


class FakeProvider:
    """AnalysisProvider double; ``error`` makes every call raise it."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.report_calls = []
        self.closed = False

    def analyze(self, repo, context_text, level, tree_text=None):
        self.calls.append(
            {"repo": repo.full_name, "context": context_text, "level": level, "tree": tree_text}
        )
        if self.error is not None:
            raise self.error
        return AnalysisPayload(
            project_pulse=f"Pulse of {repo.name} from: {context_text[:40]}",
            resume_points=["Built it", "Shipped it", "Tested it"],
            forgotten_ideas=["Plugin system", "Dark mode"],
            reorg_advice="Split the monolith.",
            detailed_description="Deep dive." if level == "detailed" else None,
        )

    def summarize_inventory(self, entries):
        self.report_calls.append(("inventory", entries))
        if self.error is not None:
            raise self.error
        return {
            "executiveSummary": "Consolidate the tooling.",
            "repoRegistry": [
                {"name": e["name"], "status": "Active", "priority": "High", "action": "Ship it"}
                for e in entries
            ],
            "crossPollination": [],
            "consolidationLog": [],
            "innovationLab": [],
            "maintenanceAudit": ["Pin dependencies"],
        }

    def generate_portfolio(self, entries):
        self.report_calls.append(("portfolio", entries))
        if self.error is not None:
            raise self.error
        return {
            "executiveSummary": "Builds small, sharp tools.",
            "projectShowcase": [{"name": e["name"], "problem": "Invoices"} for e in entries],
            "quantitativeHighlights": {"totalrepositories": len(entries)},
            "suggestedCategories": {},
            "skillsMatrix": {"languages": ["Python"]},
            "fullProjectRegistry": [],
        }

    def close(self):
        self.closed = True


@pytest.fixture
def cache(tmp_path):
    return AnalysisCache(JsonFileStore(tmp_path / "cache"))


@pytest.fixture
def repo():
    return RepositoryRecord(
        id="42",
        full_name="octocat/hello-world",
        name="hello-world",
        description="My first repository",
        language="Python",
    )


@pytest.fixture
def source(repo):
    return FakeSource(
        readmes={repo.full_name: "# Hello\nA friendly greeting service.\n"},
        trees={
            repo.full_name: [
                TreeEntry("src", True),
                TreeEntry("src/app.py", False),
                TreeEntry("README.md", False),
            ]
        },
    )


@pytest.fixture
def provider():
    return FakeProvider()


def sample_payload(**overrides):
    fields = {
        "project_pulse": "Active and healthy",
        "resume_points": ["a", "b", "c"],
        "forgotten_ideas": ["x", "y"],
        "reorg_advice": "Keep going",
    }
    fields.update(overrides)
    return AnalysisPayload(**fields)
