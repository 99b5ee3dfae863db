"""Tests for the inventory and portfolio report inputs."""

import datetime

from repo_nexus.records import DETAILED, ForensicSignature, RepositoryRecord
from repo_nexus.reports import (
    NO_ANALYSIS,
    days_since_update,
    inventory_entries,
    portfolio_entries,
    render_portfolio_markdown,
)

from conftest import sample_payload

NOW = datetime.datetime(2025, 1, 31, tzinfo=datetime.timezone.utc)


def make_repo(repo_id, name, updated_at="2025-01-01T00:00:00Z", signature=None):
    return RepositoryRecord(
        id=repo_id, full_name=f"octocat/{name}", name=name, language="Go",
        updated_at=updated_at, forensic_signature=signature,
    )


def test_days_since_update():
    assert days_since_update("2025-01-01T00:00:00Z", NOW) == 30
    assert days_since_update("2025-01-30T12:00:00+00:00", NOW) == 0
    assert days_since_update("2025-01-21T00:00:00", NOW) == 10
    assert days_since_update("2026-01-01T00:00:00Z", NOW) == 0
    assert days_since_update("", NOW) is None
    assert days_since_update("last tuesday", NOW) is None


class TestInventoryEntries:
    """Every repository is listed, analyzed or not."""

    def test_entries(self, cache):
        sig = ForensicSignature(frozenset({"go.mod"}), ("cobra",), "go modules")
        analyzed = make_repo("1", "cli", signature=sig)
        idle = make_repo("2", "old", updated_at="2024-01-01T00:00:00Z")
        cache.put("1", analyzed.snapshot(), sample_payload(project_pulse="Busy"))

        first, second = inventory_entries([analyzed, idle], cache, now=NOW)

        assert first["pulse"] == "Busy"
        assert first["daysSinceUpdate"] == 30
        assert first["techSignature"]["dependencies"] == ["cobra"]
        assert second["pulse"] == NO_ANALYSIS
        assert second["daysSinceUpdate"] == 396
        assert second["techSignature"] == {"detectedFiles": [], "dependencies": []}


class TestPortfolioEntries:
    """Only analyzed repositories reach the portfolio."""

    def test_entries(self, cache):
        sig = ForensicSignature(frozenset(), ("react", "vite"), "npm")
        web = make_repo("1", "web", signature=sig)
        cache.put("1", web.snapshot(), sample_payload(resume_points=["A", "B", "C"]),
                  level=DETAILED)

        [entry] = portfolio_entries([web, make_repo("2", "bare")], cache)

        assert entry["name"] == "web"
        assert entry["techStack"] == ["react", "vite"]
        assert entry["resumePoints"] == ["A", "B", "C"]
        assert entry["level"] == DETAILED

    def test_empty_cache(self, cache):
        assert portfolio_entries([make_repo("1", "web")], cache) == []


def test_render_portfolio_markdown():
    report = {
        "executiveSummary": "Builds tools.",
        "quantitativeHighlights": {"languagesBreakdown": {"Go": 2, "Python": 1}},
        "projectShowcase": [
            {"name": "cli", "problem": "Slow deploys", "techTags": ["Go", "cobra"]},
        ],
        "skillsMatrix": {"languages": ["Go"], "tools": []},
        "fullProjectRegistry": [
            {"name": "cli", "category": "Tooling", "status": "Active", "standoutFactor": "Fast"},
        ],
    }

    text = render_portfolio_markdown(report, total=3)

    assert "* **Total Repositories:** 3" in text
    assert "Go (2), Python (1)" in text
    assert "### cli\n* **Problem:** Slow deploys" in text
    assert "* **Stack:** Go, cobra" in text
    assert "* **Languages:** Go" in text
    assert "Tools" not in text
    assert "| cli | Tooling | Active | Fast |" in text
