"""Collection-wide reports built from the repository list and the cache.

The inventory strategy looks at every known repository (analyzed or not);
the portfolio only at repositories with a cached analysis.
"""

from __future__ import annotations

import datetime
from typing import Any

from .cache import AnalysisCache
from .records import AnalysisRecord, RepositoryRecord

NO_ANALYSIS = "No analysis available"


def days_since_update(updated_at: str, now: datetime.datetime | None = None) -> int | None:
    """Whole days between ``updated_at`` (ISO-8601) and ``now``; None if unparseable."""
    if not updated_at:
        return None
    try:
        updated = datetime.datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=datetime.timezone.utc)
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return max((now - updated).days, 0)


def _cached_by_id(cache: AnalysisCache) -> dict[str, AnalysisRecord]:
    return {str(r.repo_snapshot.get("id", "")): r for r in cache.list_all()}


def inventory_entries(
    repos: list[RepositoryRecord],
    cache: AnalysisCache,
    now: datetime.datetime | None = None,
) -> list[dict[str, Any]]:
    """One entry per repository: metadata, age, signature and cached pulse."""
    cached = _cached_by_id(cache)
    entries = []
    for repo in repos:
        record = cached.get(repo.id)
        sig = repo.forensic_signature
        entries.append({
            "name": repo.name,
            "language": repo.language or "Unknown",
            "description": repo.description,
            "daysSinceUpdate": days_since_update(repo.updated_at, now),
            "techSignature": (
                sig.to_dict() if sig is not None
                else {"detectedFiles": [], "dependencies": []}
            ),
            "pulse": record.payload.project_pulse if record is not None else NO_ANALYSIS,
        })
    return entries


def portfolio_entries(
    repos: list[RepositoryRecord],
    cache: AnalysisCache,
) -> list[dict[str, Any]]:
    """One entry per repository that has a cached analysis."""
    cached = _cached_by_id(cache)
    entries = []
    for repo in repos:
        record = cached.get(repo.id)
        if record is None:
            continue
        sig = repo.forensic_signature
        entries.append({
            "name": repo.name,
            "language": repo.language or "Unknown",
            "description": repo.description,
            "private": repo.private,
            "techStack": list(sig.dependencies) if sig is not None else [],
            "pulse": record.payload.project_pulse,
            "resumePoints": list(record.payload.resume_points),
            "level": record.level,
        })
    return entries


def render_portfolio_markdown(portfolio: dict[str, Any], total: int) -> str:
    """Markdown export of a portfolio report."""
    highlights = portfolio.get("quantitativeHighlights") or {}
    languages = highlights.get("languagesBreakdown") or {}
    lines = [
        "# Distinguished Engineer's Portfolio Report",
        "",
        "## Executive Summary",
        portfolio.get("executiveSummary", ""),
        "",
        "## Engineering Impact By The Numbers",
        f"* **Total Repositories:** {highlights.get('totalrepositories') or total}",
        f"* **Top Languages:** {', '.join(f'{k} ({v})' for k, v in languages.items())}",
        f"* **Core Tech Stack:** {', '.join(highlights.get('dominantTechStack') or [])}",
        f"* **Architectural Diversity:** {', '.join(highlights.get('architecturalPatterns') or [])}",
    ]
    if portfolio.get("engineeringPhilosophy"):
        lines += ["", "## Engineering Philosophy", portfolio["engineeringPhilosophy"]]

    lines += ["", "## Project Showcase"]
    for project in portfolio.get("projectShowcase") or []:
        lines += ["", f"### {project.get('name', 'Untitled')}"]
        if project.get("roleDefinition"):
            lines.append(f"*{project['roleDefinition']}*")
        for label, key in (("Problem", "problem"), ("Solution", "solution"), ("Impact", "impact")):
            if project.get(key):
                lines.append(f"* **{label}:** {project[key]}")
        if project.get("novelTechniques"):
            lines.append(f"* **Novel techniques:** {', '.join(project['novelTechniques'])}")
        if project.get("techTags"):
            lines.append(f"* **Stack:** {', '.join(project['techTags'])}")

    skills = portfolio.get("skillsMatrix") or {}
    if skills:
        lines += ["", "## Skills Matrix"]
        for key, values in skills.items():
            if values:
                lines.append(f"* **{key.capitalize()}:** {', '.join(values)}")

    registry = portfolio.get("fullProjectRegistry") or []
    if registry:
        lines += [
            "",
            "## Full Project Registry",
            "",
            "| Project | Category | Status | Standout |",
            "| --- | --- | --- | --- |",
        ]
        for item in registry:
            lines.append(
                f"| {item.get('name', '')} | {item.get('category', '')} "
                f"| {item.get('status', '')} | {item.get('standoutFactor', '')} |"
            )
    return "\n".join(lines) + "\n"
