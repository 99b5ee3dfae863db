"""Prompt templates for repository analysis.

One template per analysis level, plus the collection-wide strategy and
portfolio templates. All ask the model for a strict JSON object so the
provider can validate its shape.
"""

from __future__ import annotations

import json
from typing import Any

from .records import DETAILED, RepositoryRecord

SYSTEM_PROMPT = """You are a Senior Principal Engineer reviewing a developer's old projects.
Respond ONLY with a valid JSON object. No markdown, no commentary.
Be specific: name files, libraries and concrete next steps."""

CONTEXT_LIMIT = 8000
TREE_LIMIT = 5000

_RESPONSE_SHAPE = """Return a JSON object with these exact keys:
{
  "projectPulse": string (2-3 sentences: what this project is and where it stands),
  "resumePoints": array of exactly 3 strings (achievements worth listing on a resume),
  "forgottenIdeas": array of 2-3 strings (half-finished or abandoned ideas worth revisiting),
  "reorgAdvice": string (how to restructure or consolidate this repository)"""

_DETAILED_SHAPE = """,
  "detailedDescription": string (a thorough walkthrough of the architecture, grounded in the file structure)"""


def _repo_header(repo: RepositoryRecord) -> str:
    lines = [
        f"Repository: {repo.name}",
        f"Description: {repo.description or 'N/A'}",
        f"Language: {repo.language or 'Unknown'}",
    ]
    sig = repo.forensic_signature
    if sig is not None:
        if sig.build_system:
            lines.append(f"Build system: {sig.build_system}")
        if sig.detected_files:
            lines.append(f"Detected files: {', '.join(sorted(sig.detected_files))}")
        if sig.dependencies:
            lines.append(f"Dependencies: {', '.join(sig.dependencies)}")
        if sig.has_container_descriptor:
            lines.append("Containerized: yes")
    return "\n".join(lines)


def analysis_prompt(
    repo: RepositoryRecord,
    context_text: str,
    level: str,
    tree_text: str | None = None,
) -> str:
    """Build the user prompt for a single-repository analysis."""
    shape = _RESPONSE_SHAPE + (_DETAILED_SHAPE if level == DETAILED else "")
    tree_section = (
        f"FILE STRUCTURE:\n{tree_text[:TREE_LIMIT]}\n" if tree_text else ""
    )
    return f"""Analyze this repository as a Senior Software Architect.

{_repo_header(repo)}

README CONTEXT:
{context_text[:CONTEXT_LIMIT]}

{tree_section}
{shape}
}}

CRITICAL: Be specific. Do not say "Add error handling". Say which file needs it."""


INVENTORY_SYSTEM_PROMPT = "You are a CTO/Chief Architect. Respond ONLY with a valid JSON object."

PORTFOLIO_SYSTEM_PROMPT = "You are a Senior Career Architect. Respond ONLY with a valid JSON object."


def inventory_prompt(entries: list[dict[str, Any]], stalled_after_days: int) -> str:
    """Build the user prompt for the cross-repository strategy."""
    return f"""I have a collection of software repositories with FORENSIC DATA included.
Provide a "Master Nexus Strategy" based on FACTS, not guesses.

FORENSIC DATA EXPLAINED:
- "daysSinceUpdate": actual days since the last change. Use it for status (>{stalled_after_days} days = Stalled).
- "techSignature": detected manifest files and raw dependency names.
- "pulse": the cached per-repository summary, if one exists.

Portfolio data:
{json.dumps(entries, indent=2)}

Return a JSON object with:
1. "executiveSummary": string (an architectural mission statement for the whole collection)
2. "repoRegistry": array of {{"name": string, "status": "Active" | "Legacy" | "Stalled" | "Candidate-for-Merge", "action": string, "priority": "High" | "Medium" | "Low", "reasoning": string}}
   - Include an entry for EVERY repository above. Do not skip or truncate.
   - "status" must follow from daysSinceUpdate.
   - "action" must name technologies found in techSignature.
3. "crossPollination": array of {{"sourceRepo": string, "targetRepos": [string], "feature": string, "benefit": string}}
4. "consolidationLog": array of {{"reposToMerge": [string], "proposedNewName": string, "rationale": string}}
5. "innovationLab": array of {{"idea": string, "baseRepos": [string], "missingLink": string}}
6. "maintenanceAudit": array of strings (cleanup items based on age and old dependencies)"""


def portfolio_prompt(entries: list[dict[str, Any]]) -> str:
    """Build the user prompt for the resume portfolio report."""
    return f"""You are a Senior Technical Recruiter and Career Architect.

I have a portfolio of {len(entries)} repositories.

Forensic data:
{json.dumps(entries, indent=2)}

Create a "Distinguished Engineer's Portfolio Report". Return a JSON object with:
1. "executiveSummary": string (3 paragraphs: technical breadth, ability to ship, architectural diversity)
2. "quantitativeHighlights": {{"totalrepositories": number, "languagesBreakdown": {{language: count}}, "dominantTechStack": [string], "architecturalPatterns": [string]}}
3. "engineeringPhilosophy": string (deduced from the code)
4. "projectShowcase": array of the top 8-12 projects, each {{"name", "roleDefinition", "problem", "solution", "impact": string, "techTags": [string], "novelTechniques": [string]}}
5. "fullProjectRegistry": array of {{"name": string, "description": string, "status": "Active" | "Archive", "category": string, "private": boolean, "standoutFactor": string}}
6. "suggestedCategories": {{"showFirst": [string], "combineCandidates": [{{"category": string, "repos": [string], "reason": string}}]}}
7. "skillsMatrix": {{"languages": [string], "frameworks": [string], "tools": [string], "concepts": [string]}}

Style guide:
- NO FLUFF. Banned words: "Cutting-edge", "State-of-the-art", "Best-in-class".
- Focus on novelty: what was built that is more than installing a package?"""
