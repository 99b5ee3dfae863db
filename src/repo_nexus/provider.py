"""AI analysis provider - OpenRouter chat completions.

Sends one analysis prompt per repository, parses the JSON answer and
validates its shape. Failures are classified so the orchestrator can
surface an actionable error kind.
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

import httpx

from .errors import AuthError, MalformedResponse, RateLimited, TransportError
from .logging import get_logger
from .prompts import (
    INVENTORY_SYSTEM_PROMPT,
    PORTFOLIO_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    analysis_prompt,
    inventory_prompt,
    portfolio_prompt,
)
from .records import DETAILED, AnalysisPayload, RepositoryRecord

logger = get_logger("provider")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-pro"
GENERATE_TIMEOUT = 120

RESUME_POINTS = 3
MAX_FORGOTTEN_IDEAS = 3
STALLED_AFTER_DAYS = 180

_FENCE = re.compile(r"```(?:json)?\n?|```")
_RATE_LIMIT_HINT = re.compile(r"rate.?limit|\b429\b|too many requests", re.IGNORECASE)


class AnalysisProvider(Protocol):
    def analyze(
        self,
        repo: RepositoryRecord,
        context_text: str,
        level: str,
        tree_text: str | None = None,
    ) -> AnalysisPayload: ...


class OpenRouterProvider:
    """Client for the OpenRouter chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = OPENROUTER_BASE_URL,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=GENERATE_TIMEOUT)

    def analyze(
        self,
        repo: RepositoryRecord,
        context_text: str,
        level: str,
        tree_text: str | None = None,
    ) -> AnalysisPayload:
        """Analyze one repository. Raises a classified NexusError on failure."""
        self._require_key()
        content = self.complete(analysis_prompt(repo, context_text, level, tree_text))
        return parse_payload(content, level)

    def summarize_inventory(self, entries: list[dict[str, Any]]) -> dict[str, Any]:
        """Collection-wide strategy over inventory entries (see reports.inventory_entries)."""
        self._require_key()
        content = self.complete(
            inventory_prompt(entries, STALLED_AFTER_DAYS), system=INVENTORY_SYSTEM_PROMPT
        )
        strategy = parse_strategy(content)
        listed = {item["name"] for item in strategy["repoRegistry"]}
        missing = [e["name"] for e in entries if e["name"] not in listed]
        if missing:
            logger.warning("Strategy registry omits %d repositories: %s",
                           len(missing), ", ".join(missing[:10]))
        return strategy

    def generate_portfolio(self, entries: list[dict[str, Any]]) -> dict[str, Any]:
        """Resume portfolio report over portfolio entries (see reports.portfolio_entries)."""
        self._require_key()
        content = self.complete(portfolio_prompt(entries), system=PORTFOLIO_SYSTEM_PROMPT)
        return parse_portfolio(content)

    def _require_key(self) -> None:
        if not self.api_key:
            raise AuthError("OpenRouter API key is not configured. Set OPENROUTER_API_KEY.")

    def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        """Send one chat completion and return the message text."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-Title": "RepoNexus",
            "Content-Type": "application/json",
        }

        try:
            resp = self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=GENERATE_TIMEOUT,
            )
        except httpx.TimeoutException:
            raise TransportError(f"Model generation timed out after {GENERATE_TIMEOUT}s")
        except httpx.HTTPError as e:
            raise TransportError(f"Cannot connect to OpenRouter: {e}")

        if resp.status_code != 200:
            message = _error_message(resp)
            if resp.status_code == 429 or _RATE_LIMIT_HINT.search(message):
                raise RateLimited("Rate limit exceeded on OpenRouter. Please wait a moment.")
            if resp.status_code in (401, 403):
                raise AuthError(f"OpenRouter rejected the API key: {message}")
            raise TransportError(f"OpenRouter returned {resp.status_code}: {message}")

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise MalformedResponse("The AI model returned an unexpected response envelope.")
        if not content:
            raise MalformedResponse("The AI model returned an empty response.")
        return content

    def close(self) -> None:
        self._client.close()


def _error_message(resp: httpx.Response) -> str:
    try:
        return str(resp.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return resp.text[:200] or resp.reason_phrase


def _load_object(content: str) -> dict[str, Any]:
    cleaned = _FENCE.sub("", content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        raise MalformedResponse(f"The AI provided malformed data: {cleaned[:200]}")
    if not isinstance(data, dict):
        raise MalformedResponse("The AI response is not a JSON object.")
    return data


def parse_payload(content: str, level: str) -> AnalysisPayload:
    """Parse and validate the model's JSON answer."""
    data = _load_object(content)

    pulse = data.get("projectPulse")
    if not isinstance(pulse, str) or not pulse.strip():
        raise MalformedResponse("The AI response is missing projectPulse.")

    resume_points = _string_list(data, "resumePoints")
    forgotten_ideas = _string_list(data, "forgottenIdeas")

    advice = data.get("reorgAdvice", "")
    if not isinstance(advice, str):
        raise MalformedResponse("reorgAdvice must be a string.")

    detailed = data.get("detailedDescription")
    if level == DETAILED and not isinstance(detailed, str):
        raise MalformedResponse("A detailed analysis must include detailedDescription.")

    return AnalysisPayload(
        project_pulse=pulse.strip(),
        resume_points=resume_points[:RESUME_POINTS],
        forgotten_ideas=forgotten_ideas[:MAX_FORGOTTEN_IDEAS],
        reorg_advice=advice.strip(),
        detailed_description=detailed if isinstance(detailed, str) else None,
    )


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise MalformedResponse(f"{key} must be a non-empty list.")
    if not all(isinstance(item, str) for item in value):
        raise MalformedResponse(f"{key} must contain only strings.")
    return [item.strip() for item in value]


def parse_strategy(content: str) -> dict[str, Any]:
    """Validate a collection strategy; unknown keys are kept as returned."""
    data = _load_object(content)
    _require_summary(data)
    registry = data.get("repoRegistry")
    if not isinstance(registry, list):
        raise MalformedResponse("repoRegistry must be a list.")
    if not all(isinstance(item, dict) and isinstance(item.get("name"), str) for item in registry):
        raise MalformedResponse("Every repoRegistry entry needs a name.")
    for key in ("crossPollination", "consolidationLog", "innovationLab", "maintenanceAudit"):
        data.setdefault(key, [])
        if not isinstance(data[key], list):
            raise MalformedResponse(f"{key} must be a list.")
    return data


def parse_portfolio(content: str) -> dict[str, Any]:
    """Validate a portfolio report; unknown keys are kept as returned."""
    data = _load_object(content)
    _require_summary(data)
    showcase = data.get("projectShowcase")
    if not isinstance(showcase, list) or not all(isinstance(p, dict) for p in showcase):
        raise MalformedResponse("projectShowcase must be a list of objects.")
    for key in ("quantitativeHighlights", "suggestedCategories", "skillsMatrix"):
        data.setdefault(key, {})
        if not isinstance(data[key], dict):
            raise MalformedResponse(f"{key} must be an object.")
    data.setdefault("fullProjectRegistry", [])
    if not isinstance(data["fullProjectRegistry"], list):
        raise MalformedResponse("fullProjectRegistry must be a list.")
    return data


def _require_summary(data: dict[str, Any]) -> None:
    summary = data.get("executiveSummary")
    if not isinstance(summary, str) or not summary.strip():
        raise MalformedResponse("The AI response is missing executiveSummary.")
