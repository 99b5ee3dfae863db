"""Runtime settings, read from the environment and overridden by CLI flags."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_CACHE_DIR = Path.home() / ".repo-nexus"
DEFAULT_SYNC_LIMIT = 20
DEFAULT_OPENROUTER_MODEL = "google/gemini-pro"


class ConfigError(ValueError):
    """An environment value could not be parsed."""


@dataclass
class Settings:
    """Everything the CLI needs to build sources, provider and cache."""

    github_token: str = ""
    github_user: str = ""
    openrouter_api_key: str = ""
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    sync_limit: int = DEFAULT_SYNC_LIMIT
    cache_quota_bytes: int | None = None

    @property
    def analysis_dir(self) -> Path:
        return self.cache_dir / "analysis"

    @property
    def snapshot_path(self) -> Path:
        return self.cache_dir / "local_repos.json"

    @property
    def inventory_path(self) -> Path:
        return self.cache_dir / "inventory_analysis.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        cache_dir = env.get("REPO_NEXUS_CACHE_DIR")
        return cls(
            github_token=env.get("GITHUB_TOKEN", ""),
            github_user=env.get("REPO_NEXUS_GITHUB_USER", ""),
            openrouter_api_key=env.get("OPENROUTER_API_KEY", ""),
            openrouter_model=env.get("OPENROUTER_MODEL") or DEFAULT_OPENROUTER_MODEL,
            cache_dir=Path(cache_dir).expanduser() if cache_dir else DEFAULT_CACHE_DIR,
            sync_limit=_as_int(env, "REPO_NEXUS_SYNC_LIMIT", DEFAULT_SYNC_LIMIT),
            cache_quota_bytes=_as_int(env, "REPO_NEXUS_CACHE_QUOTA", None),
        )


def _as_int(env: Mapping[str, str], key: str, default: int | None) -> int | None:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value
