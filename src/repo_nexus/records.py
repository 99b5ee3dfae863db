"""Core records: discovered repositories and cached analyses.

RepositoryRecord is produced by discovery (GitHub listing or a local scan)
and never mutated afterwards. AnalysisRecord is what the cache persists for
each repository id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SUPERFICIAL = "superficial"
DETAILED = "detailed"
LEVELS = (SUPERFICIAL, DETAILED)

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

MAX_SIGNATURE_DEPENDENCIES = 15


def check_level(level: str) -> str:
    """Return ``level`` unchanged, or raise ValueError for unknown depths."""
    if level not in LEVELS:
        raise ValueError(f"Unknown analysis level: {level!r}")
    return level


@dataclass(frozen=True)
class ForensicSignature:
    """Manifest files and dependency names detected without running code."""

    detected_files: frozenset[str] = field(default_factory=frozenset)
    dependencies: tuple[str, ...] = ()
    build_system: str = ""
    has_container_descriptor: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "detectedFiles": sorted(self.detected_files),
            "dependencies": list(self.dependencies),
            "buildSystem": self.build_system,
            "hasContainerDescriptor": self.has_container_descriptor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ForensicSignature:
        return cls(
            detected_files=frozenset(data.get("detectedFiles", [])),
            dependencies=tuple(data.get("dependencies", []))[:MAX_SIGNATURE_DEPENDENCIES],
            build_system=data.get("buildSystem", ""),
            has_container_descriptor=bool(data.get("hasContainerDescriptor", False)),
        )


@dataclass(frozen=True)
class RepositoryRecord:
    """A discoverable codebase, remote or local."""

    id: str
    full_name: str
    name: str
    description: str = ""
    language: str = ""
    private: bool = False
    updated_at: str = ""
    default_branch: str = "main"
    source_type: str = SOURCE_REMOTE
    html_url: str = ""
    local_path: str | None = None
    readme_content: str = ""
    forensic_signature: ForensicSignature | None = None

    @property
    def is_local(self) -> bool:
        return self.source_type == SOURCE_LOCAL

    def snapshot(self) -> dict[str, str]:
        """The slice of the record stored alongside a cached analysis."""
        return {
            "id": self.id,
            "name": self.name,
            "language": self.language,
            "description": self.description,
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "fullName": self.full_name,
            "name": self.name,
            "description": self.description,
            "language": self.language,
            "private": self.private,
            "updatedAt": self.updated_at,
            "defaultBranch": self.default_branch,
            "sourceType": self.source_type,
            "htmlUrl": self.html_url,
        }
        if self.local_path is not None:
            data["localPath"] = self.local_path
        if self.readme_content:
            data["readmeContent"] = self.readme_content
        if self.forensic_signature is not None:
            data["forensicSignature"] = self.forensic_signature.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositoryRecord:
        signature = data.get("forensicSignature")
        return cls(
            id=str(data["id"]),
            full_name=data["fullName"],
            name=data["name"],
            description=data.get("description") or "",
            language=data.get("language") or "",
            private=bool(data.get("private", False)),
            updated_at=data.get("updatedAt", ""),
            default_branch=data.get("defaultBranch") or "main",
            source_type=data.get("sourceType", SOURCE_REMOTE),
            html_url=data.get("htmlUrl", ""),
            local_path=data.get("localPath"),
            readme_content=data.get("readmeContent", ""),
            forensic_signature=ForensicSignature.from_dict(signature) if signature else None,
        )


@dataclass
class AnalysisPayload:
    """What the AI provider returns, plus the context it was given."""

    project_pulse: str
    resume_points: list[str] = field(default_factory=list)
    forgotten_ideas: list[str] = field(default_factory=list)
    reorg_advice: str = ""
    full_readme: str | None = None
    detailed_description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "projectPulse": self.project_pulse,
            "resumePoints": list(self.resume_points),
            "forgottenIdeas": list(self.forgotten_ideas),
            "reorgAdvice": self.reorg_advice,
        }
        if self.full_readme is not None:
            data["fullReadme"] = self.full_readme
        if self.detailed_description is not None:
            data["detailedDescription"] = self.detailed_description
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisPayload:
        return cls(
            project_pulse=data["projectPulse"],
            resume_points=list(data.get("resumePoints", [])),
            forgotten_ideas=list(data.get("forgottenIdeas", [])),
            reorg_advice=data.get("reorgAdvice", ""),
            full_readme=data.get("fullReadme"),
            detailed_description=data.get("detailedDescription"),
        )


@dataclass
class AnalysisRecord:
    """One cached analysis, keyed by repository id."""

    schema_version: int
    cached_at: int  # epoch milliseconds
    repo_snapshot: dict[str, str]
    level: str
    payload: AnalysisPayload
    status: str = STATUS_SUCCESS
    error_detail: str | None = None
    # Bumped when the provider's output schema grows; deep sync backfills
    # records written at an older revision.
    payload_revision: int = 1

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "cachedAt": self.cached_at,
            "repo": dict(self.repo_snapshot),
            "level": self.level,
            "analysis": self.payload.to_dict(),
            "status": self.status,
            "payloadRevision": self.payload_revision,
        }
        if self.error_detail is not None:
            data["errorDetails"] = self.error_detail
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisRecord:
        """Build a record from its stored form. Raises on malformed input."""
        level = check_level(data["level"])
        return cls(
            schema_version=int(data["schemaVersion"]),
            cached_at=int(data["cachedAt"]),
            repo_snapshot=dict(data["repo"]),
            level=level,
            payload=AnalysisPayload.from_dict(data["analysis"]),
            status=data.get("status", STATUS_SUCCESS),
            error_detail=data.get("errorDetails"),
            payload_revision=int(data.get("payloadRevision", 1)),
        )


@dataclass(frozen=True)
class SyncProgress:
    """Batch progress snapshot. Never persisted."""

    current: int
    total: int
    current_name: str
