"""Classified errors shared by sources, providers, the cache and the scanner."""

from __future__ import annotations

from dataclasses import dataclass


class NexusError(Exception):
    """Base error. ``kind`` is the stable classification shown to users."""

    kind = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(NexusError):
    """Network failure or unexpected HTTP status."""

    kind = "TransportError"


class AuthError(NexusError):
    """Missing or rejected credentials."""

    kind = "AuthError"


class RateLimited(NexusError):
    """The remote API throttled us."""

    kind = "RateLimited"


class NotFound(NexusError):
    """README or tree missing. Absorbed by the orchestrator."""

    kind = "NotFound"


class MalformedResponse(NexusError):
    """A provider or source response failed shape validation."""

    kind = "MalformedResponse"


class QuotaExceeded(NexusError):
    """Persistent store refused a write."""

    kind = "QuotaExceeded"


class ScanIOError(NexusError):
    """A directory could not be read during a local scan."""

    kind = "ScanIOError"


class AnalysisInFlight(NexusError):
    """Another orchestration already holds this repository id."""

    kind = "InFlight"


@dataclass(frozen=True)
class AnalysisError:
    """What an error outcome exposes to a notification surface."""

    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: Exception) -> "AnalysisError":
        if isinstance(exc, NexusError):
            return cls(kind=exc.kind, message=exc.message)
        return cls(kind=NexusError.kind, message=str(exc) or type(exc).__name__)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}
