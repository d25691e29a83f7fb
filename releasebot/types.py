"""Shared type definitions for releasebot.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class BuildStatus(str, Enum):
    """Status of a platform build job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is allowed."""
        return self in (BuildStatus.SUCCEEDED, BuildStatus.FAILED)


class RunStatus(str, Enum):
    """Aggregate status of a matrix run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ArtifactInfo:
    """Information about a located build artifact."""

    filename: str
    path: str
    size_bytes: int
    sha256: str


@dataclass
class PublishResult:
    """Result of handing one artifact to a publishing sink."""

    descriptor_id: str
    artifact_name: str
    success: bool
    location: str | None = None
    sha256: str | None = None
    size_bytes: int | None = None
    error_message: str | None = None


__all__ = [
    "ArtifactInfo",
    "BuildStatus",
    "PublishResult",
    "RunStatus",
]
