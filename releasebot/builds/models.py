"""Build job and run result models.

A BuildJob tracks one platform's build through pending -> running ->
succeeded/failed. Exactly one terminal status is reached and it is never
left. A RunResult aggregates the jobs of one matrix run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from releasebot.types import BuildStatus, RunStatus

if TYPE_CHECKING:
    from releasebot.matrix.registry import PlatformDescriptor


class InvalidTransitionError(Exception):
    """Raised when a job is moved out of a terminal status."""

    def __init__(self, job_id: str, current: BuildStatus, wanted: BuildStatus) -> None:
        super().__init__(
            f"Job {job_id}: cannot move from {current.value} to {wanted.value}"
        )
        self.code = "invalid_transition"


@dataclass
class BuildJob:
    """State of one platform build.

    Attributes:
        descriptor: Platform being built.
        status: Current status.
        cache_key: Resolved cache key (once resolved).
        cache_hit: Whether the build was seeded from the layer cache.
        artifact_path: Located binary, set only when succeeded.
        diagnostic: Log tail or error text, set only when failed.
        error_type: Stable error code, set only when failed.
        log_path: Build log file.
        started_at: When the job started running.
        finished_at: When the job reached a terminal status.
        artifact_name: External artifact name, once published.
        artifact_sha256: Artifact digest, once published.
        published_location: Where the sink put the artifact.
        publish_error: Publishing failure message, if any.
    """

    descriptor: PlatformDescriptor
    status: BuildStatus = BuildStatus.PENDING
    cache_key: str | None = None
    cache_hit: bool = False
    artifact_path: Path | None = None
    diagnostic: str | None = None
    error_type: str | None = None
    log_path: Path | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    artifact_name: str | None = None
    artifact_sha256: str | None = None
    published_location: str | None = None
    publish_error: str | None = None

    @property
    def id(self) -> str:
        return self.descriptor.id

    def _transition(self, wanted: BuildStatus) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(self.id, self.status, wanted)
        self.status = wanted

    def mark_running(self) -> None:
        """Mark this job as running."""
        if self.status is not BuildStatus.PENDING:
            raise InvalidTransitionError(self.id, self.status, BuildStatus.RUNNING)
        self._transition(BuildStatus.RUNNING)
        self.started_at = datetime.now(timezone.utc)

    def mark_succeeded(self, artifact_path: Path) -> None:
        """Mark this job as succeeded with its located artifact."""
        self._transition(BuildStatus.SUCCEEDED)
        self.artifact_path = artifact_path
        self.finished_at = datetime.now(timezone.utc)

    def mark_failed(self, error_type: str, diagnostic: str) -> None:
        """Mark this job as failed.

        Args:
            error_type: Stable error code.
            diagnostic: Captured log tail or error text; never empty.
        """
        self._transition(BuildStatus.FAILED)
        self.error_type = error_type
        self.diagnostic = diagnostic or error_type
        self.finished_at = datetime.now(timezone.utc)

    @property
    def published(self) -> bool:
        return self.published_location is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON reports."""
        return {
            "id": self.id,
            "os_flavor": self.descriptor.os_flavor,
            "architecture": self.descriptor.architecture,
            "status": self.status.value,
            "cache_key": self.cache_key,
            "cache_hit": self.cache_hit,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "artifact_name": self.artifact_name,
            "artifact_sha256": self.artifact_sha256,
            "published_location": self.published_location,
            "publish_error": self.publish_error,
            "error_type": self.error_type,
            "diagnostic": self.diagnostic,
            "log_path": str(self.log_path) if self.log_path else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RunResult:
    """Aggregate outcome of one matrix run."""

    run_id: str
    product: str
    revision: str
    jobs: list[BuildJob] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    report_path: Path | None = None

    @property
    def status(self) -> RunStatus:
        """Failed if any job failed, succeeded only if all jobs succeeded."""
        if self.jobs and all(j.status is BuildStatus.SUCCEEDED for j in self.jobs):
            return RunStatus.SUCCEEDED
        return RunStatus.FAILED

    @property
    def succeeded(self) -> list[BuildJob]:
        return [j for j in self.jobs if j.status is BuildStatus.SUCCEEDED]

    @property
    def failed(self) -> list[BuildJob]:
        return [j for j in self.jobs if j.status is BuildStatus.FAILED]

    @property
    def publish_failures(self) -> list[BuildJob]:
        return [j for j in self.succeeded if j.publish_error is not None]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON reports."""
        return {
            "run_id": self.run_id,
            "product": self.product,
            "revision": self.revision,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": {
                "total": len(self.jobs),
                "succeeded": len(self.succeeded),
                "failed": len(self.failed),
                "cache_hits": sum(1 for j in self.jobs if j.cache_hit),
                "publish_failures": len(self.publish_failures),
            },
            "jobs": [j.to_dict() for j in self.jobs],
        }


__all__ = ["BuildJob", "InvalidTransitionError", "RunResult"]
