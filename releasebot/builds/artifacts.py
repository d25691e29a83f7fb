"""Artifact location, naming and publishing.

This module handles:
- Locating the binary a build recipe left at the conventional output path
- Composing the deterministic, platform-qualified external name
- Computing checksums
- Handing artifacts to a publishing sink
- Generating run manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from releasebot.publish.sinks import PublishError
from releasebot.types import ArtifactInfo, BuildStatus, PublishResult

if TYPE_CHECKING:
    from releasebot.builds.models import BuildJob, RunResult
    from releasebot.publish.sinks import PublishSink

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


class ArtifactMissingError(Exception):
    """Raised when a build reported success but left no artifact."""

    def __init__(self, path: Path, code: str = "artifact_missing") -> None:
        super().__init__(f"Build exited 0 but produced no artifact at {path}")
        self.path = path
        self.code = code


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def locate_artifact(output_root: Path, artifact_path: str) -> Path:
    """Locate the produced binary under a build's output directory.

    Args:
        output_root: Host directory mounted as the build's output directory.
        artifact_path: Conventional binary path relative to output_root.

    Returns:
        Path to the artifact.

    Raises:
        ArtifactMissingError: If nothing (or not a regular file) is there.
    """
    path = output_root / artifact_path
    if not path.is_file():
        raise ArtifactMissingError(path)
    logger.debug("Located artifact %s (%d bytes)", path, path.stat().st_size)
    return path


def describe_artifact(path: Path) -> ArtifactInfo:
    """Collect size and checksum of a located artifact."""
    return ArtifactInfo(
        filename=path.name,
        path=str(path),
        size_bytes=path.stat().st_size,
        sha256=compute_file_hash(path),
    )


def compose_artifact_name(product: str, os_family: str, descriptor_id: str) -> str:
    """Compose the external artifact name for a platform.

    Platform ids are unique within a run, so names are too.

    Example:
        >>> compose_artifact_name("worker", "linux", "x86_64-distroA")
        'worker-linux-x86_64-distroA'
    """
    return f"{product}-{os_family}-{descriptor_id}"


def locate_and_publish(
    job: BuildJob,
    sink: PublishSink,
    product: str,
    os_family: str,
) -> PublishResult:
    """Publish a succeeded job's artifact under its external name.

    Publishing failures are recorded on the job and in the result; they
    do not change the job's build status.

    Args:
        job: A job in succeeded status.
        sink: Publishing collaborator.
        product: Product name.
        os_family: OS family segment of the name.

    Returns:
        PublishResult describing the outcome.

    Raises:
        ValueError: If the job has not succeeded.
    """
    if job.status is not BuildStatus.SUCCEEDED or job.artifact_path is None:
        raise ValueError(f"Job {job.id} has not succeeded; nothing to publish")

    name = compose_artifact_name(product, os_family, job.id)
    job.artifact_name = name

    try:
        info = describe_artifact(job.artifact_path)
        data = job.artifact_path.read_bytes()
        location = sink.accept(name, data)
    except (PublishError, OSError) as e:
        message = str(e)
        job.publish_error = message
        logger.error("Publishing %s failed: %s", name, message)
        return PublishResult(
            descriptor_id=job.id,
            artifact_name=name,
            success=False,
            error_message=message,
        )

    job.artifact_sha256 = info.sha256
    job.published_location = location
    return PublishResult(
        descriptor_id=job.id,
        artifact_name=name,
        success=True,
        location=location,
        sha256=info.sha256,
        size_bytes=info.size_bytes,
    )


def generate_manifest(
    run: RunResult,
    results: list[PublishResult],
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a manifest of a run's published artifacts.

    Args:
        run: Completed run.
        results: Publish results of the run.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    cache_keys = {j.id: j.cache_key for j in run.jobs}
    published = [r for r in results if r.success]

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "run_id": run.run_id,
        "product": run.product,
        "revision": run.revision,
        "artifacts": [
            {**asdict(r), "cache_key": cache_keys.get(r.descriptor_id)}
            for r in sorted(published, key=lambda r: r.artifact_name)
        ],
        "summary": {
            "total_artifacts": len(published),
            "total_size_bytes": sum(r.size_bytes or 0 for r in published),
        },
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "ArtifactMissingError",
    "compose_artifact_name",
    "compute_file_hash",
    "describe_artifact",
    "generate_manifest",
    "locate_and_publish",
    "locate_artifact",
    "write_manifest",
]
