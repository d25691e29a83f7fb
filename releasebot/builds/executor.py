"""Build executor for a single platform.

Runs one platform's containerized build to a terminal status:
1. Resolve the cache key from the recipe and image definition content
2. Load the cached image on a hit, otherwise build it
3. Run the recipe with the source tree mounted
4. Locate the artifact, then store the fresh layer (best effort)

Every failure is captured on the returned job; nothing is retried.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING

from releasebot.builds.artifacts import ArtifactMissingError, locate_artifact
from releasebot.builds.cache_key import ResolutionError, resolve
from releasebot.builds.models import BuildJob
from releasebot.builds.runner import (
    CONTAINER_WORKSPACE,
    BuildExecutionError,
    BuildTimeoutError,
    ContainerRuntime,
    Deadline,
    Mount,
    read_log_tail,
)

if TYPE_CHECKING:
    from releasebot.cache.store import CacheLookup, CacheStoreFn
    from releasebot.matrix.registry import PlatformDescriptor

logger = logging.getLogger(__name__)


class BuildFailure(Exception):
    """Raised when the image build or the recipe exits non-zero."""

    def __init__(
        self, message: str, exit_code: int, code: str = "build_failed"
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass(frozen=True)
class ExecutionContext:
    """Run-wide inputs shared by every platform build.

    Attributes:
        source_root: Checked-out source tree, mounted read/write.
        output_dir: Directory under the source tree the recipe writes to.
        artifact_path: Binary path relative to output_dir.
        work_dir: Run workspace; each job gets its own subdirectory.
        timeout: Wall-clock limit per build in seconds (None = unbounded).
        log_tail_lines: Log lines kept as a failed job's diagnostic.
    """

    source_root: Path
    output_dir: str
    artifact_path: str
    work_dir: Path
    timeout: float | None = None
    log_tail_lines: int = 40


def image_tag(descriptor: PlatformDescriptor, cache_key: str) -> str:
    """Return the local image tag for a platform and key."""
    digest = cache_key.split(":", 1)[-1]
    return f"releasebot/{descriptor.id.lower()}:{digest[:12]}"


def container_recipe_path(descriptor: PlatformDescriptor, source_root: Path) -> str:
    """Return the recipe path as seen inside the container.

    Raises:
        BuildExecutionError: If the recipe is outside the source tree.
    """
    try:
        relative = descriptor.build_recipe_path.relative_to(source_root)
    except ValueError as e:
        raise BuildExecutionError(
            f"Build recipe {descriptor.build_recipe_path} is outside {source_root}",
            code="recipe_outside_source",
        ) from e
    return f"{CONTAINER_WORKSPACE}/{relative.as_posix()}"


def recipe_command(descriptor: PlatformDescriptor, source_root: Path) -> list[str]:
    """Return the container command that runs the build recipe.

    The recipe is executed directly so its shebang picks the interpreter,
    unless the platform names one explicitly.
    """
    path = container_recipe_path(descriptor, source_root)
    if descriptor.interpreter:
        return [*shlex.split(descriptor.interpreter), path]
    return [path]


def _seed_from_cache(
    job: BuildJob,
    archive: Path,
    runtime: ContainerRuntime,
    log_file: IO[str],
    deadline: Deadline,
) -> None:
    try:
        runtime.load_image(archive, log_file, deadline.remaining())
    except BuildExecutionError as e:
        logger.warning(
            "[%s] Could not load cached layer, building uncached: %s", job.id, e
        )
        return
    job.cache_hit = True
    logger.info("[%s] Seeded build from cached layer %s", job.id, archive.name)


def _store_layer(
    job: BuildJob,
    tag: str,
    cache_key: str,
    cache_store: CacheStoreFn,
    runtime: ContainerRuntime,
    job_dir: Path,
    log_file: IO[str],
    deadline: Deadline,
) -> None:
    try:
        archive = runtime.save_image(
            tag, job_dir / "layer.tar", log_file, deadline.remaining()
        )
        cache_store(cache_key, archive)
    except Exception as e:
        # Cache writes never fail a build
        logger.warning("[%s] Could not store layer cache: %s", job.id, e)


def execute(
    descriptor: PlatformDescriptor,
    cache_lookup: CacheLookup,
    cache_store: CacheStoreFn,
    *,
    runtime: ContainerRuntime,
    context: ExecutionContext,
    job: BuildJob | None = None,
) -> BuildJob:
    """Build one platform and return its job in a terminal status.

    Args:
        descriptor: Platform to build.
        cache_lookup: key -> cached archive or None, scoped to this platform.
        cache_store: (key, archive) -> None, scoped to this platform.
        runtime: Container runtime.
        context: Run-wide build inputs.
        job: Pending job to drive; created if not given.

    Returns:
        The job, succeeded or failed.
    """
    if job is None:
        job = BuildJob(descriptor=descriptor)

    job_dir = context.work_dir / descriptor.id
    output_root = job_dir / "output"
    # A stale artifact from an earlier run must not mask a recipe that wrote nothing
    shutil.rmtree(output_root, ignore_errors=True)
    output_root.mkdir(parents=True)

    job.mark_running()
    deadline = Deadline(context.timeout)
    logger.info("[%s] Build started", job.id)

    try:
        cache_key = resolve(descriptor)
    except ResolutionError as e:
        job.mark_failed(e.code, str(e))
        logger.error("[%s] %s", job.id, e)
        return job
    job.cache_key = cache_key
    tag = image_tag(descriptor, cache_key)
    logger.info("[%s] Cache key %s", job.id, cache_key[:23])

    job.log_path = job_dir / "build.log"
    with job.log_path.open("w", encoding="utf-8") as log_file:
        log_file.write(f"# Platform: {descriptor.id}\n")
        log_file.write(f"# Cache key: {cache_key}\n\n")
        log_file.flush()
        try:
            try:
                archive = cache_lookup(cache_key)
            except Exception as e:
                logger.warning("[%s] Cache lookup failed: %s", job.id, e)
                archive = None
            if archive is not None:
                _seed_from_cache(job, archive, runtime, log_file, deadline)

            # The loaded archive already carries this key's tag
            if not job.cache_hit:
                exit_code = runtime.build_image(
                    descriptor.image_definition_path,
                    tag,
                    log_file,
                    deadline.remaining(),
                )
                if exit_code != 0:
                    raise BuildFailure(
                        f"Image build failed with exit code {exit_code}", exit_code
                    )

            mounts = [
                Mount(context.source_root, CONTAINER_WORKSPACE),
                Mount(output_root, f"{CONTAINER_WORKSPACE}/{context.output_dir}"),
            ]
            command = recipe_command(descriptor, context.source_root)
            exit_code = runtime.run_container(
                tag, command, mounts, log_file, deadline.remaining()
            )
            if exit_code != 0:
                raise BuildFailure(
                    f"Build recipe exited with code {exit_code}", exit_code
                )

            artifact = locate_artifact(output_root, context.artifact_path)
        except (
            BuildFailure,
            BuildExecutionError,
            BuildTimeoutError,
            ArtifactMissingError,
        ) as e:
            log_file.flush()
            tail = read_log_tail(job.log_path, context.log_tail_lines)
            diagnostic = f"{e}\n{tail}" if tail else str(e)
            job.mark_failed(e.code, diagnostic)
            logger.error("[%s] Build failed (%s): %s", job.id, e.code, e)
            return job

        job.mark_succeeded(artifact)
        logger.info("[%s] Build succeeded: %s", job.id, artifact)

        if not job.cache_hit:
            _store_layer(
                job, tag, cache_key, cache_store, runtime, job_dir, log_file, deadline
            )

    return job


__all__ = [
    "BuildFailure",
    "ExecutionContext",
    "container_recipe_path",
    "execute",
    "image_tag",
    "recipe_command",
]
