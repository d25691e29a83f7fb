"""Matrix orchestration service.

This module provides the high-level run API:
- run_matrix(): fan out one build job per platform, join, aggregate
- Sink selection from settings
- Run report and manifest persistence

Jobs run on a thread pool and are fully independent: a failing platform
never cancels its siblings, and the run completes only when every job has
reached a terminal status.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from releasebot.builds.artifacts import (
    generate_manifest,
    locate_and_publish,
    write_manifest,
)
from releasebot.builds.executor import ExecutionContext, execute
from releasebot.builds.models import BuildJob, RunResult
from releasebot.config import get_settings
from releasebot.publish.sinks import DirectoryPublisher, HttpPublisher
from releasebot.source import short_revision
from releasebot.types import BuildStatus, PublishResult

if TYPE_CHECKING:
    from releasebot.builds.runner import ContainerRuntime
    from releasebot.cache.store import LayerCacheStore
    from releasebot.config import Settings
    from releasebot.matrix.registry import PlatformRegistry
    from releasebot.publish.sinks import PublishSink

logger = logging.getLogger(__name__)


def new_run_id(revision: str, now: datetime | None = None) -> str:
    """Return a run id made of the UTC start time and short revision."""
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime('%Y%m%dT%H%M%SZ')}-{short_revision(revision)}"


def make_sink(settings: Settings, run_id: str) -> PublishSink:
    """Choose the publishing sink: HTTP if publish_url is set, else a directory."""
    if settings.publish_url:
        return HttpPublisher(
            settings.publish_url,
            run_id,
            token=settings.publish_token,
            timeout=settings.publish_timeout,
        )
    return DirectoryPublisher(settings.artifacts_dir, run_id)


def _run_job(
    job: BuildJob,
    registry: PlatformRegistry,
    cache_store: LayerCacheStore,
    runtime: ContainerRuntime,
    context: ExecutionContext,
    sink: PublishSink,
) -> PublishResult | None:
    lookup, store = cache_store.bind(job.id)
    execute(
        job.descriptor,
        lookup,
        store,
        runtime=runtime,
        context=context,
        job=job,
    )
    if job.status is not BuildStatus.SUCCEEDED:
        return None
    return locate_and_publish(job, sink, registry.product, registry.os_family)


def _settle(
    job: BuildJob, future: Future[PublishResult | None]
) -> PublishResult | None:
    """Collect a job's outcome; unexpected errors fail only that job."""
    try:
        return future.result()
    except Exception as e:
        logger.exception("[%s] Unexpected error", job.id)
        if job.status.is_terminal:
            job.publish_error = job.publish_error or f"Unexpected error: {e}"
        else:
            job.mark_failed("internal_error", f"Unexpected error: {e}")
        return None


def write_report(run: RunResult, path: Path) -> Path:
    """Write the run report as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(run.to_dict(), f, indent=2)
    logger.info("Wrote run report to %s", path)
    return path


def run_matrix(
    registry: PlatformRegistry,
    *,
    runtime: ContainerRuntime,
    cache_store: LayerCacheStore,
    revision: str,
    settings: Settings | None = None,
    sink: PublishSink | None = None,
    run_id: str | None = None,
) -> RunResult:
    """Build and publish every platform of a registry.

    This is the main entry point for a release run. It:
    1. Creates one pending job per platform
    2. Runs the jobs concurrently (max_concurrent_builds)
    3. Publishes each successful build as soon as it finishes
    4. Waits for all jobs, then writes the run report and manifest

    Args:
        registry: Validated platforms for this run.
        runtime: Container runtime.
        cache_store: Layer cache.
        revision: Source revision being built.
        settings: Application settings.
        sink: Publishing sink; chosen from settings if not given.
        run_id: Run identifier; derived from time and revision if not given.

    Returns:
        RunResult with one terminal job per platform.
    """
    if settings is None:
        settings = get_settings()
    if run_id is None:
        run_id = new_run_id(revision)
    if sink is None:
        sink = make_sink(settings, run_id)

    run = RunResult(run_id=run_id, product=registry.product, revision=revision)
    run.jobs = [BuildJob(descriptor=d) for d in registry]
    context = ExecutionContext(
        source_root=registry.source_root,
        output_dir=registry.output_dir,
        artifact_path=registry.artifact_path,
        work_dir=settings.work_dir / run_id,
        timeout=settings.build_timeout,
        log_tail_lines=settings.log_tail_lines,
    )

    logger.info(
        "Run %s: building %s for %d platform(s): %s",
        run_id,
        registry.product,
        len(run.jobs),
        ", ".join(registry.ids),
    )

    publish_results: list[PublishResult] = []
    workers = min(settings.max_concurrent_builds, len(run.jobs)) or 1
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build") as pool:
        futures = {
            pool.submit(
                _run_job, job, registry, cache_store, runtime, context, sink
            ): job
            for job in run.jobs
        }
        for future in as_completed(futures):
            job = futures[future]
            result = _settle(job, future)
            if result is not None:
                publish_results.append(result)
            logger.info("[%s] Finished: %s", job.id, job.status.value)

    run.finished_at = datetime.now(timezone.utc)

    run_dir = settings.artifacts_dir / run_id
    run.report_path = write_report(run, run_dir / "report.json")
    write_manifest(generate_manifest(run, publish_results), run_dir / "manifest.json")

    logger.info(
        "Run %s %s: %d succeeded, %d failed, %d publish failure(s)",
        run_id,
        run.status.value,
        len(run.succeeded),
        len(run.failed),
        len(run.publish_failures),
    )
    return run


__all__ = [
    "make_sink",
    "new_run_id",
    "run_matrix",
    "write_report",
]
