"""Thin CLI wrapper for releasebot.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape

from releasebot import __version__
from releasebot.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="releasebot",
    help="ReleaseBot - build and publish release binaries for a platform matrix",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "running": "blue",
    "pending": "yellow",
}

# Exit code when every build succeeded but an upload did not
EXIT_PUBLISH_FAILED = 2


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"releasebot version {__version__}")
        raise typer.Exit()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


def _settings_with_overrides(
    matrix: Path | None = None,
    source: Path | None = None,
    revision: str | None = None,
) -> Settings:
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if matrix is not None:
        overrides["matrix_file"] = matrix
    if source is not None:
        overrides["source_root"] = source
    if revision is not None:
        overrides["revision"] = revision
    return settings.model_copy(update=overrides) if overrides else settings


def _load_registry_or_exit(settings: Settings) -> Any:
    from releasebot.matrix.registry import ConfigurationError, load_registry

    try:
        return load_registry(settings.matrix_file, settings.source_root)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


def _open_cache_store(settings: Settings) -> Any:
    from releasebot.cache.store import LayerCacheStore
    from releasebot.db import open_cache_index

    return LayerCacheStore(open_cache_index(settings.db_url), settings.cache_dir)


MatrixOption = Annotated[
    Path | None,
    typer.Option("--matrix", "-m", help="Matrix file (default: releasebot.yaml)"),
]
SourceOption = Annotated[
    Path | None,
    typer.Option("--source", "-s", help="Source tree root (default: .)"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """ReleaseBot - build and publish release binaries for a platform matrix."""
    _configure_logging(get_settings().log_level)


@app.command()
def config(json_output: JsonOption = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(
            print_settings_json(settings),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Inputs:[/bold]")
    console.print(f"  Matrix file:         {settings.matrix_file}")
    console.print(f"  Source root:         {settings.source_root}")
    console.print(f"  Revision override:   {settings.revision or '(git HEAD)'}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Builds:[/bold]")
    console.print(f"  Container runtime:   {settings.container_binary}")
    console.print(f"  Max builds:          {settings.max_concurrent_builds}")
    console.print(f"  Build timeout:       {settings.build_timeout}s")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Publishing:[/bold]")
    upload_display = settings.publish_url or "(local directory)"
    console.print(f"  Upload URL:          {upload_display}")
    console.print(f"  Upload timeout:      {settings.publish_timeout}s")


@app.command("run")
def run_cmd(
    matrix: MatrixOption = None,
    source: SourceOption = None,
    platforms: Annotated[
        list[str] | None,
        typer.Option("--platform", "-p", help="Build only these platform ids"),
    ] = None,
    revision: Annotated[
        str | None,
        typer.Option("--revision", "-r", help="Source revision to record"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Build every platform of the matrix and publish the binaries.

    Exits 1 if any platform failed to build, 2 if all builds succeeded
    but an artifact could not be published.
    """
    from releasebot.builds.runner import DockerRuntime
    from releasebot.builds.service import run_matrix
    from releasebot.matrix.registry import ConfigurationError
    from releasebot.source import resolve_revision

    settings = _settings_with_overrides(matrix, source, revision)
    registry = _load_registry_or_exit(settings)
    try:
        registry = registry.select(platforms)
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    rev = resolve_revision(registry.source_root, settings.revision)
    if not json_output:
        console.print(
            f"[blue]Building {registry.product} @ {rev[:12]} "
            f"for {len(registry)} platform(s)...[/blue]"
        )

    result = run_matrix(
        registry,
        runtime=DockerRuntime(settings.container_binary),
        cache_store=_open_cache_store(settings),
        revision=rev,
        settings=settings,
    )

    if json_output:
        _print_json(result.to_dict())
    else:
        console.print()
        console.print(f"[bold]Run {result.run_id}:[/bold]")
        for job in result.jobs:
            color = STATUS_COLORS.get(job.status.value, "white")
            hit_marker = " (cache hit)" if job.cache_hit else ""
            console.print(
                f"  [{color}]{job.id}: {job.status.value}{hit_marker}[/{color}]"
            )
            if job.published_location:
                console.print(f"      {job.artifact_name} -> {job.published_location}")
            if job.publish_error:
                message = escape(job.publish_error)
                console.print(f"      [yellow]Publish failed: {message}[/yellow]")
            if job.diagnostic:
                console.print(f"      Error ({job.error_type}):")
                for line in job.diagnostic.splitlines():
                    console.print(f"        {escape(line)}")
            if job.log_path:
                console.print(f"      Log: {job.log_path}")
        console.print()
        status_color = STATUS_COLORS[result.status.value]
        console.print(
            f"[bold {status_color}]Run {result.status.value}[/bold {status_color}]"
            f" ({len(result.succeeded)}/{len(result.jobs)} platforms built)"
        )
        if result.report_path:
            console.print(f"  Report: {result.report_path}")

    if result.failed:
        raise typer.Exit(code=1)
    if result.publish_failures:
        raise typer.Exit(code=EXIT_PUBLISH_FAILED)


matrix_app = typer.Typer(help="Inspect the platform matrix")
app.add_typer(matrix_app, name="matrix")


@matrix_app.command("list")
def matrix_list(
    matrix: MatrixOption = None,
    source: SourceOption = None,
    json_output: JsonOption = False,
) -> None:
    """List the platforms of the matrix with their artifact names."""
    from releasebot.builds.artifacts import compose_artifact_name

    settings = _settings_with_overrides(matrix, source)
    registry = _load_registry_or_exit(settings)

    rows = [
        {
            "id": d.id,
            "os_flavor": d.os_flavor,
            "architecture": d.architecture,
            "build_recipe": str(d.build_recipe_path),
            "image_definition": str(d.image_definition_path),
            "interpreter": d.interpreter,
            "artifact_name": compose_artifact_name(
                registry.product, registry.os_family, d.id
            ),
        }
        for d in registry
    ]
    if json_output:
        _print_json(rows)
        return

    console.print(f"[bold]{registry.product}: {len(rows)} platform(s)[/bold]")
    console.print()
    for row in rows:
        console.print(f"  [green]{row['id']}[/green]")
        console.print(f"    Platform: {row['os_flavor']}/{row['architecture']}")
        console.print(f"    Recipe:   {row['build_recipe']}")
        console.print(f"    Image:    {row['image_definition']}")
        console.print(f"    Artifact: {row['artifact_name']}")
        console.print()


@matrix_app.command("validate")
def matrix_validate(
    matrix: MatrixOption = None,
    source: SourceOption = None,
) -> None:
    """Validate the matrix file and the files it references."""
    settings = _settings_with_overrides(matrix, source)
    registry = _load_registry_or_exit(settings)
    console.print(
        f"[green]✓ Valid matrix: {len(registry)} platform(s) "
        f"({', '.join(registry.ids)})[/green]"
    )


@matrix_app.command("show")
def matrix_show(matrix: MatrixOption = None, source: SourceOption = None) -> None:
    """Print the normalized matrix declaration as YAML."""
    from releasebot.matrix.io import load_matrix, matrix_to_yaml_string

    settings = _settings_with_overrides(matrix, source)
    # Full validation first so a broken matrix is never echoed as valid
    _load_registry_or_exit(settings)
    path = settings.matrix_file
    if not path.is_absolute():
        path = settings.source_root / path
    console.print(
        matrix_to_yaml_string(load_matrix(path)),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


cache_app = typer.Typer(help="Manage the build layer cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("key")
def cache_key_cmd(
    matrix: MatrixOption = None,
    source: SourceOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the cache key of every platform and whether it is cached."""
    from releasebot.builds.cache_key import ResolutionError, resolve

    settings = _settings_with_overrides(matrix, source)
    registry = _load_registry_or_exit(settings)
    store = _open_cache_store(settings)

    rows: list[dict[str, Any]] = []
    for descriptor in registry:
        try:
            key: str | None = resolve(descriptor)
            error = None
        except ResolutionError as e:
            key, error = None, str(e)
        cached = key is not None and store.peek(descriptor.id, key) is not None
        rows.append(
            {"id": descriptor.id, "cache_key": key, "cached": cached, "error": error}
        )

    if json_output:
        _print_json(rows)
        return
    for row in rows:
        if row["error"]:
            console.print(f"  [red]{row['id']}: {escape(row['error'])}[/red]")
            continue
        marker = "[green]cached[/green]" if row["cached"] else "[yellow]miss[/yellow]"
        console.print(f"  {row['id']}: {row['cache_key']} ({marker})")

    if any(row["error"] for row in rows):
        raise typer.Exit(code=1)


@cache_app.command("list")
def cache_list(json_output: JsonOption = False) -> None:
    """List cached layers."""
    store = _open_cache_store(get_settings())
    entries = store.list_entries()

    if json_output:
        _print_json(entries)
        return
    if not entries:
        console.print("[yellow]No cache entries found[/yellow]")
        return

    console.print(f"[bold]Found {len(entries)} cache entries:[/bold]")
    console.print()
    for entry in entries:
        console.print(f"  [green]{entry['descriptor_id']}[/green]")
        console.print(f"    Key:  {entry['cache_key']}")
        console.print(f"    Size: {entry['size_bytes']} bytes")
        console.print(f"    Last used: {entry['last_used_at'] or 'never'}")
        console.print()


@cache_app.command("prune")
def cache_prune(
    matrix: MatrixOption = None,
    source: SourceOption = None,
    unknown: Annotated[
        bool,
        typer.Option(
            "--unknown", help="Remove entries for platforms not in the matrix"
        ),
    ] = False,
    older_than_days: Annotated[
        int | None,
        typer.Option("--older-than-days", help="Remove entries unused for N days"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Remove cached layers."""
    if not unknown and older_than_days is None:
        console.print("[red]Error: specify --unknown and/or --older-than-days[/red]")
        raise typer.Exit(code=1)

    settings = _settings_with_overrides(matrix, source)
    keep_ids = _load_registry_or_exit(settings).ids if unknown else None
    older_than = None
    if older_than_days is not None:
        older_than = timedelta(days=older_than_days)

    store = _open_cache_store(settings)
    removed = store.prune(keep_ids=keep_ids, older_than=older_than)
    if json_output:
        _print_json({"removed": removed})
    elif removed:
        console.print(
            f"[green]Removed {len(removed)} cache entries: {', '.join(removed)}[/green]"
        )
    else:
        console.print("[yellow]Nothing to prune[/yellow]")


if __name__ == "__main__":
    app()
