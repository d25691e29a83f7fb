"""Container runtime adapter for platform builds.

This module handles:
- Composing container CLI commands (build, run, save, load)
- Executing them with subprocess, output appended to the job's log file
- Enforcing a per-build wall-clock deadline
- Reading the log tail for failure diagnostics

The runtime is a black box that takes an image definition, mounts and a
command and reports an exit status; everything Docker-specific lives here.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Protocol

logger = logging.getLogger(__name__)

# Where the source tree is mounted inside every build container
CONTAINER_WORKSPACE = "/workspace"

# Grace period for removing a container after its client timed out
CLEANUP_TIMEOUT = 60


class BuildExecutionError(Exception):
    """Raised when the container runtime cannot carry out a step."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class BuildTimeoutError(TimeoutError):
    """Raised when a build exceeds its wall-clock deadline."""

    code = "build_timeout"


@dataclass(frozen=True)
class Mount:
    """A host directory bind-mounted into the container."""

    host_path: Path
    container_path: str
    read_only: bool = False

    def to_arg(self) -> str:
        mode = "ro" if self.read_only else "rw"
        return f"{self.host_path}:{self.container_path}:{mode}"


class Deadline:
    """Wall-clock budget shared by every step of one build."""

    def __init__(self, seconds: float | None) -> None:
        self.seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> float | None:
        """Seconds left, or None for no limit.

        Raises:
            BuildTimeoutError: If the budget is exhausted.
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise BuildTimeoutError(f"Build timed out after {self.seconds} seconds")
        return left


class ContainerRuntime(Protocol):
    """Operations the build executor needs from a container runtime."""

    def load_image(
        self, archive: Path, log_file: IO[str], timeout: float | None = None
    ) -> None: ...

    def build_image(
        self,
        image_definition: Path,
        tag: str,
        log_file: IO[str],
        timeout: float | None = None,
    ) -> int: ...

    def run_container(
        self,
        tag: str,
        command: list[str],
        mounts: list[Mount],
        log_file: IO[str],
        timeout: float | None = None,
    ) -> int: ...

    def save_image(
        self, tag: str, dest: Path, log_file: IO[str], timeout: float | None = None
    ) -> Path: ...


class DockerRuntime:
    """Container runtime backed by the docker CLI.

    Args:
        binary: Executable name or path (docker, podman, ...).
    """

    def __init__(self, binary: str = "docker") -> None:
        self.binary = binary

    def compose_build_command(self, image_definition: Path, tag: str) -> list[str]:
        """Compose `build` with the definition's directory as context."""
        return [
            self.binary,
            "build",
            "--file",
            str(image_definition),
            "--tag",
            tag,
            str(image_definition.parent),
        ]

    def compose_run_command(
        self,
        tag: str,
        command: list[str],
        mounts: list[Mount],
        name: str | None = None,
    ) -> list[str]:
        """Compose `run` for a one-shot container."""
        cmd = [self.binary, "run", "--rm"]
        if name:
            cmd.extend(["--name", name])
        for mount in mounts:
            cmd.extend(["--volume", mount.to_arg()])
        cmd.extend(["--workdir", CONTAINER_WORKSPACE, tag])
        cmd.extend(command)
        return cmd

    def load_image(
        self, archive: Path, log_file: IO[str], timeout: float | None = None
    ) -> None:
        """Load a saved image archive into the local image store.

        Raises:
            BuildExecutionError: If the archive cannot be loaded.
        """
        exit_code = _run_logged(
            [self.binary, "load", "--input", str(archive)], log_file, timeout
        )
        if exit_code != 0:
            raise BuildExecutionError(
                f"Loading {archive} failed with exit code {exit_code}",
                exit_code=exit_code,
                code="cache_load_failed",
            )

    def build_image(
        self,
        image_definition: Path,
        tag: str,
        log_file: IO[str],
        timeout: float | None = None,
    ) -> int:
        """Build the image; returns the CLI exit code."""
        return _run_logged(
            self.compose_build_command(image_definition, tag), log_file, timeout
        )

    def run_container(
        self,
        tag: str,
        command: list[str],
        mounts: list[Mount],
        log_file: IO[str],
        timeout: float | None = None,
    ) -> int:
        """Run the command to completion; returns the container exit code.

        On timeout the container is force-removed before the error is raised.
        """
        safe_tag = tag.replace(":", "-").replace("/", "-")
        name = f"{safe_tag}-{uuid.uuid4().hex[:8]}"
        cmd = self.compose_run_command(tag, command, mounts, name=name)
        try:
            return _run_logged(cmd, log_file, timeout)
        except BuildTimeoutError:
            self._force_remove(name)
            raise

    def save_image(
        self, tag: str, dest: Path, log_file: IO[str], timeout: float | None = None
    ) -> Path:
        """Save the image to an archive for the layer cache.

        Raises:
            BuildExecutionError: If the image cannot be saved.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        exit_code = _run_logged(
            [self.binary, "save", "--output", str(dest), tag], log_file, timeout
        )
        if exit_code != 0:
            raise BuildExecutionError(
                f"Saving {tag} failed with exit code {exit_code}",
                exit_code=exit_code,
                code="cache_save_failed",
            )
        return dest

    def _force_remove(self, name: str) -> None:
        try:
            subprocess.run(
                [self.binary, "rm", "--force", name],
                capture_output=True,
                timeout=CLEANUP_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not remove container %s: %s", name, e)


def _run_logged(cmd: list[str], log_file: IO[str], timeout: float | None) -> int:
    """Run a command with stdout/stderr appended to log_file.

    Raises:
        BuildTimeoutError: If the command outlives timeout.
        BuildExecutionError: If the command cannot be started.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s", cmd_str)
    log_file.write(f"# Command: {cmd_str}\n")
    log_file.write(f"# Started: {datetime.now(timezone.utc).isoformat()}\n")
    log_file.flush()

    try:
        result = subprocess.run(
            cmd,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        log_file.write(f"\n# TIMEOUT after {timeout:.0f} seconds\n")
        log_file.flush()
        raise BuildTimeoutError(
            f"Timed out after {timeout:.0f} seconds: {cmd_str}"
        ) from e
    except OSError as e:
        log_file.write(f"\n# Failed to execute: {e}\n")
        log_file.flush()
        raise BuildExecutionError(
            f"Failed to execute {cmd[0]}: {e}",
            code="execution_error",
        ) from e

    log_file.write(f"# Exit code: {result.returncode}\n\n")
    log_file.flush()
    return result.returncode


def read_log_tail(log_path: Path, lines: int = 40) -> str:
    """Return the last lines of a log file (empty if unreadable)."""
    try:
        with log_path.open(encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=lines)).strip()
    except OSError:
        return ""


__all__ = [
    "CONTAINER_WORKSPACE",
    "BuildExecutionError",
    "BuildTimeoutError",
    "ContainerRuntime",
    "Deadline",
    "DockerRuntime",
    "Mount",
    "read_log_tail",
]
