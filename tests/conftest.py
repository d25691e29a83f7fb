"""Shared fixtures: a sample source tree and a scripted container runtime."""

import threading
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from releasebot.builds.runner import BuildExecutionError, BuildTimeoutError
from releasebot.cache.store import LayerCacheStore
from releasebot.db import Base
from releasebot.matrix.registry import build_registry
from releasebot.matrix.schema import MatrixSchema

ARTIFACT_PATH = "release/worker"


class FakeRuntime:
    """Container runtime double driven by per-platform behavior tables.

    Platforms are recognized from the image tag (releasebot/<id>:<digest>).
    A successful recipe run writes b"worker binary for <id>" to the
    artifact path under the output mount.
    """

    def __init__(
        self,
        artifact_path: str = ARTIFACT_PATH,
        image_exit: dict[str, int] | None = None,
        recipe_exit: dict[str, int] | None = None,
        no_artifact: set[str] | None = None,
        timeout: set[str] | None = None,
        broken_runtime: set[str] | None = None,
        fail_load: bool = False,
        fail_save: bool = False,
    ) -> None:
        self.artifact_path = artifact_path
        self.image_exit = image_exit or {}
        self.recipe_exit = recipe_exit or {}
        self.no_artifact = no_artifact or set()
        self.timeout = timeout or set()
        self.broken_runtime = broken_runtime or set()
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.calls: list[tuple[str, str]] = []
        self.run_commands: list[list[str]] = []
        self._lock = threading.Lock()

    @staticmethod
    def platform_of(tag: str) -> str:
        return tag.split("/", 1)[1].split(":", 1)[0]

    def _record(self, op: str, what: str) -> None:
        with self._lock:
            self.calls.append((op, what))

    def ops_for(self, platform: str) -> list[str]:
        return [op for op, what in self.calls if platform in what]

    def load_image(self, archive, log_file, timeout=None):
        self._record("load", str(archive))
        if self.fail_load:
            raise BuildExecutionError("load failed", code="cache_load_failed")
        log_file.write(f"Loaded image from {archive}\n")

    def build_image(self, image_definition, tag, log_file, timeout=None):
        platform = self.platform_of(tag)
        self._record("build", tag)
        if platform in self.broken_runtime:
            raise BuildExecutionError("docker: command not found")
        exit_code = self.image_exit.get(platform, 0)
        log_file.write(f"Building {tag} from {image_definition}\n")
        if exit_code:
            log_file.write("error: image build step failed\n")
        return exit_code

    def run_container(self, tag, command, mounts, log_file, timeout=None):
        platform = self.platform_of(tag)
        self._record("run", tag)
        with self._lock:
            self.run_commands.append(command)
        if platform in self.timeout:
            raise BuildTimeoutError("Timed out after 1 seconds")
        exit_code = self.recipe_exit.get(platform, 0)
        if exit_code:
            log_file.write(f"cc: fatal error compiling for {platform}\n")
            return exit_code
        if platform not in self.no_artifact:
            output = mounts[1].host_path / self.artifact_path
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(f"worker binary for {platform}".encode())
        log_file.write("build finished\n")
        return 0

    def save_image(self, tag, dest, log_file, timeout=None):
        self._record("save", tag)
        if self.fail_save:
            raise BuildExecutionError("save failed", code="cache_save_failed")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(f"layer {tag}".encode())
        return dest


def write_platform(root: Path, flavor: str, arch: str, recipe: str = "") -> None:
    """Create a recipe and Dockerfile for one platform under root/dev."""
    base = root / "dev" / flavor / arch
    base.mkdir(parents=True, exist_ok=True)
    (base / "Dockerfile").write_text(f"FROM {flavor}:{arch}\nRUN yum install -y gcc\n")
    recipe_file = base / "build.sh"
    recipe_file.write_text(recipe or f"#!/bin/sh\nmake release ARCH={arch}\n")
    recipe_file.chmod(0o755)


def matrix_data(platforms: list[tuple[str, str]]) -> dict:
    return {
        "product": "worker",
        "os_family": "linux",
        "output_dir": "target-docker",
        "artifact_path": ARTIFACT_PATH,
        "platforms": [
            {
                "os_flavor": flavor,
                "architecture": arch,
                "build_recipe": f"dev/{flavor}/{arch}/build.sh",
                "image_definition": f"dev/{flavor}/{arch}/Dockerfile",
            }
            for flavor, arch in platforms
        ],
    }


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Source tree with x86_64 and arm64 distroA platforms."""
    root = tmp_path / "src"
    root.mkdir()
    write_platform(root, "distroA", "x86_64")
    write_platform(root, "distroA", "arm64")
    return root


@pytest.fixture
def registry(source_tree: Path):
    """Registry for the two-platform source tree."""
    matrix = MatrixSchema.model_validate(
        matrix_data([("distroA", "x86_64"), ("distroA", "arm64")])
    )
    return build_registry(matrix, source_tree)


@pytest.fixture
def session_factory():
    """Session factory over an in-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def cache_store(session_factory, tmp_path: Path) -> LayerCacheStore:
    """Layer cache backed by in-memory SQLite and a temp directory."""
    return LayerCacheStore(session_factory, tmp_path / "cache")
