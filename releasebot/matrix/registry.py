"""Platform descriptor registry.

Turns a validated matrix declaration into the immutable set of platform
descriptors for one run. All checks happen here, before any build starts:
duplicate ids and missing recipe or image files abort the run with a
ConfigurationError.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from releasebot.matrix.io import load_matrix
from releasebot.matrix.schema import MatrixSchema

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the platform matrix is invalid."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class PlatformDescriptor:
    """One build target.

    Attributes:
        id: Identifier, unique within a run.
        os_flavor: Base distribution of the build container.
        architecture: CPU architecture.
        build_recipe_path: Absolute path of the recipe executed in the container.
        image_definition_path: Absolute path of the container image definition.
        interpreter: Command the recipe is passed to; None runs it directly.
    """

    id: str
    os_flavor: str
    architecture: str
    build_recipe_path: Path
    image_definition_path: Path
    interpreter: str | None = None


@dataclass(frozen=True)
class PlatformRegistry:
    """Validated descriptors for one run plus the matrix-wide settings."""

    product: str
    os_family: str
    source_root: Path
    output_dir: str
    artifact_path: str
    descriptors: tuple[PlatformDescriptor, ...]

    def __iter__(self) -> Iterator[PlatformDescriptor]:
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    @property
    def ids(self) -> list[str]:
        return [d.id for d in self.descriptors]

    def get(self, descriptor_id: str) -> PlatformDescriptor:
        """Return the descriptor with the given id.

        Raises:
            ConfigurationError: If no descriptor has that id.
        """
        for descriptor in self.descriptors:
            if descriptor.id == descriptor_id:
                return descriptor
        raise ConfigurationError(
            f"Unknown platform '{descriptor_id}'. Known: {', '.join(self.ids)}",
            code="unknown_platform",
        )

    def select(self, descriptor_ids: Iterable[str] | None) -> PlatformRegistry:
        """Return a registry narrowed to the given ids, in matrix order.

        Args:
            descriptor_ids: Ids to keep; None or empty keeps all.

        Raises:
            ConfigurationError: If any id is unknown.
        """
        wanted = list(descriptor_ids or [])
        if not wanted:
            return self
        for descriptor_id in wanted:
            self.get(descriptor_id)
        selected = tuple(d for d in self.descriptors if d.id in wanted)
        return PlatformRegistry(
            product=self.product,
            os_family=self.os_family,
            source_root=self.source_root,
            output_dir=self.output_dir,
            artifact_path=self.artifact_path,
            descriptors=selected,
        )


def _resolve_file(source_root: Path, relative: str, what: str, pid: str) -> Path:
    path = (source_root / relative).resolve()
    if not path.is_file():
        raise ConfigurationError(
            f"Platform '{pid}': {what} not found: {path}",
            code="missing_file",
        )
    return path


def build_registry(matrix: MatrixSchema, source_root: Path) -> PlatformRegistry:
    """Build the descriptor registry from a validated matrix.

    Args:
        matrix: Validated matrix declaration.
        source_root: Root of the checked-out source tree.

    Returns:
        PlatformRegistry with one descriptor per declared platform.

    Raises:
        ConfigurationError: On duplicate ids (compared case-insensitively),
            missing referenced files or a non-executable recipe without an
            interpreter.
    """
    source_root = source_root.resolve()
    if not source_root.is_dir():
        raise ConfigurationError(
            f"Source root is not a directory: {source_root}",
            code="missing_source_root",
        )

    # Keyed by lowercase id: image tags are lowercased
    seen: dict[str, str] = {}
    descriptors: list[PlatformDescriptor] = []
    for platform in matrix.platforms:
        # id is always set once the schema validator has run
        pid = str(platform.id)
        if pid.lower() in seen:
            other = seen[pid.lower()]
            detail = "" if other == pid else f" (collides with '{other}')"
            raise ConfigurationError(
                f"Duplicate platform id: {pid}{detail}",
                code="duplicate_platform",
            )
        seen[pid.lower()] = pid

        recipe = _resolve_file(source_root, platform.build_recipe, "build recipe", pid)
        if platform.interpreter is None and not os.access(recipe, os.X_OK):
            raise ConfigurationError(
                f"Platform '{pid}': build recipe {recipe} is not executable; "
                "mark it executable or set an interpreter",
                code="recipe_not_executable",
            )

        descriptors.append(
            PlatformDescriptor(
                id=pid,
                os_flavor=platform.os_flavor,
                architecture=platform.architecture,
                build_recipe_path=recipe,
                image_definition_path=_resolve_file(
                    source_root, platform.image_definition, "image definition", pid
                ),
                interpreter=platform.interpreter,
            )
        )

    logger.debug(
        "Registered %d platform(s): %s", len(descriptors), sorted(seen.values())
    )
    return PlatformRegistry(
        product=matrix.product,
        os_family=matrix.os_family,
        source_root=source_root,
        output_dir=matrix.output_dir,
        artifact_path=matrix.artifact_path,
        descriptors=tuple(descriptors),
    )


def load_registry(matrix_file: Path, source_root: Path) -> PlatformRegistry:
    """Load a matrix file and build its registry.

    Parse and schema errors are reported as ConfigurationError so the
    caller has a single failure type to handle before fan-out.

    Args:
        matrix_file: Matrix declaration path; relative paths are resolved
            against source_root.
        source_root: Root of the checked-out source tree.

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid.
    """
    if not matrix_file.is_absolute():
        matrix_file = source_root / matrix_file
    try:
        matrix = load_matrix(matrix_file)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Matrix file not found: {matrix_file}", code="missing_file"
        ) from e
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid matrix file {matrix_file}: {e}", code="validation"
        ) from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot parse matrix file {matrix_file}: {e}", code="parse_error"
        ) from e
    except (ValueError, OSError) as e:
        raise ConfigurationError(str(e)) from e
    return build_registry(matrix, source_root)


__all__ = [
    "ConfigurationError",
    "PlatformDescriptor",
    "PlatformRegistry",
    "build_registry",
    "load_registry",
]
