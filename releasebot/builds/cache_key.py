"""Cache key computation for platform builds.

This module handles:
- Digesting the image definition and build recipe content
- Canonical input snapshot creation for one platform
- Deterministic hash computation over the snapshot

The key depends only on file content, never on paths or timestamps, so
byte-identical inputs give the same key across runs and machines, and any
edit to either file gives a new one.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from releasebot.matrix.registry import PlatformDescriptor

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

HASH_CHUNK_SIZE = 64 * 1024


class ResolutionError(Exception):
    """Raised when a cache key cannot be computed for a platform."""

    def __init__(self, message: str, code: str = "resolution_failed") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class BuildInputs:
    """Canonical representation of the inputs that shape a build layer.

    Attributes:
        schema_version: Version of cache key schema.
        image_definition_sha256: Digest of the image definition bytes.
        build_recipe_sha256: Digest of the build recipe bytes (or None).
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    image_definition_sha256: str = ""
    build_recipe_sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def digest_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file's content.

    Raises:
        ResolutionError: If the file cannot be read.
    """
    sha256 = hashlib.sha256()
    try:
        with path.open("rb") as f:
            while chunk := f.read(chunk_size):
                sha256.update(chunk)
    except OSError as e:
        raise ResolutionError(f"Cannot read {path}: {e}") from e
    return sha256.hexdigest()


def create_build_inputs(descriptor: PlatformDescriptor) -> BuildInputs:
    """Create canonical build inputs for a platform.

    The recipe digest is omitted when the descriptor has no recipe file.

    Raises:
        ResolutionError: If referenced content is unreadable.
    """
    recipe = descriptor.build_recipe_path
    return BuildInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        image_definition_sha256=digest_file(descriptor.image_definition_path),
        build_recipe_sha256=digest_file(recipe) if recipe else None,
    )


def compute_cache_key(inputs: BuildInputs) -> str:
    """Compute a cache key hash from build inputs.

    The cache key is a SHA-256 hash of the canonical JSON representation
    of the build inputs.

    Args:
        inputs: BuildInputs instance.

    Returns:
        Cache key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    hash_bytes = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{hash_bytes}"


def resolve(descriptor: PlatformDescriptor) -> str:
    """Resolve the cache key for a platform's build layer.

    Args:
        descriptor: Platform to resolve.

    Returns:
        Cache key (sha256:...).

    Raises:
        ResolutionError: If the image definition or recipe is unreadable.
    """
    return compute_cache_key(create_build_inputs(descriptor))


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "BuildInputs",
    "ResolutionError",
    "compute_cache_key",
    "create_build_inputs",
    "digest_file",
    "resolve",
]
