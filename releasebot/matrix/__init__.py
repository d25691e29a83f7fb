"""Platform matrix module.

This module handles:
- Matrix file schema and loading
- Validated, immutable platform descriptors for a run
"""

from releasebot.matrix.registry import (
    ConfigurationError,
    PlatformDescriptor,
    PlatformRegistry,
    build_registry,
    load_registry,
)

__all__ = [
    "ConfigurationError",
    "PlatformDescriptor",
    "PlatformRegistry",
    "build_registry",
    "load_registry",
]
