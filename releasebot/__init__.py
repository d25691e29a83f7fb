"""ReleaseBot - containerized release builds for a platform matrix.

This package expands a declared set of target platforms into independent
container builds, reuses cached image layers across runs, and publishes
each built binary under a platform-qualified name.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
