"""Build orchestration module.

This module handles:
- Cache key resolution
- Container runtime invocation
- Single-platform build execution
- Artifact location, naming and publishing
- Matrix fan-out and result aggregation
"""

from releasebot.builds.models import BuildJob, RunResult

__all__ = ["BuildJob", "RunResult"]

# Submodules are imported explicitly (releasebot.builds.service, etc.)
