"""Source revision lookup.

The revision a run builds is recorded in its report and manifest. An
explicit override wins; otherwise the checkout's HEAD commit is used.
"""

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

UNKNOWN_REVISION = "unknown"
GIT_TIMEOUT = 30


def resolve_revision(source_root: Path, override: str | None = None) -> str:
    """Return the source revision for a run.

    Args:
        source_root: Root of the checked-out source tree.
        override: Explicit revision (from settings or CLI).

    Returns:
        The override, the HEAD commit hash, or 'unknown'.
    """
    if override:
        return override
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=source_root,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not resolve git revision in %s: %s", source_root, e)
        return UNKNOWN_REVISION
    return result.stdout.strip() or UNKNOWN_REVISION


def short_revision(revision: str, length: int = 12) -> str:
    """Abbreviate a commit hash for display and run ids."""
    return revision[:length]


__all__ = ["UNKNOWN_REVISION", "resolve_revision", "short_revision"]
