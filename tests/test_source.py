"""Tests for source revision lookup."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from releasebot.source import UNKNOWN_REVISION, resolve_revision, short_revision


class TestResolveRevision:
    """Tests for resolve_revision."""

    def test_override_wins(self, tmp_path: Path) -> None:
        """An explicit revision should be used without calling git."""
        with patch("subprocess.run") as mock_run:
            assert resolve_revision(tmp_path, "v1.2.3") == "v1.2.3"
        mock_run.assert_not_called()

    def test_git_head(self, tmp_path: Path) -> None:
        """The HEAD commit should be read with git rev-parse."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(stdout="abc123\n")
            assert resolve_revision(tmp_path) == "abc123"
        assert mock_run.call_args.args[0] == ["git", "rev-parse", "HEAD"]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path

    def test_not_a_checkout(self, tmp_path: Path) -> None:
        """Outside a git checkout the revision is unknown."""
        error = subprocess.CalledProcessError(128, ["git", "rev-parse", "HEAD"])
        with patch("subprocess.run", side_effect=error):
            assert resolve_revision(tmp_path) == UNKNOWN_REVISION

    def test_git_missing(self, tmp_path: Path) -> None:
        """Without git installed the revision is unknown."""
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            assert resolve_revision(tmp_path) == UNKNOWN_REVISION


class TestShortRevision:
    """Tests for short_revision."""

    def test_truncates(self) -> None:
        assert short_revision("0123456789abcdef") == "0123456789ab"

    def test_short_input(self) -> None:
        assert short_revision("unknown") == "unknown"
