"""Artifact publishing sinks.

A sink accepts an external artifact name plus the binary bytes and makes
the artifact retrievable under that name for the run. Names are unique
within a run, so concurrent accepts never touch the same destination.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_TIMEOUT = 600


class PublishError(Exception):
    """Raised when a built artifact cannot be delivered."""

    def __init__(self, message: str, code: str = "publish_failed") -> None:
        super().__init__(message)
        self.code = code


class PublishSink(Protocol):
    """Destination for finished artifacts."""

    def accept(self, name: str, data: bytes) -> str:
        """Store data under name and return its location."""
        ...


class DirectoryPublisher:
    """Publish artifacts into a local directory, one subdirectory per run.

    Files are written to a temporary name and renamed into place so a
    reader never sees a partial artifact.
    """

    def __init__(self, root: Path, run_id: str) -> None:
        self.root = root
        self.run_id = run_id

    @property
    def run_dir(self) -> Path:
        return self.root / self.run_id

    def accept(self, name: str, data: bytes) -> str:
        dest = self.run_dir / name
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{name}.")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.chmod(tmp_name, 0o755)
                os.replace(tmp_name, dest)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PublishError(f"Cannot write {dest}: {e}") from e
        logger.info("Published %s to %s", name, dest)
        return str(dest)


class HttpPublisher:
    """Publish artifacts with HTTP PUT to <base_url>/<run_id>/<name>.

    Args:
        base_url: Upload endpoint base.
        run_id: Run identifier, used as the path prefix.
        token: Optional bearer token.
        timeout: Upload timeout in seconds.
        client: Optional preconfigured httpx client.
    """

    def __init__(
        self,
        base_url: str,
        run_id: str,
        token: str | None = None,
        timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.run_id = run_id
        self.token = token
        self.timeout = timeout
        self.client = client

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{self.run_id}/{name}"

    def accept(self, name: str, data: bytes) -> str:
        url = self.url_for(name)
        headers = {"Content-Type": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            if self.client is not None:
                response = self.client.put(
                    url, content=data, headers=headers, timeout=self.timeout
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.put(url, content=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PublishError(
                f"Upload of {name} rejected: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise PublishError(f"Upload of {name} failed: {e}") from e

        logger.info("Published %s to %s (%d bytes)", name, url, len(data))
        return url


__all__ = [
    "DirectoryPublisher",
    "HttpPublisher",
    "PublishError",
    "PublishSink",
]
