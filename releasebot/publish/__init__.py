"""Artifact publishing module.

Sinks receive (external name, bytes) pairs for finished builds.
"""

from releasebot.publish.sinks import (
    DirectoryPublisher,
    HttpPublisher,
    PublishError,
    PublishSink,
)

__all__ = ["DirectoryPublisher", "HttpPublisher", "PublishError", "PublishSink"]
