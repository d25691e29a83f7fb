"""Layer cache store.

This module provides the key -> payload store consulted before each
platform build and updated after a successful one:
- Lookup by (platform id, cache key); a stale key is a miss
- Peek, the same check without recording use, for read-only callers
- Store replaces the platform's previous entry and archive
- Listing and pruning for cache management

Payloads are image archives kept under the cache directory, indexed in
the database.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from releasebot.cache.models import CacheEntry
from releasebot.db import get_session

logger = logging.getLogger(__name__)

CacheLookup = Callable[[str], Path | None]
CacheStoreFn = Callable[[str, Path], None]


class LayerCacheStore:
    """Cache of built image layers, scoped per platform id.

    Args:
        session_factory: Session factory for the cache index.
        cache_dir: Directory holding the payload archives.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache_dir: Path,
    ) -> None:
        self.session_factory = session_factory
        self.cache_dir = cache_dir
        # SQLite index writes from worker threads are serialized
        self._lock = threading.Lock()

    def payload_path(self, descriptor_id: str, cache_key: str) -> Path:
        """Return where the archive for a key is kept."""
        digest = cache_key.split(":", 1)[-1]
        return self.cache_dir / descriptor_id / f"{digest[:32]}.tar"

    def lookup(self, descriptor_id: str, cache_key: str) -> Path | None:
        """Return the cached archive if it was stored under cache_key.

        A hit records the entry as used, which keeps it from being pruned
        by age.

        Args:
            descriptor_id: Platform id.
            cache_key: Freshly resolved key.

        Returns:
            Archive path on a hit, None on a miss or stale entry.
        """
        with self._lock, get_session(self.session_factory) as session:
            entry = _usable_entry(session, descriptor_id, cache_key)
            if entry is None:
                return None
            entry.last_used_at = datetime.now()
            logger.info("Cache hit for %s (key=%s)", descriptor_id, cache_key[:23])
            return Path(entry.payload_path)

    def peek(self, descriptor_id: str, cache_key: str) -> Path | None:
        """Like lookup, but leaves the entry's usage time untouched."""
        with self._lock, get_session(self.session_factory) as session:
            entry = _usable_entry(session, descriptor_id, cache_key)
            return Path(entry.payload_path) if entry is not None else None

    def store(self, descriptor_id: str, cache_key: str, payload: Path) -> Path:
        """Store an archive as the platform's current cache entry.

        The archive is moved into the cache directory. Any previous
        archive of the platform is deleted.

        Args:
            descriptor_id: Platform id.
            cache_key: Key the archive was produced under.
            payload: Archive produced by the build.

        Returns:
            Final archive path.
        """
        target = self.payload_path(descriptor_id, cache_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        if payload.resolve() != target.resolve():
            tmp = target.with_suffix(".tar.partial")
            shutil.move(str(payload), tmp)
            os.replace(tmp, target)
        size_bytes = target.stat().st_size

        with self._lock, get_session(self.session_factory) as session:
            entry = _get_entry(session, descriptor_id)
            if entry is None:
                entry = CacheEntry(descriptor_id=descriptor_id)
                session.add(entry)
            elif entry.payload_path != str(target):
                Path(entry.payload_path).unlink(missing_ok=True)
            entry.cache_key = cache_key
            entry.payload_path = str(target)
            entry.size_bytes = size_bytes
            entry.created_at = datetime.now()
            entry.last_used_at = None

        logger.info(
            "Stored cache entry for %s (key=%s, %d bytes)",
            descriptor_id,
            cache_key[:23],
            size_bytes,
        )
        return target

    def bind(self, descriptor_id: str) -> tuple[CacheLookup, CacheStoreFn]:
        """Return (lookup, store) callables scoped to one platform."""

        def lookup(cache_key: str) -> Path | None:
            return self.lookup(descriptor_id, cache_key)

        def store(cache_key: str, payload: Path) -> None:
            self.store(descriptor_id, cache_key, payload)

        return lookup, store

    def list_entries(self) -> list[dict[str, Any]]:
        """List cache entries as plain dictionaries, ordered by platform id."""
        with self._lock, get_session(self.session_factory) as session:
            entries = session.execute(
                select(CacheEntry).order_by(CacheEntry.descriptor_id)
            ).scalars()
            return [_entry_to_dict(e) for e in entries]

    def prune(
        self,
        keep_ids: list[str] | None = None,
        older_than: timedelta | None = None,
    ) -> list[str]:
        """Delete entries and their archives.

        Args:
            keep_ids: If given, entries for other platform ids are removed.
            older_than: If given, entries not used or stored within this
                window are removed.

        Returns:
            Platform ids whose entries were removed.
        """
        cutoff = datetime.now() - older_than if older_than is not None else None
        removed: list[str] = []
        with self._lock, get_session(self.session_factory) as session:
            for entry in session.execute(select(CacheEntry)).scalars().all():
                last_touch = entry.last_used_at or entry.created_at
                unknown = keep_ids is not None and entry.descriptor_id not in keep_ids
                expired = cutoff is not None and last_touch < cutoff
                if not (unknown or expired):
                    continue
                Path(entry.payload_path).unlink(missing_ok=True)
                session.delete(entry)
                removed.append(entry.descriptor_id)
        if removed:
            logger.info("Pruned %d cache entries: %s", len(removed), removed)
        return sorted(removed)


def _get_entry(session: Session, descriptor_id: str) -> CacheEntry | None:
    stmt = select(CacheEntry).where(CacheEntry.descriptor_id == descriptor_id)
    return session.execute(stmt).scalar_one_or_none()


def _usable_entry(
    session: Session, descriptor_id: str, cache_key: str
) -> CacheEntry | None:
    entry = _get_entry(session, descriptor_id)
    if entry is None:
        logger.debug("Cache miss for %s: no entry", descriptor_id)
        return None
    if not entry.matches(cache_key):
        logger.info(
            "Cache entry for %s is stale (stored %s, wanted %s)",
            descriptor_id,
            entry.cache_key[:23],
            cache_key[:23],
        )
        return None
    if not Path(entry.payload_path).is_file():
        logger.warning(
            "Cache entry for %s points at missing archive %s",
            descriptor_id,
            entry.payload_path,
        )
        return None
    return entry


def _entry_to_dict(entry: CacheEntry) -> dict[str, Any]:
    return {
        "descriptor_id": entry.descriptor_id,
        "cache_key": entry.cache_key,
        "payload_path": entry.payload_path,
        "size_bytes": entry.size_bytes,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "last_used_at": entry.last_used_at.isoformat()
        if entry.last_used_at
        else None,
    }


__all__ = [
    "CacheLookup",
    "CacheStoreFn",
    "LayerCacheStore",
]
