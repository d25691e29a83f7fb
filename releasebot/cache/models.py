"""Cache ORM models.

This module defines the CacheEntry model indexing cached image layer
archives. There is at most one entry per platform id; the archive itself
lives on disk under the cache directory.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from releasebot.db import Base


class CacheEntry(Base):
    """ORM model for a cached build layer.

    Attributes:
        id: Primary key.
        descriptor_id: Platform id owning the entry (unique).
        cache_key: Key the payload was produced under.
        payload_path: Absolute path of the image archive.
        size_bytes: Archive size in bytes.
        created_at: When the entry was last stored.
        last_used_at: When the entry last served a cache hit.
    """

    __tablename__ = "cache_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    descriptor_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    cache_key: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_path: Mapped[str] = mapped_column(String(500), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of CacheEntry."""
        return (
            f"<CacheEntry(descriptor_id='{self.descriptor_id}', "
            f"cache_key='{self.cache_key[:16]}...', size={self.size_bytes})>"
        )

    def matches(self, cache_key: str) -> bool:
        """Check whether the entry is valid for the given key."""
        return self.cache_key == cache_key


__all__ = ["CacheEntry"]
