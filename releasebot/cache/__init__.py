"""Layer cache module.

Cached image layers are scoped per platform id and reused only while
their key matches the freshly resolved one.
"""

from releasebot.cache.models import CacheEntry
from releasebot.cache.store import LayerCacheStore

__all__ = ["CacheEntry", "LayerCacheStore"]
