"""Cache Module - Caching infrastructure for rootfsprep.

Philosophy:
- In-memory mirrors of store-owned collections
- Full replacement on every push
- Thread-safe operations

Public API (the "studs"):
    From collection_cache:
        CollectionCache: Read-through cache of the latest pushed collection
"""

from rootfsprep.cache.collection_cache import CollectionCache

__all__ = ["CollectionCache"]
