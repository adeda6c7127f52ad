"""Caches shared across backend services."""

from .entity_cache import CacheBackend, EntityCache, cache_key, collection_key

__all__ = ["CacheBackend", "EntityCache", "cache_key", "collection_key"]
