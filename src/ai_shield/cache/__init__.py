"""
Cache layer - two-tier result cache with similarity matching.

- ResultCache: memory LRU tier plus optional durable tier
- DurableStore: key-value contract for the durable tier
- SimilarityScorer: weighted key similarity for approximate hits
"""

from ai_shield.cache.backends import DiskStore, DurableStore, InMemoryStore, NullStore
from ai_shield.cache.entry import CacheEntry
from ai_shield.cache.key import CacheKey, CacheKeyGenerator
from ai_shield.cache.manager import CacheConfig, CacheLookup, CacheStats, HitKind, ResultCache
from ai_shield.cache.similarity import SimilarityScorer, SimilarityWeights

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheKeyGenerator",
    "CacheLookup",
    "CacheStats",
    "DiskStore",
    "DurableStore",
    "HitKind",
    "InMemoryStore",
    "NullStore",
    "ResultCache",
    "SimilarityScorer",
    "SimilarityWeights",
]
