"""
Similarity scoring between cache keys.

Approximate hits reuse a cached result whose request had the same coarse
characteristics (category, audience, length bucket, options) even when the
prompt text differs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ai_shield.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ai_shield.cache.entry import CacheEntry
    from ai_shield.cache.key import CacheKey


@dataclass(frozen=True)
class SimilarityWeights:
    """Weight of each matching characteristic."""

    category: float = 0.4
    audience: float = 0.2
    length: float = 0.1
    options: float = 0.3

    def __post_init__(self) -> None:
        if min(self.category, self.audience, self.length, self.options) < 0:
            raise ConfigurationError("Similarity weights must not be negative")
        if self.total <= 0:
            raise ConfigurationError("At least one similarity weight must be positive")

    @property
    def total(self) -> float:
        return self.category + self.audience + self.length + self.options


class SimilarityScorer:
    """Weighted similarity between two cache keys, in [0, 1].

    Example:
        >>> scorer = SimilarityScorer()
        >>> scorer.score(key, key)
        1.0
    """

    def __init__(self, weights: SimilarityWeights | None = None) -> None:
        self._weights = weights or SimilarityWeights()

    @property
    def weights(self) -> SimilarityWeights:
        return self._weights

    def score(self, target: CacheKey, candidate: CacheKey) -> float:
        w = self._weights
        score = 0.0
        if target.post_type == candidate.post_type:
            score += w.category
        if target.audience == candidate.audience:
            score += w.audience
        if target.length_bucket == candidate.length_bucket:
            score += w.length
        if target.options_hash == candidate.options_hash:
            score += w.options
        return score / w.total

    def best_match(
        self,
        target: CacheKey,
        candidates: Iterable[CacheEntry],
        threshold: float,
    ) -> tuple[CacheEntry, float] | None:
        """Best-scoring candidate strictly above ``threshold``.

        Ties keep the first candidate seen.
        """
        best: CacheEntry | None = None
        best_score = threshold
        for entry in candidates:
            score = self.score(target, entry.fingerprint)
            if score > best_score:
                best = entry
                best_score = score
        if best is None:
            return None
        return best, best_score
