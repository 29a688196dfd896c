"""
Cache key generation utilities.

Derives deterministic cache keys from generation requests. Besides the
content hashes, a key carries coarse characteristics (post category,
audience, length bucket) so that near-identical requests can be matched by
similarity.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ai_shield.types import GenerationRequest

KEY_PREFIX = "ai_cache"

DEFAULT_POST_TYPE_MARKERS: dict[str, str] = {
    "astronomical event": "astronomical_announcement",
    "retrospective analysis": "market_retrospective",
    "analytical post": "analytical_post",
}

DEFAULT_AUDIENCE_LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")


@dataclass(frozen=True)
class CacheKey:
    """A cache key with the characteristics it was derived from.

    Attributes:
        post_type: Post category extracted from the system prompt
        audience: Target audience level
        length_bucket: ``short``, ``medium`` or ``long``
        options_hash: Hash of the output-affecting options
        prompt_hash: Hash of the prompt text
    """

    post_type: str
    audience: str
    length_bucket: str
    options_hash: str
    prompt_hash: str

    @property
    def key(self) -> str:
        return "_".join(
            [
                KEY_PREFIX,
                self.post_type,
                self.audience,
                self.length_bucket,
                self.options_hash,
                self.prompt_hash,
            ]
        )

    def __str__(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheKey:
        return cls(
            post_type=data["post_type"],
            audience=data["audience"],
            length_bucket=data["length_bucket"],
            options_hash=data["options_hash"],
            prompt_hash=data["prompt_hash"],
        )


class CacheKeyGenerator:
    """Generates deterministic cache keys for requests.

    Example:
        >>> generator = CacheKeyGenerator()
        >>> key = generator.generate(GenerationRequest.of("Eclipse tonight", max_tokens=200))
        >>> key.length_bucket
        'short'
    """

    def __init__(
        self,
        post_type_markers: dict[str, str] | None = None,
        audience_levels: tuple[str, ...] | list[str] | None = None,
        short_max_tokens: int = 300,
        long_min_tokens: int = 1000,
        hash_length: int = 16,
    ) -> None:
        """Initialize key generator.

        Args:
            post_type_markers: System-prompt phrase to category mapping
            audience_levels: Levels recognised after ``Audience:``
            short_max_tokens: ``max_tokens`` at or below this is ``short``
            long_min_tokens: ``max_tokens`` at or above this is ``long``
            hash_length: Hex digits kept from each SHA-256 digest
        """
        self._post_type_markers = {
            marker.lower(): category
            for marker, category in (post_type_markers or DEFAULT_POST_TYPE_MARKERS).items()
        }
        levels = audience_levels or DEFAULT_AUDIENCE_LEVELS
        self._audience_pattern = re.compile(
            r"audience:\s*(" + "|".join(re.escape(level) for level in levels) + r")\b",
            re.IGNORECASE,
        )
        self._short_max_tokens = short_max_tokens
        self._long_min_tokens = long_min_tokens
        self._hash_length = hash_length

    def generate(self, request: GenerationRequest) -> CacheKey:
        options = request.options
        system_prompt = options.system_prompt or ""
        return CacheKey(
            post_type=self._extract_post_type(system_prompt),
            audience=self._extract_audience(system_prompt),
            length_bucket=self._length_bucket(options.max_tokens),
            options_hash=self._hash_params(options.fingerprint_fields()),
            prompt_hash=self._hash_string(request.prompt),
        )

    def _extract_post_type(self, system_prompt: str) -> str:
        lowered = system_prompt.lower()
        for marker, category in self._post_type_markers.items():
            if marker in lowered:
                return category
        return "general"

    def _extract_audience(self, system_prompt: str) -> str:
        match = self._audience_pattern.search(system_prompt)
        return match.group(1).lower() if match else "intermediate"

    def _length_bucket(self, max_tokens: int | None) -> str:
        if max_tokens is None:
            return "medium"
        if max_tokens <= self._short_max_tokens:
            return "short"
        if max_tokens >= self._long_min_tokens:
            return "long"
        return "medium"

    def _hash_params(self, params: dict[str, Any]) -> str:
        content = json.dumps(params, sort_keys=True, ensure_ascii=True)
        return self._hash_string(content)

    def _hash_string(self, content: str) -> str:
        return hashlib.sha256(content.encode()).hexdigest()[: self._hash_length]
