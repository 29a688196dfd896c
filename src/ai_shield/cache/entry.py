"""
Cache entries and their durable-tier encoding.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from ai_shield.cache.key import CacheKey
from ai_shield.types import GenerationResult


@dataclass
class CacheEntry:
    """A cached generation result with access bookkeeping.

    Attributes:
        result: The cached result
        fingerprint: Key the entry was stored under
        created_at: Creation timestamp (cache clock)
        last_accessed: Last read timestamp, drives LRU eviction
        access_count: Number of reads served
    """

    result: GenerationResult
    fingerprint: CacheKey
    created_at: float
    last_accessed: float
    access_count: int = 0

    @classmethod
    def create(cls, result: GenerationResult, fingerprint: CacheKey, now: float) -> CacheEntry:
        return cls(result=result, fingerprint=fingerprint, created_at=now, last_accessed=now)

    def touch(self, now: float) -> None:
        self.last_accessed = now
        self.access_count += 1

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl

    @property
    def tokens(self) -> int:
        return self.result.metadata.tokens

    def to_bytes(self) -> bytes:
        payload = {
            "result": json.loads(self.result.model_dump_json()),
            "fingerprint": self.fingerprint.to_dict(),
            "created_at": self.created_at,
            "last_accessed": self.last_accessed,
            "access_count": self.access_count,
        }
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> CacheEntry:
        """Decode a durable-tier record.

        Raises:
            ValueError: If the record is malformed
        """
        try:
            payload = json.loads(data.decode("utf-8"))
            return cls(
                result=GenerationResult.model_validate(payload["result"]),
                fingerprint=CacheKey.from_dict(payload["fingerprint"]),
                created_at=float(payload["created_at"]),
                last_accessed=float(payload.get("last_accessed", payload["created_at"])),
                access_count=int(payload.get("access_count", 0)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed cache record: {e}") from e
