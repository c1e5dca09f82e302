"""Redis tier shared by API instances for raw size index payloads.

Keys are namespaced as ``<namespace>:<dataset key>`` and hold the index JSON
exactly as fetched, so every instance parses and validates it itself.
Callers treat ``redis.RedisError`` from this helper as a cache miss.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import redis

if TYPE_CHECKING:  # pragma: no cover
    from .sizeindex.config import RedisConfig


@dataclass
class RedisCache:
    """Namespaced get/set over a ``redis.Redis`` client built from ``url``."""

    url: str
    default_ttl_seconds: int = 86400
    namespace: str = "sizeindex"
    client: Optional[redis.Redis] = None

    def __post_init__(self) -> None:
        self._client = self.client or redis.from_url(self.url, decode_responses=False)

    @classmethod
    def from_config(cls, config: "RedisConfig") -> "RedisCache":
        return cls(config.url, default_ttl_seconds=config.default_ttl_seconds, namespace=config.namespace)

    def build_key(self, *parts: str) -> str:
        return ":".join([self.namespace, *parts])

    def get(self, *parts: str) -> Optional[bytes]:
        return self._client.get(self.build_key(*parts))

    def set(self, value: bytes, *parts: str, ttl: Optional[int] = None) -> None:
        self._client.set(self.build_key(*parts), value, ex=ttl or self.default_ttl_seconds)

    def delete(self, *parts: str) -> None:
        self._client.delete(self.build_key(*parts))


__all__ = ["RedisCache"]
