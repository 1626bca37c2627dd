"""Recency cache: engine primitives and the policy layered on them."""

from pricewatch.cache.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    create_cache_backend,
)
from pricewatch.cache.recency import RecencyCache, decode_member, encode_member

__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "create_cache_backend",
    "RecencyCache",
    "encode_member",
    "decode_member",
]
