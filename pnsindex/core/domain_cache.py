"""
Invalidation of cached domain lookups held by the query API.
Cache entries are ephemeral: mutating events invalidate them and the
query layer repopulates them on demand.
"""

import logging
from abc import ABC, abstractmethod

import redis

from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


_KEY_PREFIX = "domain:"


def domain_cache_key(name_hash: str) -> str:
    """
    Cache key of a domain entry.
    """
    return f"{_KEY_PREFIX}{name_hash}"


class DomainCache(ABC):
    """
    Interface for the domain cache as seen by the indexer.
    """

    @abstractmethod
    def invalidate(self, name_hash: str):
        """
        Drop the cached entry of a domain.
        Never repopulates it.
        """


class LocalDomainCache(DomainCache):
    """
    In-process domain cache.
    Entries are written by the embedding process.
    """

    def __init__(self):
        self.entries = {}

    def invalidate(self, name_hash: str):
        self.entries.pop(name_hash, None)


class RedisDomainCache(DomainCache):
    """
    Domain cache shared with the query API through Redis.
    Redis errors are logged and do not fail indexing,
    since the query API sets entries with a TTL.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    @staticmethod
    def create_instance_from_url(redis_url: str) -> "RedisDomainCache":
        """
        Create a cache connected to a Redis URL.

        :param redis_url: The Redis URL, such as redis://localhost:6379/0.
        :return: The cache object.
        """
        # Short timeouts to avoid stalling a tick on an unavailable cache.
        return RedisDomainCache(
            redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=5,
            )
        )

    def invalidate(self, name_hash: str):
        try:
            self.redis_client.delete(domain_cache_key(name_hash))
        except redis.RedisError as e:
            _LOG.error("Error invalidating cached domain %s: %s", name_hash, e)
