"""Redis durable medium.

Uses the synchronous redis client, because the medium contract is
synchronous. Suitable when several short-lived processes on one host share
a local Redis as their durable store.
"""

import logging
from typing import Any
from urllib.parse import urlsplit

logger = logging.getLogger("stakesync.backends.redis")


def _sanitize_url(url: str) -> str:
    """Return url with its password masked, or host:port when it has none."""
    try:
        parsed = urlsplit(url)
        host = f"{parsed.hostname}:{parsed.port or 6379}"
        if not parsed.password:
            return host
        user = f"{parsed.username}:" if parsed.username else ":"
        return parsed._replace(netloc=f"{user}****@{host}").geturl()
    except ValueError:
        return "<url>"


class RedisMedium:
    """Durable medium storing each key as a Redis string.

    Args:
        redis_url: Redis connection URL.
        namespace: Prefix prepended to every key (default: stakesync).
        client: Pre-built redis.Redis client; redis_url is ignored when given.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        namespace: str = "stakesync",
        client: Any = None,
    ) -> None:
        self._url = redis_url
        self._url_safe = _sanitize_url(redis_url)
        self.namespace = namespace
        self._client: Any = client

    @property
    def redis_url(self) -> str:
        return self._url

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                import redis
            except ImportError as e:
                raise ImportError("Install redis: pip install stakesync[redis]") from e

            self._client = redis.Redis.from_url(self._url, decode_responses=True)
            logger.info(f"Connected to Redis at {self._url_safe}")
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def get(self, key: str) -> str | None:
        value = self._get_client().get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self._get_client().set(self._key(key), value)

    def remove(self, key: str) -> None:
        self._get_client().delete(self._key(key))

    def ping(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Closed Redis connection")
