"""
Redis client manager that creates and tracks async clients per label.
"""

import threading

from loguru import logger
from redis.asyncio import Redis

from ..config import config
from .mongo import hide_password


class RedisManager:
    """
    Thread-safe singleton tracking one async Redis client per label.

    Connection strings come from REDIS_URL_<LABEL> keys; the `default` label
    falls back to REDIS_URL and then to localhost. A `mode=cluster` query
    parameter selects the cluster client.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return

        self._clients: dict[str, Redis] = {}
        self._connection_strings: dict[str, str] = {}
        self._lock = threading.Lock()

        self._load_connection_strings()
        self._initialized = True

    def _load_connection_strings(self):
        for key, value in config.items():
            if not key.startswith("REDIS_URL_") or not value:
                continue
            label = key[len("REDIS_URL_"):].lower()
            self._connection_strings[label] = value
            logger.info("Loaded Redis connection string for label '{}': {}", label, hide_password(value))

        if "default" not in self._connection_strings:
            self._connection_strings["default"] = config.get_redis_url("default")

    @staticmethod
    def _split_mode(connection_string: str) -> tuple[str, str]:
        """Return (url without the mode parameter, mode)."""
        base, sep, query = connection_string.partition("?")
        if not sep:
            return connection_string, "standalone"
        params = query.split("&")
        mode = "standalone"
        kept = []
        for param in params:
            if param.startswith("mode="):
                mode = param.split("=", 1)[1] or mode
            else:
                kept.append(param)
        return (f"{base}?{'&'.join(kept)}" if kept else base), mode

    def get_cache_client(self, label: str | None = None) -> Redis:
        """
        Get (or lazily open) the client for a label.

        Raises:
            ValueError: If no connection string is configured for the label
        """
        label = label or "default"
        with self._lock:
            if label not in self._clients:
                if label not in self._connection_strings:
                    raise ValueError(f"No Redis connection string found for label '{label}'")
                url, mode = self._split_mode(self._connection_strings[label])
                logger.info("Open Redis client for label '{}' (mode: {})", label, mode)
                if mode == "cluster":
                    from redis.asyncio.cluster import RedisCluster

                    self._clients[label] = RedisCluster.from_url(url)  # type: ignore[assignment]
                else:
                    self._clients[label] = Redis.from_url(url)
            return self._clients[label]

    def get_connection_info(self) -> dict[str, dict[str, str]]:
        return {
            label: {"original_url": url, "safe_url": hide_password(url)}
            for label, url in self._connection_strings.items()
        }

    async def close_all(self):
        with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
        for label, client in clients:
            try:
                await client.aclose()
                logger.info("Closed Redis client for label '{}'", label)
            except Exception as e:
                logger.error("Error closing Redis client for label '{}': {}", label, e)


_redis_manager = None


def get_redis_manager() -> RedisManager:
    """Get the global Redis manager instance."""
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisManager()
    return _redis_manager


def get_redis_client(label: str | None = None) -> Redis:
    """Get Redis client by label."""
    return get_redis_manager().get_cache_client(label)
