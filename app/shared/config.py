"""
Centralized environment configuration.

Values are layered, later sources overriding earlier ones:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, developer-local, never committed)
3) System environment variables
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger


class EnvironConfig:
    """
    Singleton holding the merged environment, with dict-like access and
    label-based lookups for MongoDB and Redis connection strings.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(EnvironConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config: dict[str, str | None] = {}
            self._load_config()
            EnvironConfig._initialized = True

    def _load_config(self):
        root = Path(__file__).parent.parent.parent

        for name in ("env.example", "env.local"):
            path = root / name
            if path.exists():
                self._config.update(dotenv_values(path))
                logger.info("Loaded environment variables from {}", path)

        self._config.update(os.environ)

    def __getitem__(self, key):
        if key not in self._config:
            raise KeyError(f"Configuration key '{key}' not found")
        return self._config[key]

    def get(self, key, default=None):
        return self._config.get(key, default)

    def reload(self):
        """Re-read env files and the process environment (used by tests)."""
        self._config.clear()
        self._load_config()
        logger.info("Configuration reloaded")

    def __contains__(self, key):
        return key in self._config

    def __iter__(self):
        return iter(self._config)

    def keys(self):
        return self._config.keys()

    def items(self):
        return self._config.items()

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None or not str(value).strip():
            return default
        return str(value).strip().lower() in {"true", "1", "yes", "on"}

    def get_redis_url(self, label: str = "default") -> str:
        """
        Redis URL for a label: REDIS_URL_<LABEL>, falling back to REDIS_URL for
        the default label.
        """
        url = self.get(f"REDIS_URL_{label.upper()}")
        if url:
            return url
        if label == "default":
            return self.get("REDIS_URL") or "redis://localhost:6379"
        return ""

    def get_mongo_url(self, label: str = "default") -> str:
        """
        MongoDB URL for a label: MONGO_URL_<LABEL>, falling back to MONGO_URL for
        the default label.
        """
        url = self.get(f"MONGO_URL_{label.upper()}")
        if url:
            return url
        if label == "default":
            return self.get("MONGO_URL") or "mongodb://localhost:27017"
        return ""

    def _get_positive_int(self, key: str, default: int, upper: int | None = None) -> int:
        raw = self.get(key)
        try:
            value = int(raw) if raw not in (None, "") else default
        except (ValueError, TypeError):
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default
        if value <= 0 or (upper is not None and value > upper):
            logger.warning("{} value {} is out of range, defaulting to {}", key, value, default)
            return default
        return value

    def get_mongo_max_pool_size(self) -> int:
        return self._get_positive_int("MONGO_MAX_POOL_SIZE", 5, upper=100)

    def get_mongo_server_selection_timeout(self) -> int:
        return self._get_positive_int("MONGO_SERVER_SELECTION_TIMEOUT", 30000)

    def get_mongo_connect_timeout(self) -> int:
        return self._get_positive_int("MONGO_CONNECT_TIMEOUT", 30000)

    def get_mongo_socket_timeout(self) -> int:
        return self._get_positive_int("MONGO_SOCKET_TIMEOUT", 300000)


config = EnvironConfig()
