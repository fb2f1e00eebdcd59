"""
Valkey (Redis-compatible) key-value backend for store state and the outbox.

Thin wrapper around redis-py exposing the same JSON interface as
JsonFileStore, so either can back StatePersistence and SyncQueue.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging
from typing import Any

import redis

logger = logging.getLogger(__name__)


class ValkeyStore:
    """
    JSON document store on Valkey.

    Every key is namespaced so several users' data can share one database.

    Usage:
        store = ValkeyStore("redis://localhost:6379/0", namespace="invoices:u1")
        store.set_json("state", {"current_invoice": None})
        state = store.get_json("state")  # Returns None if missing
    """

    def __init__(self, url: str, namespace: str = "invoices"):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix applied to every key

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._namespace = namespace
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyStore connected (namespace=%s)", namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def set_json(self, key: str, value: Any) -> None:
        """
        Store a JSON-serializable value under key.

        Raises:
            redis.RedisError: On write failure (e.g. out of memory)
        """
        self._client.set(self._key(key), json.dumps(value))

    def get_json(self, key: str) -> Any:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self._client.get(self._key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        return self._client.delete(self._key(key)) > 0

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyStore closed")
