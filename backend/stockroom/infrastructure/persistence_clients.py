from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stockroom.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _is_local(target: str) -> bool:
    return "localhost" in target or "127.0.0.1" in target


@dataclass
class MongoClientManager:
    uri: str
    enabled: bool
    database_name: str = "commerce"
    _client: Any = None
    _last_error: str | None = None

    async def connect(self) -> None:
        if not self.enabled:
            return

        if _is_local(self.uri):
            logger.warning("persistence.mongo.localhost_uri", uri=self.uri)

        try:
            from pymongo import AsyncMongoClient

            client = AsyncMongoClient(self.uri, tz_aware=True, serverSelectionTimeoutMS=2000)
            await client.admin.command("ping")
            self._client = client
            self._last_error = None
        except Exception as exc:
            self._client = None
            self._last_error = str(exc)
            logger.warning("persistence.mongo.connect_failed", uri=self.uri, error=str(exc))

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def database(self) -> Any | None:
        if self._client is None:
            return None
        return self._client.get_default_database(default=self.database_name)

    @property
    def status(self) -> str:
        if not self.enabled:
            return "disabled"
        if self._client is None:
            return "unavailable"
        return "connected"

    @property
    def error(self) -> str | None:
        return self._last_error

    @property
    def client(self) -> Any:
        return self._client


@dataclass
class RedisClientManager:
    url: str
    enabled: bool
    _client: Any = None
    _last_error: str | None = None

    async def connect(self) -> None:
        if not self.enabled:
            return

        if _is_local(self.url):
            logger.warning("persistence.redis.localhost_url", url=self.url)

        try:
            import redis.asyncio as redis

            client = redis.from_url(self.url, socket_timeout=2)
            await client.ping()
            self._client = client
            self._last_error = None
        except Exception as exc:
            self._client = None
            self._last_error = str(exc)
            logger.warning("persistence.redis.connect_failed", url=self.url, error=str(exc))

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    @property
    def status(self) -> str:
        if not self.enabled:
            return "disabled"
        if self._client is None:
            return "unavailable"
        return "connected"

    @property
    def error(self) -> str | None:
        return self._last_error

    @property
    def client(self) -> Any:
        return self._client
