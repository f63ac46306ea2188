from __future__ import annotations

import json
import time
from collections import OrderedDict
from typing import Any, Callable
from urllib.parse import quote

from stockroom.infrastructure.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from stockroom.infrastructure.logging import get_logger
from stockroom.infrastructure.persistence_clients import RedisClientManager

logger = get_logger(__name__)

METRICS_KEY = "inventory:metrics"
OUT_OF_STOCK_KEY = "inventory:out-of-stock"

METRICS_TTL_SECONDS = 60
OUT_OF_STOCK_TTL_SECONDS = 300
PRODUCT_INVENTORY_TTL_SECONDS = 30


def product_inventory_key(
    product_id: str, variant_id: str | None = None, variant_label: str | None = None
) -> str:
    key = f"inventory:product:{quote(product_id, safe='')}"
    if variant_id:
        return f"{key}:{quote(variant_id, safe='')}"
    if variant_label:
        return f"{key}:label:{quote(variant_label, safe='')}"
    return key


def inventory_cache_keys(
    product_id: str, variant_id: str | None = None, variant_label: str | None = None
) -> list[str]:
    """Every key that can hold data derived from one variant of ``product_id``."""
    keys = [product_inventory_key(product_id)]
    if variant_id:
        keys.append(product_inventory_key(product_id, variant_id=variant_id))
    if variant_label:
        keys.append(product_inventory_key(product_id, variant_label=variant_label))
    keys.extend([METRICS_KEY, OUT_OF_STOCK_KEY])
    return keys


class MemoryCache:
    """Bounded TTL map used while Redis is unavailable. Oldest entry goes first."""

    def __init__(self, max_entries: int = 100, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return payload

    def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (self._clock() + ttl_seconds, payload)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CacheService:
    """JSON cache over Redis with an in-process fallback.

    Redis calls go through the injected breaker. Any cache failure is logged
    and treated as a miss. Deletes that could not reach Redis are kept and
    replayed before the next Redis call.
    """

    def __init__(
        self,
        *,
        redis_manager: RedisClientManager,
        breaker: CircuitBreaker,
        memory: MemoryCache | None = None,
    ) -> None:
        self.redis_manager = redis_manager
        self.breaker = breaker
        self.memory = memory or MemoryCache()
        self.pending_deletes: set[str] = set()

    async def get(self, key: str) -> Any | None:
        client = self._redis_client()
        if client is not None:
            try:
                await self._flush_pending_deletes(client)
                payload = await self.breaker.call(lambda: client.get(key))
            except CircuitBreakerOpenError:
                payload = self.memory.get(key)
            except Exception as exc:
                logger.warning("cache.get_failed", key=key, error=str(exc))
                payload = self.memory.get(key)
        else:
            payload = self.memory.get(key)
        return self._decode(key, payload)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, default=str)
        client = self._redis_client()
        if client is not None:
            try:
                await self._flush_pending_deletes(client)
                await self.breaker.call(lambda: client.set(key, payload, ex=ttl_seconds))
                self.pending_deletes.discard(key)
                return
            except CircuitBreakerOpenError:
                pass
            except Exception as exc:
                logger.warning("cache.set_failed", key=key, error=str(exc))
        self.memory.set(key, payload, ttl_seconds)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.memory.delete(key)
        client = self._redis_client()
        if client is None or not keys:
            return
        targets = sorted(self.pending_deletes.union(keys))
        try:
            await self.breaker.call(lambda: client.delete(*targets))
        except CircuitBreakerOpenError:
            self.pending_deletes.update(keys)
            logger.info("cache.delete_deferred", keys=list(keys), reason="circuit_open")
        except Exception as exc:
            self.pending_deletes.update(keys)
            logger.warning("cache.delete_failed", keys=list(keys), error=str(exc))
        else:
            self.pending_deletes.difference_update(targets)

    async def invalidate_inventory(
        self, product_id: str, variant_id: str | None = None, variant_label: str | None = None
    ) -> None:
        await self.delete(*inventory_cache_keys(product_id, variant_id, variant_label))

    async def _flush_pending_deletes(self, client: Any) -> None:
        if not self.pending_deletes:
            return
        keys = sorted(self.pending_deletes)
        await self.breaker.call(lambda: client.delete(*keys))
        self.pending_deletes.difference_update(keys)
        logger.info("cache.delete_replayed", keys=keys)

    def _redis_client(self) -> Any | None:
        return self.redis_manager.client

    def _decode(self, key: str, payload: Any) -> Any | None:
        if not payload:
            return None
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("cache.decode_failed", key=key)
            return None
