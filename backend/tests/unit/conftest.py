from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterator

import pytest
import structlog
from structlog.testing import LogCapture

from stockroom.container import Container
from stockroom.core.config import Settings

SeedProduct = Callable[..., Awaitable[dict[str, Any]]]


class FakeAsyncRedis:
    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.published: list[tuple[str, str]] = []
        self.calls = 0
        self.fail = False

    def _touch(self) -> None:
        self.calls += 1
        if self.fail:
            raise ConnectionError("redis down")

    async def get(self, key: str) -> Any:
        self._touch()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._touch()
        self.store[key] = value

    async def delete(self, *keys: str) -> int:
        self._touch()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def publish(self, channel: str, message: str) -> int:
        self._touch()
        self.published.append((channel, message))
        return 1


@pytest.fixture
def fake_redis() -> FakeAsyncRedis:
    return FakeAsyncRedis()


@pytest.fixture
def container() -> Container:
    return Container(settings=Settings(inventory_retry_base_delay_ms=0))


@pytest.fixture
def seed_product(container: Container) -> SeedProduct:
    async def _seed(
        product_id: str = "prod_1",
        *,
        inventory: int = 10,
        variants: list[dict[str, Any]] | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        if variants is None:
            variants = [
                {
                    "variantId": "var_1",
                    "label": "M / black",
                    "size": "M",
                    "color": "black",
                    "price": 20.0,
                    "inventory": inventory,
                }
            ]
        product = {
            "id": product_id,
            "name": f"Product {product_id}",
            "price": 20.0,
            "lowStockThreshold": 5,
            "allowBackorder": False,
            "isDeleted": False,
            "restockDate": None,
            "version": 0,
            "variants": variants,
        }
        product.update(fields)
        return await container.product_repository.upsert(product)

    return _seed


@pytest.fixture
def captured_logs() -> Iterator[list[dict[str, Any]]]:
    """Log entries with contextvars merged, so bound correlation ids are visible."""
    previous = structlog.get_config()
    capture = LogCapture()
    structlog.configure(
        processors=[structlog.contextvars.merge_contextvars, capture],
        cache_logger_on_first_use=False,
    )
    try:
        yield capture.entries
    finally:
        structlog.configure(**previous)
