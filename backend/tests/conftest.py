from __future__ import annotations

import pytest

from stockroom.container import cache_breaker, cache_service, store
from stockroom.store.in_memory import InMemoryStore


@pytest.fixture(autouse=True)
def reset_store_state() -> None:
    # Keep tests isolated even though the app container is module-global.
    store.import_state(InMemoryStore().export_state())
    cache_service.memory.clear()
    cache_breaker.reset()
