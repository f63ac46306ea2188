from __future__ import annotations

import asyncio
from copy import deepcopy
from typing import Any


class InMemoryStore:
    """Process-local stand-in for the Mongo collections.

    ``lock`` serialises transactions; plain reads and single-document writes
    run without awaiting and so cannot interleave on the event loop.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.products_by_id: dict[str, dict[str, Any]] = {}
        self.reservations_by_id: dict[str, dict[str, Any]] = {}
        self.history: list[dict[str, Any]] = []
        self.stock_events: list[dict[str, Any]] = []

    def export_state(self) -> dict[str, Any]:
        return {
            "products_by_id": deepcopy(self.products_by_id),
            "reservations_by_id": deepcopy(self.reservations_by_id),
            "history": deepcopy(self.history),
            "stock_events": deepcopy(self.stock_events),
        }

    def import_state(self, state: dict[str, Any]) -> None:
        self.products_by_id = deepcopy(state.get("products_by_id", {}))
        self.reservations_by_id = deepcopy(state.get("reservations_by_id", {}))
        self.history = deepcopy(state.get("history", []))
        self.stock_events = deepcopy(state.get("stock_events", []))
