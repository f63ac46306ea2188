from __future__ import annotations

from datetime import datetime
from typing import Any

from stockroom.core.errors import InvalidQuantityError, ProductNotFoundError
from stockroom.models.inventory import StockSnapshot
from stockroom.repositories.product_repository import ProductRepository
from stockroom.repositories.reservation_repository import ReservationRepository
from stockroom.repositories.transactions import TransactionContext
from stockroom.services.variants import StockTarget, resolve_stock_target


class StockQueryService:
    """Read side of inventory: available = committed - live reservations.

    Every read takes an optional transaction so callers inside one see its
    snapshot instead of the committed state.
    """

    def __init__(
        self,
        *,
        product_repository: ProductRepository,
        reservation_repository: ReservationRepository,
    ) -> None:
        self.product_repository = product_repository
        self.reservation_repository = reservation_repository

    async def load_product(
        self, product_id: str, tx: TransactionContext | None = None
    ) -> dict[str, Any]:
        product = await self.product_repository.get(product_id, tx)
        if product is None or product.get("isDeleted"):
            raise ProductNotFoundError(product_id)
        return product

    async def resolve_target(
        self,
        product_id: str,
        *,
        variant_id: str | None = None,
        variant_label: str | None = None,
        tx: TransactionContext | None = None,
    ) -> StockTarget:
        product = await self.load_product(product_id, tx)
        return resolve_stock_target(
            product_id, product, variant_id=variant_id, variant_label=variant_label
        )

    async def snapshot_for(
        self,
        target: StockTarget,
        *,
        now: datetime | None = None,
        tx: TransactionContext | None = None,
    ) -> StockSnapshot:
        reserved = await self.reservation_repository.sum_active(
            target.product_id, target.variant_id, now=now, tx=tx
        )
        return StockSnapshot(
            product_id=target.product_id,
            variant_id=target.variant_id,
            committed=target.committed,
            reserved=reserved,
        )

    async def get_stock_snapshot(
        self,
        product_id: str,
        variant_id: str | None = None,
        variant_label: str | None = None,
        *,
        tx: TransactionContext | None = None,
    ) -> StockSnapshot:
        target = await self.resolve_target(
            product_id, variant_id=variant_id, variant_label=variant_label, tx=tx
        )
        return await self.snapshot_for(target, tx=tx)

    async def get_available_inventory(
        self,
        product_id: str,
        variant_id: str | None = None,
        variant_label: str | None = None,
        *,
        tx: TransactionContext | None = None,
    ) -> int:
        snapshot = await self.get_stock_snapshot(product_id, variant_id, variant_label, tx=tx)
        return snapshot.available

    async def check_availability(
        self,
        product_id: str,
        variant_id: str | None = None,
        quantity: int = 1,
        variant_label: str | None = None,
        *,
        tx: TransactionContext | None = None,
    ) -> bool:
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        available = await self.get_available_inventory(product_id, variant_id, variant_label, tx=tx)
        return available >= quantity
