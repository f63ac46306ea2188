from __future__ import annotations

import time

from stockroom.core.config import Settings
from stockroom.core.errors import InvalidQuantityError, ReservationNotFoundError
from stockroom.core.utils import expires_after, generate_correlation_id, generate_id, utc_now
from stockroom.infrastructure.logging import correlation_scope, get_logger
from stockroom.models.inventory import AdjustmentReason, AdjustmentResult, ReservationResult
from stockroom.repositories.reservation_repository import ReservationRepository
from stockroom.repositories.transactions import TransactionContext, TransactionRunner
from stockroom.services.adjustment_service import AdjustmentService
from stockroom.services.cache_service import CacheService
from stockroom.services.stock_query_service import StockQueryService
from stockroom.services.variants import find_variant

logger = get_logger(__name__)


class ReservationService:
    def __init__(
        self,
        *,
        settings: Settings,
        transaction_runner: TransactionRunner,
        reservation_repository: ReservationRepository,
        stock_query: StockQueryService,
        adjustment_service: AdjustmentService,
        cache_service: CacheService,
    ) -> None:
        self.settings = settings
        self.transaction_runner = transaction_runner
        self.reservation_repository = reservation_repository
        self.stock_query = stock_query
        self.adjustment_service = adjustment_service
        self.cache_service = cache_service

    async def reserve(
        self,
        product_id: str,
        variant_id: str | None = None,
        quantity: int = 1,
        session_id: str = "",
        duration_ms: int | None = None,
        user_id: str | None = None,
        variant_label: str | None = None,
    ) -> ReservationResult:
        """Holds ``quantity`` units for a checkout session.

        Stock shortfall is a normal ``success=False`` result carrying the
        current available count. A session holding the same target already
        has its hold renewed in place rather than duplicated.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        duration = duration_ms or self.settings.reservation_duration_ms

        async def work(tx: TransactionContext) -> ReservationResult:
            now = utc_now()
            target = await self.stock_query.resolve_target(
                product_id, variant_id=variant_id, variant_label=variant_label, tx=tx
            )
            snapshot = await self.stock_query.snapshot_for(target, now=now, tx=tx)
            if snapshot.available < quantity:
                await tx.abort()
                return ReservationResult(
                    success=False,
                    available_stock=snapshot.available,
                    message=f"Only {snapshot.available} items available",
                )

            await self.reservation_repository.acquire_guard(product_id, target.variant_id, tx)
            expires_at = expires_after(duration, now=now)
            existing = await self.reservation_repository.find_for_session(
                product_id, target.variant_id, session_id, tx
            )
            if existing is not None:
                await self.reservation_repository.renew(
                    existing["reservationId"],
                    quantity=quantity,
                    expires_at=expires_at,
                    user_id=user_id,
                    tx=tx,
                )
                reservation_id = str(existing["reservationId"])
            else:
                reservation_id = generate_id("res")
                await self.reservation_repository.create(
                    {
                        "reservationId": reservation_id,
                        "productId": product_id,
                        "variantId": target.variant_id,
                        "quantity": quantity,
                        "sessionId": session_id,
                        "userId": user_id,
                        "expiresAt": expires_at,
                        "type": "cart",
                        "createdAt": now,
                        "updatedAt": now,
                    },
                    tx,
                )

            async def invalidate() -> None:
                await self.cache_service.invalidate_inventory(
                    product_id, target.variant_id, target.variant_label
                )

            tx.on_commit(invalidate)
            return ReservationResult(
                success=True,
                reservation_id=reservation_id,
                available_stock=snapshot.available - quantity,
                expires_at=expires_at,
            )

        result = await self.transaction_runner.run(work)
        logger.info(
            "inventory.reservation.reserve",
            product_id=product_id,
            variant_id=variant_id,
            variant_label=variant_label,
            session_id=session_id,
            quantity=quantity,
            success=result.success,
            available_stock=result.available_stock,
        )
        return result

    async def release(self, reservation_id: str) -> bool:
        """Drops one hold. A missing hold is not an error."""
        removed = await self.reservation_repository.delete(reservation_id)
        if removed is None:
            return False
        await self._invalidate(str(removed["productId"]), removed.get("variantId"))
        logger.info("inventory.reservation.release", reservation_id=reservation_id)
        return True

    async def release_all(self, session_id: str) -> int:
        removed = await self.reservation_repository.delete_by_session(session_id)
        for target in {(str(row["productId"]), row.get("variantId")) for row in removed}:
            await self._invalidate(*target)
        logger.info(
            "inventory.reservation.release_session", session_id=session_id, released=len(removed)
        )
        return len(removed)

    async def convert_to_permanent(self, reservation_id: str, order_id: str) -> AdjustmentResult:
        """Turns a hold into a sale: both happen or neither does."""
        correlation_id = generate_correlation_id()
        started = time.perf_counter()

        with correlation_scope(correlation_id, reservation_id=reservation_id, order_id=order_id):
            logger.info("inventory.reservation.convert.start")

            async def work(tx: TransactionContext) -> tuple[AdjustmentResult, dict]:
                reservation = await self.reservation_repository.get(reservation_id, tx)
                if reservation is None:
                    raise ReservationNotFoundError(reservation_id)
                # Deleted first so the hold does not count against its own sale.
                await self.reservation_repository.delete(reservation_id, tx)
                result = await self.adjustment_service.adjust(
                    str(reservation["productId"]),
                    reservation.get("variantId"),
                    -int(reservation["quantity"]),
                    AdjustmentReason.SALE,
                    reservation.get("userId") or "system",
                    {
                        "orderId": order_id,
                        "reservationId": reservation_id,
                        "correlationId": correlation_id,
                    },
                    transaction=tx,
                )
                return result, reservation

            try:
                result, reservation = await self.transaction_runner.run(work)
            except Exception as exc:
                logger.error(
                    "inventory.reservation.convert.error",
                    error=str(exc),
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )
                raise

            logger.info(
                "inventory.reservation.convert.success",
                product_id=reservation["productId"],
                variant_id=reservation.get("variantId"),
                quantity=reservation["quantity"],
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return result

    async def _invalidate(self, product_id: str, variant_id: str | None) -> None:
        label = None
        if variant_id:
            product = await self.stock_query.product_repository.get(product_id)
            variant = find_variant(product, variant_id=variant_id) if product else None
            label = variant.get("label") if variant else None
        await self.cache_service.invalidate_inventory(product_id, variant_id, label)
