from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from stockroom.core.config import Settings
from stockroom.core.errors import (
    InsufficientInventoryError,
    InventoryError,
    LimitExceededError,
    ProductNotFoundError,
    VariantNotFoundError,
    VersionConflictError,
)
from stockroom.core.utils import generate_correlation_id, generate_id, utc_now
from stockroom.infrastructure.logging import correlation_scope, get_logger
from stockroom.models.inventory import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    AdjustmentReason,
    AdjustmentResult,
    classify_stock_status,
)
from stockroom.repositories.history_repository import HistoryRepository
from stockroom.repositories.product_repository import ProductRepository
from stockroom.repositories.transactions import TransactionContext
from stockroom.services.cache_service import CacheService
from stockroom.services.stock_event_service import StockEventPublisher
from stockroom.services.stock_query_service import StockQueryService
from stockroom.services.variants import (
    StockTarget,
    default_variant,
    effective_variants,
    find_variant,
    has_stored_variants,
    resolve_stock_target,
)

logger = get_logger(__name__)


class AdjustmentService:
    """The only write path for committed inventory.

    Every successful call appends exactly one history record, drops the
    derived cache keys and schedules a stock change event.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        product_repository: ProductRepository,
        history_repository: HistoryRepository,
        stock_query: StockQueryService,
        cache_service: CacheService,
        event_publisher: StockEventPublisher,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.product_repository = product_repository
        self.history_repository = history_repository
        self.stock_query = stock_query
        self.cache_service = cache_service
        self.event_publisher = event_publisher
        self._sleep = sleep

    async def adjust(
        self,
        product_id: str,
        variant_id: str | None = None,
        delta: int = 0,
        reason: AdjustmentReason | str = AdjustmentReason.ADJUSTMENT,
        user_id: str = "system",
        metadata: dict[str, Any] | None = None,
        variant_label: str | None = None,
        *,
        transaction: TransactionContext | None = None,
    ) -> AdjustmentResult:
        reason = AdjustmentReason(reason)
        metadata = dict(metadata or {})
        correlation_id = str(metadata.get("correlationId") or generate_correlation_id())
        metadata["correlationId"] = correlation_id

        with correlation_scope(correlation_id, product_id=product_id):
            if transaction is not None:
                # Retried by the transaction owner.
                return await self._attempt(
                    product_id, variant_id, variant_label, delta, reason, user_id, metadata,
                    attempt=0, tx=transaction,
                )

            max_retries = self.settings.inventory_max_retries
            attempt = 0
            while True:
                try:
                    return await self._attempt(
                        product_id, variant_id, variant_label, delta, reason, user_id, metadata,
                        attempt=attempt, tx=None,
                    )
                except VersionConflictError as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "inventory.update.error",
                            variant_id=variant_id,
                            adjustment=delta,
                            reason=reason.value,
                            attempts=attempt + 1,
                            error=str(exc),
                        )
                        raise VersionConflictError(product_id, attempts=attempt + 1) from exc
                    delay_ms = self.settings.inventory_retry_base_delay_ms * (2**attempt)
                    logger.warning(
                        "inventory.update.retry",
                        variant_id=variant_id,
                        retry_count=attempt,
                        delay_ms=delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)
                    attempt += 1

    async def bulk_adjust(
        self, updates: list[dict[str, Any]], user_id: str
    ) -> list[AdjustmentResult]:
        """Applies each update on its own; one failure never blocks the rest."""
        results: list[AdjustmentResult] = []
        for update in updates:
            try:
                result = await self.adjust(
                    str(update["productId"]),
                    update.get("variantId"),
                    int(update["adjustment"]),
                    update["reason"],
                    user_id,
                    update.get("metadata"),
                    update.get("variantLabel"),
                )
            except (InventoryError, ValueError) as exc:
                results.append(self._failed_result(update, user_id, str(exc)))
                continue
            results.append(result)
        return results

    async def _attempt(
        self,
        product_id: str,
        variant_id: str | None,
        variant_label: str | None,
        delta: int,
        reason: AdjustmentReason,
        user_id: str,
        metadata: dict[str, Any],
        *,
        attempt: int,
        tx: TransactionContext | None,
    ) -> AdjustmentResult:
        started = time.perf_counter()
        logger.info(
            "inventory.update.start",
            variant_id=variant_id,
            variant_label=variant_label,
            adjustment=delta,
            reason=reason.value,
            user_id=user_id,
            retry_count=attempt,
        )
        try:
            result = await self._apply(
                product_id, variant_id, variant_label, delta, reason, user_id, metadata, tx
            )
        except VersionConflictError:
            raise
        except Exception as exc:
            logger.error(
                "inventory.update.error",
                variant_id=variant_id,
                adjustment=delta,
                reason=reason.value,
                user_id=user_id,
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        logger.info(
            "inventory.update.success",
            variant_id=result.history_record["variantId"],
            adjustment=delta,
            reason=reason.value,
            user_id=user_id,
            previous_quantity=result.previous_quantity,
            new_quantity=result.new_quantity,
            available_stock=result.available_stock,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    async def _apply(
        self,
        product_id: str,
        variant_id: str | None,
        variant_label: str | None,
        delta: int,
        reason: AdjustmentReason,
        user_id: str,
        metadata: dict[str, Any],
        tx: TransactionContext | None,
    ) -> AdjustmentResult:
        product = await self.stock_query.load_product(product_id, tx)
        if not has_stored_variants(product):
            stored = await self.product_repository.attach_default_variant(
                product_id,
                default_variant(product),
                expected_version=int(product.get("version", 0) or 0),
                tx=tx,
            )
            if not stored:
                raise VersionConflictError(product_id)
            product = await self.stock_query.load_product(product_id, tx)

        addressed = bool(variant_id or variant_label)
        if addressed:
            target = resolve_stock_target(
                product_id, product, variant_id=variant_id, variant_label=variant_label
            )
        else:
            target = StockTarget(
                product_id=product_id, product=product, variant=effective_variants(product)[0]
            )
        canonical_id = target.variant_id

        if reason is AdjustmentReason.SALE and delta < 0:
            snapshot = await self.stock_query.snapshot_for(target, tx=tx)
            if -delta > snapshot.available:
                raise InsufficientInventoryError(
                    product_id=product_id,
                    variant_id=canonical_id,
                    requested=-delta,
                    available=snapshot.available,
                    message=(
                        f"Cannot sell {-delta} items. Only {snapshot.available} available "
                        "(excluding reservations)"
                    ),
                )

        updated = await self.product_repository.apply_inventory_delta(
            product_id,
            delta,
            variant_id=canonical_id if addressed else None,
            max_inventory=self.settings.max_inventory,
            tx=tx,
        )
        if updated is None:
            raise await self._classify_rejection(product_id, canonical_id, delta, tx)

        variant = find_variant(updated, variant_id=canonical_id)
        if variant is None:
            raise VariantNotFoundError(product_id, variant_id=canonical_id)

        new_quantity = int(variant.get("inventory", 0) or 0)
        previous_quantity = new_quantity - delta
        history_record = await self.history_repository.append(
            {
                "historyId": generate_id("hist"),
                "productId": product_id,
                "variantId": canonical_id,
                "previousQuantity": previous_quantity,
                "newQuantity": new_quantity,
                "adjustment": delta,
                "reason": reason.value,
                "userId": user_id,
                "metadata": metadata,
                "timestamp": utc_now(),
            },
            tx,
        )

        updated_target = StockTarget(product_id=product_id, product=updated, variant=variant)
        snapshot = await self.stock_query.snapshot_for(updated_target, tx=tx)
        stock_status = classify_stock_status(
            snapshot.available,
            int(updated.get("lowStockThreshold", DEFAULT_LOW_STOCK_THRESHOLD)),
            bool(updated.get("allowBackorder", False)),
        )

        async def announce() -> None:
            await self.cache_service.invalidate_inventory(
                product_id, canonical_id, updated_target.variant_label
            )
            self.event_publisher.publish(
                product_id=product_id,
                variant_id=canonical_id,
                available_stock=snapshot.available,
                total_stock=new_quantity,
                stock_status=stock_status.value,
                timestamp=history_record["timestamp"].isoformat(),
            )

        if tx is None:
            await announce()
        else:
            tx.on_commit(announce)

        return AdjustmentResult(
            success=True,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            available_stock=snapshot.available,
            history_record=history_record,
        )

    async def _classify_rejection(
        self,
        product_id: str,
        variant_id: str | None,
        delta: int,
        tx: TransactionContext | None,
    ) -> InventoryError:
        """Works out why the conditional write matched nothing."""
        product = await self.product_repository.get(product_id, tx)
        if product is None or product.get("isDeleted"):
            return ProductNotFoundError(product_id)
        variant = find_variant(product, variant_id=variant_id)
        if variant is None:
            return VariantNotFoundError(product_id, variant_id=variant_id)

        current = int(variant.get("inventory", 0) or 0)
        if delta < 0 and current < -delta:
            return InsufficientInventoryError(
                product_id=product_id,
                variant_id=variant_id,
                requested=-delta,
                available=current,
                message=f"Insufficient inventory. Current: {current}, Requested adjustment: {delta}",
            )
        if delta > 0 and current + delta > self.settings.max_inventory:
            return LimitExceededError(
                product_id=product_id,
                variant_id=variant_id,
                current=current,
                adjustment=delta,
                maximum=self.settings.max_inventory,
            )
        # Bounds hold on re-read: the document changed between write and read.
        return VersionConflictError(product_id)

    def _failed_result(
        self, update: dict[str, Any], user_id: str, error: str
    ) -> AdjustmentResult:
        reason = update.get("reason")
        return AdjustmentResult(
            success=False,
            previous_quantity=0,
            new_quantity=0,
            available_stock=0,
            history_record={
                "productId": update.get("productId"),
                "variantId": update.get("variantId"),
                "previousQuantity": 0,
                "newQuantity": 0,
                "adjustment": 0,
                "reason": reason.value if isinstance(reason, AdjustmentReason) else reason,
                "userId": user_id,
                "metadata": update.get("metadata"),
                "timestamp": utc_now(),
            },
            error=error,
        )
