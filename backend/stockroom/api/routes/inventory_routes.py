from __future__ import annotations

import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from stockroom.api.deps import acting_user
from stockroom.container import inventory_service
from stockroom.models.schemas import (
    BulkInventoryAdjustmentRequest,
    ConvertReservationRequest,
    InventoryAdjustmentRequest,
    ReleaseSessionRequest,
    ReserveRequest,
    ValidateCheckoutRequest,
)

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/products/{product_id}")
async def product_inventory(
    product_id: str,
    variantId: str | None = None,
    variantLabel: str | None = None,
) -> dict[str, object]:
    info = await inventory_service.get_product_inventory_info(
        product_id, variant_id=variantId, variant_label=variantLabel
    )
    return {"inventory": info}


@router.get("/products/{product_id}/availability")
async def availability(
    product_id: str,
    variantId: str | None = None,
    variantLabel: str | None = None,
    quantity: int = Query(default=1, ge=1),
) -> dict[str, object]:
    available_stock = await inventory_service.get_available_inventory(
        product_id, variant_id=variantId, variant_label=variantLabel
    )
    return {
        "productId": product_id,
        "available": available_stock >= quantity,
        "availableStock": available_stock,
        "requested": quantity,
    }


@router.get("/products/{product_id}/history")
async def history(
    product_id: str,
    variantId: str | None = None,
    variantLabel: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict[str, object]:
    return await inventory_service.get_inventory_history(
        product_id,
        variant_id=variantId,
        variant_label=variantLabel,
        limit=limit,
        offset=offset,
    )


@router.post("/reservations")
async def reserve(
    payload: ReserveRequest,
    user_id: str = Depends(acting_user),
) -> dict[str, object]:
    result = await inventory_service.reserve(
        payload.productId,
        payload.variantId,
        payload.quantity,
        payload.sessionId,
        duration_ms=payload.durationMs,
        user_id=user_id,
        variant_label=payload.variantLabel,
    )
    return result.to_payload()


@router.delete("/reservations/{reservation_id}")
async def release(reservation_id: str) -> dict[str, object]:
    released = await inventory_service.release(reservation_id)
    return {"reservationId": reservation_id, "released": released}


@router.post("/reservations/release-session")
async def release_session(payload: ReleaseSessionRequest) -> dict[str, object]:
    released = await inventory_service.release_all(payload.sessionId)
    return {"sessionId": payload.sessionId, "released": released}


@router.post("/reservations/{reservation_id}/convert")
async def convert(reservation_id: str, payload: ConvertReservationRequest) -> dict[str, object]:
    result = await inventory_service.convert_to_permanent(reservation_id, payload.orderId)
    return result.to_payload()


@router.post("/adjustments")
async def adjust(
    payload: InventoryAdjustmentRequest,
    user_id: str = Depends(acting_user),
) -> dict[str, object]:
    result = await inventory_service.adjust(
        payload.productId,
        payload.variantId,
        payload.adjustment,
        payload.reason,
        user_id,
        payload.metadata,
        payload.variantLabel,
    )
    return result.to_payload()


@router.post("/adjustments/bulk")
async def bulk_adjust(
    payload: BulkInventoryAdjustmentRequest,
    user_id: str = Depends(acting_user),
) -> dict[str, object]:
    results = await inventory_service.bulk_adjust(
        [update.model_dump() for update in payload.updates], user_id
    )
    return {
        "results": [result.to_payload() for result in results],
        "succeeded": sum(1 for result in results if result.success),
        "failed": sum(1 for result in results if not result.success),
    }


@router.get("/metrics")
async def metrics() -> dict[str, object]:
    return {"metrics": await inventory_service.get_inventory_metrics()}


@router.get("/stock-value")
async def stock_value() -> dict[str, object]:
    return {"totalValue": await inventory_service.get_stock_value()}


@router.get("/out-of-stock")
async def out_of_stock() -> dict[str, object]:
    return {"products": await inventory_service.get_out_of_stock_products()}


@router.get("/low-stock")
async def low_stock(
    threshold: int | None = Query(default=None, ge=0),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> dict[str, object]:
    alerts = await inventory_service.get_low_stock_products(threshold)
    start = (page - 1) * limit
    return {
        "alerts": alerts[start : start + limit],
        "total": len(alerts),
        "page": page,
        "totalPages": math.ceil(len(alerts) / limit),
    }


@router.get("/turnover")
async def turnover(startDate: datetime, endDate: datetime) -> dict[str, object]:
    if endDate < startDate:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")
    return {"turnover": await inventory_service.get_inventory_turnover(startDate, endDate)}


@router.post("/checkout/validate")
async def validate_checkout(payload: ValidateCheckoutRequest) -> dict[str, object]:
    return await inventory_service.validate_checkout(
        [item.model_dump() for item in payload.items]
    )
