from __future__ import annotations

import pytest

from stockroom.container import Container
from stockroom.core.config import Settings
from stockroom.core.errors import (
    InsufficientInventoryError,
    LimitExceededError,
    ProductNotFoundError,
    VariantNotFoundError,
    VersionConflictError,
)
from stockroom.services.cache_service import product_inventory_key

pytestmark = pytest.mark.asyncio


def _inventory(container: Container, product_id: str = "prod_1", index: int = 0) -> int:
    return container.store.products_by_id[product_id]["variants"][index]["inventory"]


def _conflict_first_writes(monkeypatch, container: Container, times: int) -> None:
    original = container.product_repository.apply_inventory_delta
    failures = {"left": times}

    async def flaky_apply(*args, **kwargs):
        if failures["left"]:
            failures["left"] -= 1
            raise VersionConflictError("prod_1")
        return await original(*args, **kwargs)

    monkeypatch.setattr(container.product_repository, "apply_inventory_delta", flaky_apply)


async def test_restock_appends_one_history_record(container, seed_product) -> None:
    await seed_product(inventory=10)

    result = await container.adjustment_service.adjust(
        "prod_1", "var_1", 5, "restock", "ops_1", {"poNumber": "PO-9"}
    )

    assert result.success is True
    assert (result.previous_quantity, result.new_quantity, result.available_stock) == (10, 15, 15)
    assert _inventory(container) == 15
    [record] = container.store.history
    assert record["variantId"] == "var_1"
    assert record["previousQuantity"] + record["adjustment"] == record["newQuantity"]
    assert record["userId"] == "ops_1"
    assert record["metadata"]["poNumber"] == "PO-9"
    assert record["metadata"]["correlationId"].startswith("corr_")
    assert result.to_payload()["historyRecord"]["timestamp"] == record["timestamp"].isoformat()


async def test_caller_correlation_id_is_kept(container, seed_product) -> None:
    await seed_product()
    result = await container.adjustment_service.adjust(
        "prod_1", "var_1", 1, "return", "ops", {"correlationId": "corr_fixed"}
    )
    assert result.history_record["metadata"]["correlationId"] == "corr_fixed"


async def test_sale_cannot_take_reserved_units(container, seed_product) -> None:
    await seed_product(inventory=10)
    await container.reservation_service.reserve("prod_1", "var_1", 8, "sess_a")

    with pytest.raises(InsufficientInventoryError) as excinfo:
        await container.adjustment_service.adjust("prod_1", "var_1", -5, "sale", "ops")

    assert excinfo.value.status_code == 400
    assert excinfo.value.requested == 5
    assert excinfo.value.available == 2
    assert "excluding reservations" in str(excinfo.value)
    assert _inventory(container) == 10
    assert container.store.history == []


async def test_non_sale_decrease_is_bounded_by_committed_stock(container, seed_product) -> None:
    await seed_product(inventory=10)

    with pytest.raises(InsufficientInventoryError) as excinfo:
        await container.adjustment_service.adjust("prod_1", "var_1", -11, "damage", "ops")

    assert excinfo.value.available == 10
    assert str(excinfo.value) == "Insufficient inventory. Current: 10, Requested adjustment: -11"

    result = await container.adjustment_service.adjust("prod_1", "var_1", -10, "damage", "ops")
    assert result.new_quantity == 0


async def test_increase_is_bounded_by_maximum(container, seed_product) -> None:
    await seed_product(inventory=999_990)

    with pytest.raises(LimitExceededError) as excinfo:
        await container.adjustment_service.adjust("prod_1", "var_1", 10, "restock", "ops")
    assert excinfo.value.maximum == 999_999
    assert excinfo.value.current == 999_990

    result = await container.adjustment_service.adjust("prod_1", "var_1", 9, "restock", "ops")
    assert result.new_quantity == 999_999


async def test_missing_product_and_variant(container, seed_product) -> None:
    await seed_product()
    with pytest.raises(ProductNotFoundError):
        await container.adjustment_service.adjust("nope", "var_1", 1, "restock", "ops")
    with pytest.raises(VariantNotFoundError):
        await container.adjustment_service.adjust("prod_1", "var_x", 1, "restock", "ops")


async def test_deleted_product_is_not_found(container, seed_product) -> None:
    await seed_product(isDeleted=True)
    with pytest.raises(ProductNotFoundError):
        await container.adjustment_service.adjust("prod_1", "var_1", 1, "restock", "ops")


async def test_product_without_variants_gets_default_variant(container, seed_product) -> None:
    await seed_product("prod_bare", variants=[])

    result = await container.adjustment_service.adjust("prod_bare", None, 4, "restock", "ops")

    product = container.store.products_by_id["prod_bare"]
    assert product["variants"][0]["variantId"] == "default"
    assert product["variants"][0]["label"] == "Default"
    assert product["variants"][0]["inventory"] == 4
    assert product["version"] == 2
    assert result.history_record["variantId"] == "default"


async def test_unaddressed_adjustment_targets_first_variant(container, seed_product) -> None:
    await seed_product(
        variants=[
            {"variantId": "var_a", "label": "A", "price": 5.0, "inventory": 2},
            {"variantId": "var_b", "label": "B", "price": 5.0, "inventory": 3},
        ]
    )
    result = await container.adjustment_service.adjust("prod_1", None, 1, "restock", "ops")
    assert result.history_record["variantId"] == "var_a"
    assert _inventory(container, index=0) == 3
    assert _inventory(container, index=1) == 3


async def test_label_addressing_records_canonical_variant(container, seed_product) -> None:
    await seed_product(inventory=3)
    result = await container.adjustment_service.adjust(
        "prod_1", None, 2, "restock", "ops", variant_label="M / black"
    )
    assert result.history_record["variantId"] == "var_1"
    assert _inventory(container) == 5


async def test_version_conflicts_are_retried_with_backoff(monkeypatch, captured_logs) -> None:
    container = Container(settings=Settings(inventory_retry_base_delay_ms=100))
    await container.product_repository.upsert(
        {
            "id": "prod_1",
            "name": "Retry",
            "price": 1.0,
            "version": 0,
            "variants": [{"variantId": "var_1", "price": 1.0, "inventory": 5}],
        }
    )
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    container.adjustment_service._sleep = fake_sleep
    _conflict_first_writes(monkeypatch, container, 2)

    result = await container.adjustment_service.adjust(
        "prod_1", "var_1", 2, "restock", "ops", {"correlationId": "corr_retry"}
    )

    assert delays == [0.1, 0.2]
    assert result.new_quantity == 7
    [record] = container.store.history
    assert record["metadata"]["correlationId"] == "corr_retry"

    starts = [entry for entry in captured_logs if entry["event"] == "inventory.update.start"]
    assert [entry["retry_count"] for entry in starts] == [0, 1, 2]
    retries = [entry for entry in captured_logs if entry["event"] == "inventory.update.retry"]
    assert len(retries) == 2
    assert {entry["correlation_id"] for entry in starts + retries} == {"corr_retry"}


async def test_generated_correlation_id_is_stable_across_retries(
    container, seed_product, monkeypatch, captured_logs
) -> None:
    await seed_product()
    _conflict_first_writes(monkeypatch, container, 2)

    result = await container.adjustment_service.adjust("prod_1", "var_1", 1, "restock", "ops")

    correlation_id = result.history_record["metadata"]["correlationId"]
    assert correlation_id.startswith("corr_")
    starts = [entry for entry in captured_logs if entry["event"] == "inventory.update.start"]
    assert len(starts) == 3
    assert {entry["correlation_id"] for entry in starts} == {correlation_id}
    [success] = [entry for entry in captured_logs if entry["event"] == "inventory.update.success"]
    assert success["correlation_id"] == correlation_id


async def test_retries_are_bounded(container, seed_product, monkeypatch) -> None:
    await seed_product()
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    async def always_conflict(*args, **kwargs):
        raise VersionConflictError("prod_1")

    container.adjustment_service._sleep = fake_sleep
    monkeypatch.setattr(container.product_repository, "apply_inventory_delta", always_conflict)

    with pytest.raises(VersionConflictError) as excinfo:
        await container.adjustment_service.adjust("prod_1", "var_1", 1, "restock", "ops")

    assert excinfo.value.attempts == 4
    assert excinfo.value.status_code == 409
    assert len(delays) == 3
    assert container.store.history == []


async def test_adjust_invalidates_cache_and_publishes_event(container, seed_product) -> None:
    await seed_product(inventory=10)
    info = await container.inventory_service.get_product_inventory_info("prod_1", "var_1")
    assert info["currentStock"] == 10
    assert await container.cache_service.get(product_inventory_key("prod_1", "var_1")) is not None

    await container.adjustment_service.adjust("prod_1", "var_1", -6, "sale", "ops")
    await container.event_publisher.flush()

    assert await container.cache_service.get(product_inventory_key("prod_1", "var_1")) is None
    [event] = container.store.stock_events
    assert event["productId"] == "prod_1"
    assert event["variantId"] == "var_1"
    assert event["availableStock"] == 4
    assert event["totalStock"] == 4
    assert event["stockStatus"] == "low_stock"
    refreshed = await container.inventory_service.get_product_inventory_info("prod_1", "var_1")
    assert refreshed["currentStock"] == 4


async def test_bulk_adjust_isolates_failures(container, seed_product) -> None:
    await seed_product(inventory=10)

    results = await container.adjustment_service.bulk_adjust(
        [
            {"productId": "prod_1", "variantId": "var_1", "adjustment": 3, "reason": "restock"},
            {
                "productId": "missing",
                "variantId": "var_1",
                "adjustment": 1,
                "reason": "restock",
                "metadata": {"batch": "b1"},
            },
            {"productId": "prod_1", "variantId": "var_1", "adjustment": -2, "reason": "sale"},
        ],
        "ops",
    )

    assert [result.success for result in results] == [True, False, True]
    failed = results[1]
    assert (failed.previous_quantity, failed.new_quantity, failed.available_stock) == (0, 0, 0)
    assert failed.history_record["reason"] == "restock"
    assert failed.history_record["metadata"] == {"batch": "b1"}
    assert failed.history_record["adjustment"] == 0
    assert failed.error == "Product not found"
    assert _inventory(container) == 11
    assert len(container.store.history) == 2
