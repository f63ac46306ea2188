from __future__ import annotations

import pytest

from stockroom.core.errors import VariantNotFoundError
from stockroom.models.inventory import StockStatus, classify_stock_status
from stockroom.services.cache_service import (
    METRICS_KEY,
    OUT_OF_STOCK_KEY,
    inventory_cache_keys,
    product_inventory_key,
)
from stockroom.services.variants import format_variant_details, resolve_stock_target


def _product() -> dict[str, object]:
    return {
        "id": "prod_1",
        "price": 12.5,
        "variants": [
            {"variantId": "var_s", "label": "Small", "inventory": 4},
            {"variantId": "var_l", "label": "Large", "inventory": 6},
        ],
    }


@pytest.mark.parametrize(
    ("available", "threshold", "backorder", "expected"),
    [
        (-2, 5, False, StockStatus.OUT_OF_STOCK),
        (0, 5, False, StockStatus.OUT_OF_STOCK),
        (0, 5, True, StockStatus.BACKORDERED),
        (1, 5, False, StockStatus.LOW_STOCK),
        (5, 5, False, StockStatus.LOW_STOCK),
        (6, 5, False, StockStatus.IN_STOCK),
        (6, 5, True, StockStatus.IN_STOCK),
    ],
)
def test_stock_status_boundaries(
    available: int, threshold: int, backorder: bool, expected: StockStatus
) -> None:
    assert classify_stock_status(available, threshold, backorder) is expected


def test_variant_id_wins_over_label() -> None:
    target = resolve_stock_target("prod_1", _product(), variant_id="var_l", variant_label="Small")
    assert target.variant_id == "var_l"
    assert target.committed == 6


def test_variant_label_resolves_to_canonical_id() -> None:
    target = resolve_stock_target("prod_1", _product(), variant_label="Small")
    assert target.variant_id == "var_s"
    assert target.variant_label == "Small"


def test_unaddressed_target_sums_all_variants() -> None:
    target = resolve_stock_target("prod_1", _product())
    assert target.variant is None
    assert target.variant_id is None
    assert target.committed == 10


def test_unknown_variant_raises_not_found() -> None:
    with pytest.raises(VariantNotFoundError) as excinfo:
        resolve_stock_target("prod_1", _product(), variant_label="Medium")
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail["variantLabel"] == "Medium"


def test_product_without_variants_resolves_to_default_variant() -> None:
    product = {"id": "prod_bare", "price": 9.0, "variants": []}
    target = resolve_stock_target("prod_bare", product, variant_id="default")
    assert target.variant_id == "default"
    assert target.variant_label == "Default"
    assert target.committed == 0
    assert resolve_stock_target("prod_bare", product).committed == 0


def test_variant_details_prefer_label() -> None:
    assert format_variant_details({"label": "Blue XL", "size": "XL"}) == "Blue XL"
    assert format_variant_details({"size": "XL", "color": "blue"}) == "Size: XL, Color: blue"
    assert format_variant_details({"color": "blue"}) == "Color: blue"
    assert format_variant_details({}) == ""


def test_product_inventory_keys_are_url_safe() -> None:
    assert product_inventory_key("prod 1") == "inventory:product:prod%201"
    assert product_inventory_key("p", variant_id="v/1") == "inventory:product:p:v%2F1"
    assert product_inventory_key("p", variant_label="M:black") == "inventory:product:p:label:M%3Ablack"
    assert product_inventory_key("p", variant_id="v", variant_label="M") == "inventory:product:p:v"


def test_inventory_cache_keys_cover_every_addressing_mode() -> None:
    keys = inventory_cache_keys("p", "v", "M")
    assert keys == [
        "inventory:product:p",
        "inventory:product:p:v",
        "inventory:product:p:label:M",
        METRICS_KEY,
        OUT_OF_STOCK_KEY,
    ]
