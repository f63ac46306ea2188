from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stockroom.core.errors import VariantNotFoundError
from stockroom.models.inventory import DEFAULT_VARIANT_ID, DEFAULT_VARIANT_LABEL


def default_variant(product: dict[str, Any]) -> dict[str, Any]:
    return {
        "variantId": DEFAULT_VARIANT_ID,
        "label": DEFAULT_VARIANT_LABEL,
        "price": float(product.get("price", 0) or 0),
        "inventory": 0,
        "images": [],
    }


def effective_variants(product: dict[str, Any]) -> list[dict[str, Any]]:
    variants = product.get("variants")
    if isinstance(variants, list) and variants:
        return [variant for variant in variants if isinstance(variant, dict)]
    return [default_variant(product)]


def has_stored_variants(product: dict[str, Any]) -> bool:
    variants = product.get("variants")
    return isinstance(variants, list) and bool(variants)


def find_variant(
    product: dict[str, Any],
    *,
    variant_id: str | None = None,
    variant_label: str | None = None,
) -> dict[str, Any] | None:
    variants = effective_variants(product)
    if variant_id:
        return next((v for v in variants if str(v.get("variantId")) == variant_id), None)
    if variant_label:
        return next((v for v in variants if v.get("label") == variant_label), None)
    return None


@dataclass(frozen=True)
class StockTarget:
    """A product plus the variant an operation addresses.

    ``variant`` is ``None`` when the caller addressed the whole product; the
    committed count is then the sum over every variant.
    """

    product_id: str
    product: dict[str, Any]
    variant: dict[str, Any] | None

    @property
    def variant_id(self) -> str | None:
        if self.variant is None:
            return None
        return str(self.variant.get("variantId"))

    @property
    def variant_label(self) -> str | None:
        if self.variant is None:
            return None
        label = self.variant.get("label")
        return str(label) if label else None

    @property
    def committed(self) -> int:
        if self.variant is not None:
            return int(self.variant.get("inventory", 0) or 0)
        return sum(int(v.get("inventory", 0) or 0) for v in effective_variants(self.product))


def resolve_stock_target(
    product_id: str,
    product: dict[str, Any],
    *,
    variant_id: str | None = None,
    variant_label: str | None = None,
) -> StockTarget:
    """Maps an id or label onto the canonical variant.

    The id wins when both are given. Neither means the whole product.
    """
    if not variant_id and not variant_label:
        return StockTarget(product_id=product_id, product=product, variant=None)
    variant = find_variant(product, variant_id=variant_id, variant_label=variant_label)
    if variant is None:
        raise VariantNotFoundError(
            product_id,
            variant_id=variant_id,
            variant_label=None if variant_id else variant_label,
        )
    return StockTarget(product_id=product_id, product=product, variant=variant)


def format_variant_details(variant: dict[str, Any]) -> str:
    if variant.get("label"):
        return str(variant["label"])
    parts = []
    if variant.get("size"):
        parts.append(f"Size: {variant['size']}")
    if variant.get("color"):
        parts.append(f"Color: {variant['color']}")
    return ", ".join(parts)
