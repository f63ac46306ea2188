from __future__ import annotations

import argparse
import asyncio
import json
import random
from typing import Any

from stockroom.container import Container
from stockroom.core.utils import generate_id, iso_now
from stockroom.models.inventory import AdjustmentReason

CATEGORIES = ["shoes", "clothing", "accessories", "electronics", "home"]
BRANDS = ["StrideForge", "PeakRoute", "AeroThread", "CarryWorks", "LuminaHome", "TechPulse"]
COLORS = ["black", "white", "navy", "charcoal", "forest", "crimson"]
SIZES = {"shoes": ["8", "9", "10", "11", "12"], "clothing": ["S", "M", "L", "XL"]}


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed catalog products with opening stock.")
    parser.add_argument("--count", type=int, default=25, help="Number of products to create.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable catalogs.")
    parser.add_argument("--max-stock", type=int, default=200, help="Upper bound for opening stock per variant.")
    return parser


def build_product(rng: random.Random, max_stock: int) -> tuple[dict[str, Any], list[int]]:
    """Returns a product with zeroed variants plus the opening stock for each variant."""
    category = rng.choice(CATEGORIES)
    brand = rng.choice(BRANDS)
    price = round(rng.uniform(15.0, 499.0), 2)
    name = f"{brand} {category.title()} {rng.choice(['Pro', 'Max', 'Elite', 'Basic'])}"
    variants = []
    for _ in range(rng.randint(1, 3)):
        size = rng.choice(SIZES.get(category, ["one-size"]))
        color = rng.choice(COLORS)
        variants.append(
            {
                "variantId": generate_id("var"),
                "label": f"{size} / {color}",
                "size": size,
                "color": color,
                "price": price,
                "inventory": 0,
                "sku": f"{brand[:3].upper()}-{size}-{color[:3].upper()}",
                "images": [],
            }
        )
    product = {
        "id": generate_id("prod"),
        "name": name,
        "category": category,
        "price": price,
        "lowStockThreshold": rng.choice([3, 5, 10]),
        "allowBackorder": rng.random() < 0.1,
        "isDeleted": False,
        "restockDate": None,
        "version": 0,
        "variants": variants,
        "createdAt": iso_now(),
    }
    return product, [rng.randint(0, max(0, max_stock)) for _ in variants]


async def run(*, count: int, seed: int | None, max_stock: int) -> dict[str, Any]:
    rng = random.Random(seed)
    container = Container()
    await container.start()
    created = 0
    units = 0
    try:
        for _ in range(max(0, count)):
            product, opening = build_product(rng, max_stock)
            await container.product_repository.upsert(product)
            for variant, quantity in zip(product["variants"], opening):
                if quantity <= 0:
                    continue
                await container.adjustment_service.adjust(
                    product["id"],
                    variant["variantId"],
                    quantity,
                    AdjustmentReason.RESTOCK,
                    "seed",
                    {"source": "seed_catalog"},
                )
                units += quantity
            created += 1
    finally:
        await container.stop()
    return {
        "products": created,
        "units": units,
        "mongo": container.mongo_manager.status,
    }


def main() -> int:
    args = _parser().parse_args()
    summary = asyncio.run(run(count=args.count, seed=args.seed, max_stock=args.max_stock))
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
