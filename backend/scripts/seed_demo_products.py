#!/usr/bin/env python3
"""
Seed Demo Products — catalog + stock + initialized prediction engine.

Usage:
  python scripts/seed_demo_products.py
  python scripts/seed_demo_products.py --create-schema --seed 7
"""

import argparse
import asyncio
import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import InventoryItem, Product
from db.session import Base
from ml.service import ReplenishmentService

DEMO_PRODUCTS = [
    # (sku, name, category, unit, unit_cost, unit_price)
    ("MILK001", "Organic Milk", "Dairy", "L", 1.20, 2.49),
    ("YOG001", "Greek Yogurt", "Dairy", "L", 1.80, 3.29),
    ("ASP001", "Aspirin 500mg", "Pharmaceuticals", "box", 2.10, 5.99),
    ("VIT001", "Vitamin C Supplements", "Pharmaceuticals", "bottle", 4.50, 9.99),
    ("SOAP001", "Hand Soap", "Personal Care", "bottle", 1.10, 2.99),
    ("TOOTH001", "Toothpaste", "Personal Care", "tube", 0.90, 2.49),
    ("BREAD001", "Whole Grain Bread", "Food", "loaf", 1.00, 2.79),
    ("EGG001", "Farm Eggs", "Food", "dozen", 1.60, 3.49),
]
LOCATIONS = ["A-01", "A-02", "B-01", "B-02", "C-01"]


async def seed(create_schema: bool, rng: random.Random) -> None:
    settings = get_settings()
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    if create_schema:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        products = []
        for sku, name, category, unit, unit_cost, unit_price in DEMO_PRODUCTS:
            existing = (await db.execute(select(Product).where(Product.sku == sku))).scalar_one_or_none()
            if existing is not None:
                products.append(existing)
                continue
            product = Product(
                sku=sku,
                name=name,
                category=category,
                unit=unit,
                unit_cost=unit_cost,
                unit_price=unit_price,
            )
            db.add(product)
            await db.flush()
            for _ in range(rng.randint(1, 3)):
                db.add(
                    InventoryItem(
                        product_id=product.product_id,
                        quantity=rng.randint(5, 120),
                        location=rng.choice(LOCATIONS),
                        status="active",
                    )
                )
            products.append(product)
        await db.commit()

        service = ReplenishmentService(db, settings=settings, rng=rng)
        for product in products:
            ack = await service.initialize(product.product_id)
            print(f"  {product.sku:<10} arms+{ack.arms_created}  history+{ack.history_seeded}")

    await engine.dispose()
    print(f"✅ Seeded {len(products)} products")


def main():
    parser = argparse.ArgumentParser(description="Seed demo products and initialize the prediction engine")
    parser.add_argument("--create-schema", action="store_true", help="Create tables before seeding")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    asyncio.run(seed(args.create_schema, random.Random(args.seed)))


if __name__ == "__main__":
    main()
