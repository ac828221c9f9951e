#!/usr/bin/env python3
"""
Bandit cycle simulation — exercise the predict → observe → update loop.

Creates one product in a scratch database, initializes the engine, then runs
weekly cycles against a noisy demand generator and prints how each arm
scored.

Usage:
  python scripts/simulate_bandit_cycles.py
  python scripts/simulate_bandit_cycles.py --cycles 52 --mean-demand 120 --category Dairy
"""

from __future__ import annotations

import argparse
import asyncio
import os
import random
import sys
from datetime import datetime, timedelta

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import get_settings
from db.models import InventoryItem, Product
from db.session import Base
from ml.service import ReplenishmentService

HOLDING_RATE = 0.1  # holding cost per leftover unit, as a fraction of unit cost


def simulate_outcome(
    quantity: float,
    true_demand: float,
    unit_cost: float,
    unit_price: float,
) -> dict[str, float]:
    """Financials of one order cycle: sell what demand allows, hold the rest."""
    sold = min(quantity, true_demand)
    leftover = max(quantity - true_demand, 0.0)
    return {
        "order_cost": round(quantity * unit_cost, 2),
        "revenue": round(sold * unit_price, 2),
        "holding_cost": round(leftover * unit_cost * HOLDING_RATE, 2),
    }


async def run(args: argparse.Namespace) -> pd.DataFrame:
    rng = random.Random(args.seed)
    engine = create_async_engine(args.database_url, poolclass=StaticPool)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    now = datetime.utcnow()
    clock_state = {"now": now}

    def clock() -> datetime:
        return clock_state["now"]

    rows = []
    async with SessionLocal() as db:
        product = Product(
            sku=f"SIM-{rng.randint(1000, 9999)}",
            name="Simulated Product",
            category=args.category,
            unit_cost=args.unit_cost,
            unit_price=args.unit_price,
        )
        db.add(product)
        await db.flush()
        stock = InventoryItem(product_id=product.product_id, quantity=0, status="active")
        db.add(stock)
        await db.commit()

        service = ReplenishmentService(db, settings=get_settings(), rng=rng, clock=clock)
        await service.initialize(product.product_id)

        for cycle in range(args.cycles):
            prediction = await service.predict(product.product_id, lead_time_days=args.lead_time)
            true_demand = max(0.0, rng.gauss(args.mean_demand, args.mean_demand * args.noise))
            outcome = simulate_outcome(prediction.predicted_quantity, true_demand, args.unit_cost, args.unit_price)

            ack = await service.update_order(
                product.product_id,
                prediction.features["bandit_arm_id"],
                predicted_demand=prediction.predicted_quantity,
                actual_demand=round(true_demand, 2),
                lead_time_days=args.lead_time,
                **outcome,
            )
            rows.append(
                {
                    "cycle": cycle,
                    "arm": prediction.features["bandit_arm"],
                    "quantity": round(prediction.predicted_quantity, 1),
                    "actual": round(true_demand, 1),
                    "reward": ack.reward,
                }
            )
            clock_state["now"] += timedelta(days=7)

        arms = await service.list_arms(product.product_id)

    await engine.dispose()

    cycles = pd.DataFrame(rows)
    summary = pd.DataFrame([a.model_dump(include={"arm_type", "pull_count", "average_reward"}) for a in arms])
    print(f"\n  {'Arm':<14} {'Pulls':<8} {'Avg Reward':<12}")
    for _, arm in summary.iterrows():
        print(f"  {arm['arm_type']:<14} {arm['pull_count']:<8} {arm['average_reward']:<12.4f}")
    if not cycles.empty:
        print(f"\n  Mean reward (last 10 cycles): {cycles['reward'].tail(10).mean():.4f}")
    return cycles


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Simulate bandit predict/update cycles")
    parser.add_argument("--database-url", default="sqlite+aiosqlite:///:memory:")
    parser.add_argument("--cycles", type=int, default=26)
    parser.add_argument("--mean-demand", type=float, default=100.0)
    parser.add_argument("--noise", type=float, default=0.15, help="Demand std dev as a fraction of the mean")
    parser.add_argument("--category", default="Food")
    parser.add_argument("--unit-cost", type=float, default=2.5)
    parser.add_argument("--unit-price", type=float, default=4.0)
    parser.add_argument("--lead-time", type=int, default=settings.default_lead_time_days)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    print("=" * 60)
    print("  StockPilot Bandit Simulation")
    print("=" * 60)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
