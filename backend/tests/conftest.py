"""
Test Configuration — Fixtures for async DB sessions and seeded catalog data.

Each test gets its own in-memory SQLite database (StaticPool keeps the single
connection alive for the life of the engine), so commits inside service code
never leak between tests.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import random
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import Settings
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FIXED_NOW = datetime(2026, 7, 15, 12, 0, 0)


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    """Engine settings with exploration disabled so selection is deterministic."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        app_env="test",
        bandit_exploration_rate=0.0,
    )


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with a dairy product carrying active and expired stock."""
    from db.models import InventoryItem, Product

    dairy = Product(
        sku="MILK001",
        name="Organic Milk",
        category="Dairy",
        unit="L",
        unit_cost=1.20,
        unit_price=2.49,
    )
    pharma = Product(
        sku="ASP001",
        name="Aspirin 500mg",
        category="Pharmaceuticals",
        unit="box",
        unit_cost=2.10,
        unit_price=5.99,
    )
    test_db.add_all([dairy, pharma])
    await test_db.flush()

    test_db.add_all(
        [
            InventoryItem(product_id=dairy.product_id, quantity=30, status="active", location="A-01"),
            InventoryItem(product_id=dairy.product_id, quantity=12, status="active", location="A-02"),
            InventoryItem(product_id=dairy.product_id, quantity=50, status="expired", location="A-03"),
        ]
    )
    await test_db.commit()

    return {"dairy": dairy, "pharma": pharma}


async def add_history(db, product_id: uuid.UUID, demands, start: datetime | None = None, step_days: int = 7):
    """Append chronological order_history rows with the given actual demands."""
    from db.models import OrderHistory
    from ml.demand import season_for

    start = start or FIXED_NOW - timedelta(days=step_days * len(demands))
    rows = []
    for i, demand in enumerate(demands):
        order_date = start + timedelta(days=step_days * i)
        rows.append(
            OrderHistory(
                product_id=product_id,
                order_date=order_date,
                order_quantity=demand,
                actual_demand=demand,
                lead_time_days=14,
                cost=demand * 2.5,
                revenue=demand * 4.0,
                holding_cost=0.0,
                profit=demand * 1.5,
                seasonality=season_for(order_date),
                external_factors={},
            )
        )
    db.add_all(rows)
    await db.commit()
    return rows
