"""
Store adapters — durable state behind the prediction engine.

The engine components hold no state between calls; every arm statistic,
order outcome and emitted prediction round-trips through these adapters.
Adapters only ``flush``. Committing is the caller's decision.

Arm initialization is the one write that must be race-safe: the
UNIQUE(product_id, arm_type) constraint makes the insert idempotent, so a
losing concurrent initializer inserts nothing instead of a second batch.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import case, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ARM_TYPES, BanditArm, InventoryItem, OrderHistory, OrderPrediction, Product

logger = structlog.get_logger()

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Stored order: creation time first, canonical arm order within one batch
_ARM_TYPE_RANK = case({arm_type: rank for rank, arm_type in enumerate(ARM_TYPES)}, value=BanditArm.arm_type)


class ArmStore:
    """Bandit arm rows, one per (product, arm_type)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_product(self, product_id: uuid.UUID) -> list[BanditArm]:
        result = await self.db.execute(
            select(BanditArm)
            .where(BanditArm.product_id == product_id)
            .order_by(BanditArm.created_at, _ARM_TYPE_RANK)
        )
        return list(result.scalars().all())

    async def count_for_product(self, product_id: uuid.UUID) -> int:
        result = await self.db.execute(select(func.count(BanditArm.arm_id)).where(BanditArm.product_id == product_id))
        return int(result.scalar() or 0)

    async def get(self, arm_id: uuid.UUID) -> BanditArm | None:
        return await self.db.get(BanditArm, arm_id)

    async def get_for_update(self, arm_id: uuid.UUID) -> BanditArm | None:
        """Load an arm with a row lock (no-op on dialects without FOR UPDATE)."""
        result = await self.db.execute(
            select(BanditArm).where(BanditArm.arm_id == arm_id).with_for_update().execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_missing(self, rows: Sequence[dict[str, Any]]) -> int:
        """
        Insert arm rows, skipping any (product_id, arm_type) that already exists.

        Returns the number of rows actually inserted.
        """
        if not rows:
            return 0

        dialect = self.db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        now = datetime.utcnow()
        values = [
            {
                "arm_id": uuid.uuid4(),
                "created_at": now,
                "updated_at": now,
                **row,
            }
            for row in rows
        ]

        if insert_fn is not None:
            stmt = insert_fn(BanditArm).values(values).on_conflict_do_nothing(
                index_elements=["product_id", "arm_type"]
            )
            result = await self.db.execute(stmt)
            inserted = max(result.rowcount or 0, 0)
        else:
            inserted = 0
            for value in values:
                try:
                    async with self.db.begin_nested():
                        self.db.add(BanditArm(**value))
                    inserted += 1
                except IntegrityError:
                    logger.info("arm_store.insert_conflict", product_id=str(value["product_id"]), arm_type=value["arm_type"])

        await self.db.flush()
        return inserted

    async def delete_many(self, arm_ids: Sequence[uuid.UUID]) -> int:
        if not arm_ids:
            return 0
        result = await self.db.execute(
            delete(BanditArm).where(BanditArm.arm_id.in_(list(arm_ids))).execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return int(result.rowcount or 0)

    async def save(self, arm: BanditArm) -> None:
        self.db.add(arm)
        await self.db.flush()


class HistoryStore:
    """Append-only order outcome records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_chronological(self, product_id: uuid.UUID) -> list[OrderHistory]:
        result = await self.db.execute(
            select(OrderHistory)
            .where(OrderHistory.product_id == product_id)
            .order_by(OrderHistory.order_date.asc(), OrderHistory.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_recent(self, product_id: uuid.UUID, limit: int) -> list[OrderHistory]:
        """Newest first."""
        result = await self.db.execute(
            select(OrderHistory)
            .where(OrderHistory.product_id == product_id)
            .order_by(OrderHistory.order_date.desc(), OrderHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self, product_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(OrderHistory.history_id)).where(OrderHistory.product_id == product_id)
        )
        return int(result.scalar() or 0)

    async def append(self, record: OrderHistory) -> OrderHistory:
        self.db.add(record)
        await self.db.flush()
        return record

    async def append_many(self, records: Sequence[OrderHistory]) -> int:
        self.db.add_all(list(records))
        await self.db.flush()
        return len(records)


class PredictionStore:
    """Emitted recommendations, kept for audit and analytics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, prediction: OrderPrediction) -> OrderPrediction:
        self.db.add(prediction)
        await self.db.flush()
        return prediction

    async def list_recent(self, product_id: uuid.UUID, limit: int) -> list[OrderPrediction]:
        result = await self.db.execute(
            select(OrderPrediction)
            .where(OrderPrediction.product_id == product_id)
            .order_by(OrderPrediction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self, product_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(OrderPrediction.prediction_id)).where(OrderPrediction.product_id == product_id)
        )
        return int(result.scalar() or 0)


class ProductStore:
    """Catalog lookups the boundary service needs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, product_id: uuid.UUID) -> Product | None:
        return await self.db.get(Product, product_id)

    async def current_inventory(self, product_id: uuid.UUID) -> int:
        """Sum of active inventory on hand (0 when nothing is stocked)."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryItem.quantity), 0)).where(
                InventoryItem.product_id == product_id,
                InventoryItem.status == "active",
            )
        )
        return int(result.scalar() or 0)
