"""
Replenishment Service — the prediction engine's outer boundary.

Wires the stores and engine components around one AsyncSession and
exposes the operations callers use:

  predict          → OrderPrediction for current stock (persisted for audit)
  list_arms        → arms for a product (lazy init, duplicate repair)
  forecast         → demand forecast N days out
  update_order     → feed a realized order back (stale arm ids are acknowledged, not errors)
  history          → order outcomes, newest first
  list_predictions → emitted predictions, newest first
  analytics        → accuracy / confidence / arm summaries
  initialize       → arms + synthetic cold-start history (idempotent)

Mutating operations commit; store failures propagate to the caller.
"""

from __future__ import annotations

import math
import random
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import OrderHistory, OrderPrediction, Product
from db.stores import ArmStore, HistoryStore, PredictionStore, ProductStore
from ml.bandit import BanditConfig, BanditEngine
from ml.demand import DemandForecaster, ForecastConfig, season_for
from ml.hybrid import HybridPredictor, PredictorConfig
from ml.schemas import (
    AnalyticsResponse,
    ArmResponse,
    ArmSummary,
    ForecastResponse,
    InitializeAck,
    OrderHistoryResponse,
    OrderUpdateAck,
    PredictionResponse,
)

logger = structlog.get_logger()

EXPECTED_ARM_COUNT = 4
RECENT_HISTORY_PREVIEW = 5
SYNTHETIC_SOURCE = "synthetic_seed"


class ProductNotFoundError(LookupError):
    def __init__(self, product_id: uuid.UUID | str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def generate_synthetic_history(
    product_id: uuid.UUID,
    weeks: int,
    now: datetime,
    rng: random.Random,
) -> list[OrderHistory]:
    """
    Weekly cold-start records starting 90 days back.

    Demand ~ U(100, 150) × (1 + 0.2·sin(2π·i/weeks)); order quantity carries a
    ±20% prediction error. Rows are tagged ``is_synthetic`` so they can be
    told apart from real outcomes.
    """
    start = now - timedelta(days=90)
    records = []
    for i in range(weeks):
        order_date = start + timedelta(days=7 * i)
        base_demand = 100 + rng.random() * 50
        seasonal_adjustment = 1 + 0.2 * math.sin((i / weeks) * 2 * math.pi)
        actual_demand = round(base_demand * seasonal_adjustment)
        records.append(
            OrderHistory(
                product_id=product_id,
                order_date=order_date,
                order_quantity=round(actual_demand * (0.8 + rng.random() * 0.4)),
                actual_demand=actual_demand,
                lead_time_days=14,
                cost=actual_demand * 2.5,
                revenue=actual_demand * 4.0,
                holding_cost=0.0,
                profit=actual_demand * 1.5,
                seasonality=season_for(order_date),
                external_factors={"source": SYNTHETIC_SOURCE},
                is_synthetic=True,
            )
        )
    return records


def order_accuracy(records: list[OrderHistory]) -> float:
    """Mean of 1 − |ordered − actual| / actual, skipping zero-demand rows."""
    scores = [
        1 - abs(r.order_quantity - r.actual_demand) / r.actual_demand
        for r in records
        if r.actual_demand
    ]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


class ReplenishmentService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.clock = clock or datetime.utcnow

        self.products = ProductStore(db)
        self.arm_store = ArmStore(db)
        self.history_store = HistoryStore(db)
        self.prediction_store = PredictionStore(db)

        self.bandit = BanditEngine(self.arm_store, BanditConfig.from_settings(self.settings), rng=self.rng)
        self.forecaster = DemandForecaster(self.history_store, ForecastConfig.from_settings(self.settings))
        self.predictor = HybridPredictor(
            self.bandit,
            self.forecaster,
            self.history_store,
            PredictorConfig.from_settings(self.settings),
            clock=self.clock,
        )

    async def _require_product(self, product_id: uuid.UUID | str) -> Product:
        try:
            pid = _as_uuid(product_id)
        except ValueError:
            raise ProductNotFoundError(product_id) from None
        product = await self.products.get(pid)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    # ── Predictions ─────────────────────────────────────────────────────

    async def predict(self, product_id: uuid.UUID | str, lead_time_days: int | None = None) -> PredictionResponse:
        product = await self._require_product(product_id)
        if lead_time_days is None:
            lead_time_days = self.settings.default_lead_time_days

        current_stock = await self.products.current_inventory(product.product_id)
        recommendation = await self.predictor.predict_order(
            product.product_id,
            current_stock,
            lead_time_days,
            category=product.category,
        )

        row = await self.prediction_store.record(
            OrderPrediction(
                product_id=product.product_id,
                predicted_quantity=recommendation.predicted_quantity,
                predicted_order_date=recommendation.predicted_order_date,
                confidence=recommendation.confidence,
                algorithm=recommendation.algorithm,
                features=recommendation.features,
                created_at=self.clock(),
            )
        )
        await self.db.commit()

        return PredictionResponse.model_validate(row).model_copy(update={"current_stock": current_stock})

    async def forecast(self, product_id: uuid.UUID | str, days: int | None = None) -> ForecastResponse:
        product = await self._require_product(product_id)
        if days is None:
            days = self.settings.forecast_horizon_days

        forecast_date = self.clock() + timedelta(days=days)
        estimate = await self.forecaster.predict_demand(product.product_id, forecast_date, product.category)
        return ForecastResponse(
            product_id=product.product_id,
            date=forecast_date,
            predicted_demand=estimate.predicted_demand,
            confidence=estimate.confidence,
            method=estimate.method,
        )

    async def list_predictions(self, product_id: uuid.UUID | str, limit: int = 20) -> list[PredictionResponse]:
        product = await self._require_product(product_id)
        rows = await self.prediction_store.list_recent(product.product_id, limit)
        return [PredictionResponse.model_validate(row) for row in rows]

    # ── Arms ────────────────────────────────────────────────────────────

    async def list_arms(self, product_id: uuid.UUID | str) -> list[ArmResponse]:
        """Arms ranked by average reward; initializes or repairs as needed."""
        product = await self._require_product(product_id)
        pid = product.product_id

        arms = await self.bandit.get_arms(pid)
        if len(arms) > EXPECTED_ARM_COUNT:
            await self.bandit.repair_duplicates(pid)
            arms = await self.arm_store.list_for_product(pid)
        await self.db.commit()

        ranked = sorted(arms, key=lambda arm: arm.average_reward, reverse=True)
        return [ArmResponse.model_validate(arm) for arm in ranked]

    async def repair_arms(self, product_id: uuid.UUID | str) -> int:
        product = await self._require_product(product_id)
        removed = await self.bandit.repair_duplicates(product.product_id)
        await self.db.commit()
        return removed

    # ── Feedback ────────────────────────────────────────────────────────

    async def update_order(
        self,
        product_id: uuid.UUID | str,
        arm_id: uuid.UUID | str,
        predicted_demand: float,
        actual_demand: float,
        order_cost: float,
        revenue: float,
        holding_cost: float,
        lead_time_days: int | None = None,
    ) -> OrderUpdateAck:
        product = await self._require_product(product_id)
        try:
            aid = _as_uuid(arm_id)
        except ValueError:
            aid = None

        arm = await self.arm_store.get(aid) if aid is not None else None
        if arm is None:
            logger.warning("service.update_order_stale_arm", product_id=str(product.product_id), arm_id=str(arm_id))
            return OrderUpdateAck(applied=False, message="Arm not found, skipping update")
        if arm.product_id != product.product_id:
            logger.warning(
                "service.update_order_foreign_arm",
                product_id=str(product.product_id),
                arm_id=str(arm_id),
                arm_product_id=str(arm.product_id),
            )
            return OrderUpdateAck(applied=False, message="Arm belongs to another product, skipping update")

        outcome = await self.predictor.update_after_order(
            product.product_id,
            aid,
            predicted_demand,
            actual_demand,
            order_cost,
            revenue,
            holding_cost,
            lead_time_days=lead_time_days,
        )
        await self.db.commit()
        return OrderUpdateAck(applied=True, message="Order updated successfully", reward=outcome.reward)

    # ── Reads ───────────────────────────────────────────────────────────

    async def history(self, product_id: uuid.UUID | str, limit: int | None = None) -> list[OrderHistoryResponse]:
        product = await self._require_product(product_id)
        if limit is None:
            limit = self.settings.history_page_size
        rows = await self.history_store.list_recent(product.product_id, limit)
        return [OrderHistoryResponse.model_validate(row) for row in rows]

    async def analytics(self, product_id: uuid.UUID | str) -> AnalyticsResponse:
        product = await self._require_product(product_id)
        pid = product.product_id
        window = self.settings.analytics_window

        total_orders = await self.history_store.count(pid)
        total_predictions = await self.prediction_store.count(pid)
        arms = await self.arm_store.list_for_product(pid)
        recent_history = await self.history_store.list_recent(pid, window)
        recent_predictions = await self.prediction_store.list_recent(pid, window)

        accuracy = order_accuracy(recent_history)
        avg_confidence = (
            sum(p.confidence for p in recent_predictions) / len(recent_predictions) if recent_predictions else 0.0
        )

        return AnalyticsResponse(
            product_id=pid,
            total_orders=total_orders,
            total_predictions=total_predictions,
            accuracy=round(accuracy, 2),
            avg_confidence=round(avg_confidence, 2),
            arm_summaries=[ArmSummary.model_validate(arm) for arm in arms],
            recent_history=[OrderHistoryResponse.model_validate(r) for r in recent_history[:RECENT_HISTORY_PREVIEW]],
        )

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def initialize(self, product_id: uuid.UUID | str) -> InitializeAck:
        """Create arms and seed synthetic history; a no-op for parts that already exist."""
        product = await self._require_product(product_id)
        pid = product.product_id

        arms_created = await self.bandit.initialize_arms(pid)

        seeded = 0
        if await self.history_store.count(pid) == 0:
            records = generate_synthetic_history(pid, self.settings.synthetic_history_weeks, self.clock(), self.rng)
            seeded = await self.history_store.append_many(records)
            logger.info("service.history_seeded", product_id=str(pid), records=seeded)

        await self.db.commit()
        logger.info("service.initialized", product_id=str(pid), arms_created=arms_created, history_seeded=seeded)
        return InitializeAck(
            arms_created=arms_created,
            history_seeded=seeded,
            message="ML system initialized successfully",
        )
