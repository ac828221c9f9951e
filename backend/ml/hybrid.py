"""
Hybrid Predictor — demand forecast × bandit strategy → order recommendation.

  adjusted_demand = base_demand × demand_multiplier
  safety_stock    = adjusted_demand × safety_stock_fraction
  reorder_point   = adjusted_demand × reorder_point_fraction
  reorder_level   = reorder_point + safety_stock

  order only when current_inventory < reorder_level:
    quantity = max(0, adjusted_demand + safety_stock − current_inventory)
  below safety stock with a zero quantity:
    quantity = max(10, adjusted_demand × 0.5)

  order_date = now + lead_time_days × lead_time_buffer
  confidence = (regression_confidence + bandit_confidence) / 2

After the order cycle completes, update_after_order scores the outcome,
feeds the reward to the chosen arm and appends an order_history row.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from core.config import Settings
from db.models import OrderHistory
from db.stores import HistoryStore
from ml.bandit import ArmParameters, BanditEngine, get_arm_parameters
from ml.demand import DemandEstimate, DemandForecaster, season_for
from ml.reward import calculate_reward

logger = structlog.get_logger()

ALGORITHM = "hybrid"
MIN_FORCED_ORDER = 10.0
FORCED_ORDER_FRACTION = 0.5


@dataclass(frozen=True)
class PredictorConfig:
    bandit_confidence: float = 0.8
    default_lead_time_days: int = 14

    @classmethod
    def from_settings(cls, settings: Settings) -> PredictorConfig:
        return cls(
            bandit_confidence=settings.bandit_confidence,
            default_lead_time_days=settings.default_lead_time_days,
        )


@dataclass(frozen=True)
class OrderPlan:
    """Quantities derived from one demand figure under one strategy."""

    adjusted_demand: float
    safety_stock: float
    reorder_point: float
    reorder_level: float
    order_quantity: float
    forced_minimum: bool


def plan_order(base_demand: float, current_inventory: float, params: ArmParameters) -> OrderPlan:
    adjusted_demand = base_demand * params.demand_multiplier
    safety_stock = adjusted_demand * params.safety_stock
    reorder_point = adjusted_demand * params.reorder_point
    reorder_level = reorder_point + safety_stock

    quantity = 0.0
    if current_inventory < reorder_level:
        quantity = max(0.0, adjusted_demand + safety_stock - current_inventory)

    forced = False
    if current_inventory < safety_stock and quantity == 0:
        quantity = max(MIN_FORCED_ORDER, adjusted_demand * FORCED_ORDER_FRACTION)
        forced = True

    return OrderPlan(
        adjusted_demand=adjusted_demand,
        safety_stock=safety_stock,
        reorder_point=reorder_point,
        reorder_level=reorder_level,
        order_quantity=quantity,
        forced_minimum=forced,
    )


@dataclass(frozen=True)
class OrderRecommendation:
    product_id: uuid.UUID
    predicted_quantity: float
    predicted_order_date: datetime
    confidence: float
    algorithm: str = ALGORITHM
    features: dict[str, Any] = field(default_factory=dict)

    @property
    def arm_id(self) -> str:
        return self.features["bandit_arm_id"]


@dataclass(frozen=True)
class OrderOutcome:
    reward: float
    arm_updated: bool
    history_id: uuid.UUID


class HybridPredictor:
    def __init__(
        self,
        bandit: BanditEngine,
        forecaster: DemandForecaster,
        history_store: HistoryStore,
        config: PredictorConfig | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.bandit = bandit
        self.forecaster = forecaster
        self.history = history_store
        self.config = config or PredictorConfig()
        self.clock = clock

    async def predict_order(
        self,
        product_id: uuid.UUID,
        current_inventory: float,
        lead_time_days: int | None = None,
        category: str | None = None,
    ) -> OrderRecommendation:
        """Recommend how much to order and when."""
        if lead_time_days is None:
            lead_time_days = self.config.default_lead_time_days
        now = self.clock()

        forecast_date = now + timedelta(days=lead_time_days)
        estimate: DemandEstimate = await self.forecaster.predict_demand(product_id, forecast_date, category)

        arm = await self.bandit.select_arm(product_id)
        params = get_arm_parameters(arm.arm_type)

        plan = plan_order(estimate.predicted_demand, current_inventory, params)
        order_date = now + timedelta(days=lead_time_days * params.lead_time_buffer)
        confidence = (estimate.confidence + self.config.bandit_confidence) / 2

        features = {
            "regression": estimate.as_dict(),
            "bandit_arm": arm.arm_type,
            "bandit_arm_id": str(arm.arm_id),
            "arm_parameters": params.as_dict(),
            "adjusted_demand": plan.adjusted_demand,
            "safety_stock": plan.safety_stock,
            "reorder_point": plan.reorder_point,
            "reorder_level": plan.reorder_level,
            "forced_minimum": plan.forced_minimum,
            "current_inventory": current_inventory,
            "lead_time": lead_time_days,
        }

        logger.info(
            "hybrid.prediction",
            product_id=str(product_id),
            arm_type=arm.arm_type,
            method=estimate.method,
            quantity=round(plan.order_quantity, 2),
            confidence=round(confidence, 3),
            forced_minimum=plan.forced_minimum,
        )

        return OrderRecommendation(
            product_id=product_id,
            predicted_quantity=plan.order_quantity,
            predicted_order_date=order_date,
            confidence=confidence,
            features=features,
        )

    async def update_after_order(
        self,
        product_id: uuid.UUID,
        arm_id: uuid.UUID,
        predicted_demand: float,
        actual_demand: float,
        order_cost: float,
        revenue: float,
        holding_cost: float,
        lead_time_days: int | None = None,
    ) -> OrderOutcome:
        """Score a completed order, reward its arm and record the outcome."""
        reward = calculate_reward(predicted_demand, actual_demand, order_cost, revenue, holding_cost)
        arm = await self.bandit.update_reward(arm_id, reward)

        now = self.clock()
        record = OrderHistory(
            product_id=product_id,
            order_date=now,
            order_quantity=predicted_demand,
            actual_demand=actual_demand,
            lead_time_days=self.config.default_lead_time_days if lead_time_days is None else lead_time_days,
            cost=order_cost,
            revenue=revenue,
            holding_cost=holding_cost,
            profit=revenue - order_cost - holding_cost,
            seasonality=season_for(now),
            external_factors={},
            is_synthetic=False,
        )
        await self.history.append(record)

        logger.info(
            "hybrid.order_recorded",
            product_id=str(product_id),
            arm_id=str(arm_id),
            reward=round(reward, 4),
            arm_updated=arm is not None,
        )
        return OrderOutcome(reward=reward, arm_updated=arm is not None, history_id=record.history_id)
