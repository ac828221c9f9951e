"""
Boundary schemas — shapes returned by ReplenishmentService.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ArmResponse(BaseModel):
    arm_id: UUID
    product_id: UUID
    arm_type: str
    parameters: dict[str, Any]
    reward_history: list[float]
    pull_count: int
    total_reward: float
    average_reward: float
    exploration_rate: float
    created_at: datetime

    model_config = {"from_attributes": True}


class ArmSummary(BaseModel):
    arm_type: str
    pull_count: int
    average_reward: float
    exploration_rate: float

    model_config = {"from_attributes": True}


class OrderHistoryResponse(BaseModel):
    history_id: UUID
    product_id: UUID
    order_date: datetime
    order_quantity: float
    actual_demand: float
    lead_time_days: int
    cost: float
    revenue: float
    holding_cost: float
    profit: float
    seasonality: str
    external_factors: dict[str, Any]
    is_synthetic: bool

    model_config = {"from_attributes": True}


class PredictionResponse(BaseModel):
    prediction_id: UUID
    product_id: UUID
    predicted_quantity: float
    predicted_order_date: datetime
    confidence: float = Field(ge=0.0, le=1.0)
    algorithm: str
    features: dict[str, Any]
    current_stock: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ForecastResponse(BaseModel):
    product_id: UUID
    date: datetime
    predicted_demand: float
    confidence: float
    method: str


class OrderUpdateAck(BaseModel):
    success: bool = True
    applied: bool
    message: str
    reward: float | None = None


class InitializeAck(BaseModel):
    success: bool = True
    arms_created: int
    history_seeded: int
    message: str


class AnalyticsResponse(BaseModel):
    product_id: UUID
    total_orders: int
    total_predictions: int
    accuracy: float
    avg_confidence: float
    arm_summaries: list[ArmSummary]
    recent_history: list[OrderHistoryResponse]
