"""
StockPilot Database Models

5 tables for the replenishment prediction engine.

Tables:
  Catalog:
  1. products            - Product catalog (category drives cold-start demand)
  2. inventory_items     - Stock on hand per lot/location

  Prediction Engine:
  3. bandit_arms         - One reorder strategy per (product, arm_type)
  4. order_history       - Realized order outcomes (append-only)
  5. order_predictions   - Emitted recommendations (audit trail)
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

ARM_TYPES = ("conservative", "aggressive", "balanced", "seasonal")
SEASONS = ("spring", "summer", "fall", "winter")

# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    description = Column(Text)
    unit = Column(String(20))
    unit_cost = Column(Float)
    unit_price = Column(Float)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_category", "category"),
        CheckConstraint("unit_cost >= 0", name="ck_product_cost_positive"),
        CheckConstraint("unit_price >= 0", name="ck_product_price_positive"),
    )

    inventory_items = relationship("InventoryItem", back_populates="product", cascade="all, delete-orphan")
    bandit_arms = relationship("BanditArm", back_populates="product", cascade="all, delete-orphan")


# ─── 2. Inventory Items ────────────────────────────────────────────────────


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    location = Column(String(100))
    status = Column(String(20), nullable=False, default="active")
    expires_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_items_product_status", "product_id", "status"),
        CheckConstraint("quantity >= 0", name="ck_inventory_item_qty_positive"),
        CheckConstraint(
            "status IN ('active', 'reserved', 'expired', 'depleted')",
            name="ck_inventory_item_status",
        ),
    )

    product = relationship("Product", back_populates="inventory_items")


# ─── 3. Bandit Arms ────────────────────────────────────────────────────────


class BanditArm(Base):
    __tablename__ = "bandit_arms"

    arm_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    arm_type = Column(String(20), nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)  # snapshot of the fixed strategy parameters
    reward_history = Column(JSON, nullable=False, default=list)
    pull_count = Column(Integer, nullable=False, default=0)
    total_reward = Column(Float, nullable=False, default=0.0)
    average_reward = Column(Float, nullable=False, default=0.0)
    exploration_rate = Column(Float, nullable=False, default=0.1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "arm_type", name="uq_bandit_arm_product_type"),
        Index("ix_bandit_arms_product", "product_id"),
        CheckConstraint(
            "arm_type IN ('conservative', 'aggressive', 'balanced', 'seasonal')",
            name="ck_bandit_arm_type",
        ),
        CheckConstraint("pull_count >= 0", name="ck_bandit_arm_pulls_positive"),
        CheckConstraint("exploration_rate >= 0 AND exploration_rate <= 1", name="ck_bandit_arm_exploration_range"),
    )

    product = relationship("Product", back_populates="bandit_arms")


# ─── 4. Order History ──────────────────────────────────────────────────────


class OrderHistory(Base):
    __tablename__ = "order_history"

    history_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    order_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    order_quantity = Column(Float, nullable=False)  # quantity acted on (the prediction)
    actual_demand = Column(Float, nullable=False)
    lead_time_days = Column(Integer, nullable=False, default=14)
    cost = Column(Float, nullable=False, default=0.0)
    revenue = Column(Float, nullable=False, default=0.0)
    holding_cost = Column(Float, nullable=False, default=0.0)
    profit = Column(Float, nullable=False, default=0.0)
    seasonality = Column(String(10), nullable=False)
    external_factors = Column(JSON, nullable=False, default=dict)
    is_synthetic = Column(Boolean, nullable=False, default=False)  # cold-start seed rows
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_order_history_product_date", "product_id", "order_date"),
        CheckConstraint("actual_demand >= 0", name="ck_order_history_demand_positive"),
        CheckConstraint(
            "seasonality IN ('spring', 'summer', 'fall', 'winter')",
            name="ck_order_history_season",
        ),
    )


# ─── 5. Order Predictions ──────────────────────────────────────────────────


class OrderPrediction(Base):
    __tablename__ = "order_predictions"

    prediction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    predicted_quantity = Column(Float, nullable=False)
    predicted_order_date = Column(DateTime, nullable=False)
    confidence = Column(Float, nullable=False)
    algorithm = Column(String(30), nullable=False, default="hybrid")
    features = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_order_predictions_product_created", "product_id", "created_at"),
        CheckConstraint("predicted_quantity >= 0", name="ck_prediction_quantity_positive"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_prediction_confidence_range"),
    )
