"""
Initial schema - catalog + prediction engine (5 tables)

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("description", sa.Text),
        sa.Column("unit", sa.String(20)),
        sa.Column("unit_cost", sa.Float),
        sa.Column("unit_price", sa.Float),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("unit_cost >= 0", name="ck_product_cost_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_product_price_positive"),
    )
    op.create_index("ix_products_category", "products", ["category"])

    # 2. Inventory items
    op.create_table(
        "inventory_items",
        sa.Column("item_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("location", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_item_qty_positive"),
        sa.CheckConstraint(
            "status IN ('active', 'reserved', 'expired', 'depleted')",
            name="ck_inventory_item_status",
        ),
    )
    op.create_index("ix_inventory_items_product_status", "inventory_items", ["product_id", "status"])

    # 3. Bandit arms — one row per (product, arm_type)
    op.create_table(
        "bandit_arms",
        sa.Column("arm_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("arm_type", sa.String(20), nullable=False),
        sa.Column("parameters", sa.JSON, nullable=False),
        sa.Column("reward_history", sa.JSON, nullable=False),
        sa.Column("pull_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_reward", sa.Float, nullable=False, server_default="0"),
        sa.Column("average_reward", sa.Float, nullable=False, server_default="0"),
        sa.Column("exploration_rate", sa.Float, nullable=False, server_default="0.1"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("product_id", "arm_type", name="uq_bandit_arm_product_type"),
        sa.CheckConstraint(
            "arm_type IN ('conservative', 'aggressive', 'balanced', 'seasonal')",
            name="ck_bandit_arm_type",
        ),
        sa.CheckConstraint("pull_count >= 0", name="ck_bandit_arm_pulls_positive"),
        sa.CheckConstraint(
            "exploration_rate >= 0 AND exploration_rate <= 1",
            name="ck_bandit_arm_exploration_range",
        ),
    )
    op.create_index("ix_bandit_arms_product", "bandit_arms", ["product_id"])

    # 4. Order history (append-only)
    op.create_table(
        "order_history",
        sa.Column("history_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("order_date", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("order_quantity", sa.Float, nullable=False),
        sa.Column("actual_demand", sa.Float, nullable=False),
        sa.Column("lead_time_days", sa.Integer, nullable=False, server_default="14"),
        sa.Column("cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("revenue", sa.Float, nullable=False, server_default="0"),
        sa.Column("holding_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("profit", sa.Float, nullable=False, server_default="0"),
        sa.Column("seasonality", sa.String(10), nullable=False),
        sa.Column("external_factors", sa.JSON, nullable=False),
        sa.Column("is_synthetic", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("actual_demand >= 0", name="ck_order_history_demand_positive"),
        sa.CheckConstraint(
            "seasonality IN ('spring', 'summer', 'fall', 'winter')",
            name="ck_order_history_season",
        ),
    )
    op.create_index("ix_order_history_product_date", "order_history", ["product_id", "order_date"])

    # 5. Order predictions
    op.create_table(
        "order_predictions",
        sa.Column("prediction_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("predicted_quantity", sa.Float, nullable=False),
        sa.Column("predicted_order_date", sa.DateTime, nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("algorithm", sa.String(30), nullable=False, server_default="hybrid"),
        sa.Column("features", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("predicted_quantity >= 0", name="ck_prediction_quantity_positive"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_prediction_confidence_range"),
    )
    op.create_index("ix_order_predictions_product_created", "order_predictions", ["product_id", "created_at"])


def downgrade() -> None:
    tables = [
        "order_predictions",
        "order_history",
        "bandit_arms",
        "inventory_items",
        "products",
    ]
    for table in tables:
        op.drop_table(table)
