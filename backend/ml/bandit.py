"""
Bandit Engine — epsilon-greedy selection over four reorder strategies.

Every product owns exactly one arm per strategy type:

  conservative  — deep buffers, damped demand, long lead-time stretch
  aggressive    — thin buffers, inflated demand, nominal lead time
  balanced      — middle of the road
  seasonal      — balanced-plus, flagged for seasonal adjustment

Selection:
  r ~ U(0, 1)
  r <  ε → uniformly random arm  (exploration)
  r >= ε → highest average reward, first in stored order on ties  (exploitation)

Update:
  pull_count += 1, total_reward += r, average = total / pull_count, history.append(r)

Arm rows live in ArmStore; this class holds only immutable configuration.
"""

from __future__ import annotations

import random
import uuid
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import structlog

from core.config import Settings
from db.models import ARM_TYPES, BanditArm
from db.stores import ArmStore
from ml.reward import sanitize_reward

logger = structlog.get_logger()


@dataclass(frozen=True)
class ArmParameters:
    """Fixed tuning parameters for one strategy type. Never mutated."""

    safety_stock: float
    reorder_point: float
    lead_time_buffer: float
    demand_multiplier: float
    seasonal_adjustment: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


ARM_PARAMETERS: dict[str, ArmParameters] = {
    "conservative": ArmParameters(safety_stock=0.25, reorder_point=0.35, lead_time_buffer=1.5, demand_multiplier=0.9),
    "aggressive": ArmParameters(safety_stock=0.08, reorder_point=0.15, lead_time_buffer=1.0, demand_multiplier=1.25),
    "balanced": ArmParameters(safety_stock=0.2, reorder_point=0.3, lead_time_buffer=1.2, demand_multiplier=1.2),
    "seasonal": ArmParameters(
        safety_stock=0.2,
        reorder_point=0.3,
        lead_time_buffer=1.3,
        demand_multiplier=1.12,
        seasonal_adjustment=True,
    ),
}


def get_arm_parameters(arm_type: str) -> ArmParameters:
    """Look up the fixed parameter set for an arm type."""
    try:
        return ARM_PARAMETERS[arm_type]
    except KeyError:
        raise ValueError(f"Unknown arm type: {arm_type!r}") from None


@dataclass(frozen=True)
class BanditConfig:
    exploration_rate: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> BanditConfig:
        return cls(exploration_rate=settings.bandit_exploration_rate)


class ArmLike(Protocol):
    arm_id: uuid.UUID
    arm_type: str
    average_reward: float


def split_duplicate_arms(arms: Sequence[ArmLike]) -> tuple[list[ArmLike], list[ArmLike]]:
    """
    Partition arms into (keep, drop): the first arm seen per type is kept.

    ``arms`` must already be in stored (creation) order.
    """
    keep: list[ArmLike] = []
    drop: list[ArmLike] = []
    seen: set[str] = set()
    for arm in arms:
        if arm.arm_type in seen:
            drop.append(arm)
        else:
            seen.add(arm.arm_type)
            keep.append(arm)
    return keep, drop


def choose_arm(arms: Sequence[ArmLike], exploration_rate: float, rng: random.Random) -> tuple[ArmLike, str]:
    """Epsilon-greedy pick. Returns the arm and ``"explore"`` or ``"exploit"``."""
    if not arms:
        raise ValueError("choose_arm requires at least one arm")

    if rng.random() < exploration_rate:
        return arms[rng.randrange(len(arms))], "explore"

    best = arms[0]
    for arm in arms[1:]:
        if arm.average_reward > best.average_reward:
            best = arm
    return best, "exploit"


class BanditEngine:
    """Arm lifecycle: initialize, select, reward, repair."""

    def __init__(
        self,
        arm_store: ArmStore,
        config: BanditConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.arms = arm_store
        self.config = config or BanditConfig()
        self.rng = rng or random.Random()

    async def initialize_arms(self, product_id: uuid.UUID) -> int:
        """
        Create the four strategy arms for a product if they don't exist yet.

        Idempotent and safe under concurrent callers: rows that already exist
        for a (product, arm_type) are left untouched. Returns the number of
        arms created.
        """
        rows = [
            {
                "product_id": product_id,
                "arm_type": arm_type,
                "parameters": ARM_PARAMETERS[arm_type].as_dict(),
                "reward_history": [],
                "pull_count": 0,
                "total_reward": 0.0,
                "average_reward": 0.0,
                "exploration_rate": self.config.exploration_rate,
            }
            for arm_type in ARM_TYPES
        ]
        created = await self.arms.insert_missing(rows)
        if created:
            logger.info("bandit.arms_initialized", product_id=str(product_id), created=created)
        else:
            logger.debug("bandit.arms_already_initialized", product_id=str(product_id))
        return created

    async def get_arms(self, product_id: uuid.UUID) -> list[BanditArm]:
        """Arms for a product in stored order, initializing them lazily."""
        arms = await self.arms.list_for_product(product_id)
        if not arms:
            await self.initialize_arms(product_id)
            arms = await self.arms.list_for_product(product_id)
        return arms

    async def select_arm(self, product_id: uuid.UUID) -> BanditArm:
        arms = await self.get_arms(product_id)
        arm, mode = choose_arm(arms, self.config.exploration_rate, self.rng)
        logger.debug(
            "bandit.arm_selected",
            product_id=str(product_id),
            arm_type=arm.arm_type,
            mode=mode,
            average_reward=arm.average_reward,
        )
        return arm

    async def update_reward(self, arm_id: uuid.UUID, reward: float) -> BanditArm | None:
        """
        Fold one reward into an arm's running statistics.

        Non-finite rewards count as 0. Unknown arm ids are a logged no-op
        (returns None): an order may reference an arm removed by dedupe.
        """
        arm = await self.arms.get_for_update(arm_id)
        if arm is None:
            logger.warning("bandit.arm_missing", arm_id=str(arm_id))
            return None

        safe_reward = sanitize_reward(reward)
        if safe_reward != reward:
            logger.warning("bandit.reward_sanitized", arm_id=str(arm_id), raw_reward=str(reward))

        pull_count = (arm.pull_count or 0) + 1
        total_reward = (arm.total_reward or 0.0) + safe_reward

        arm.pull_count = pull_count
        arm.total_reward = total_reward
        arm.average_reward = total_reward / pull_count
        # Reassign so the JSON column is marked dirty
        arm.reward_history = [*(arm.reward_history or []), safe_reward]
        await self.arms.save(arm)

        logger.info(
            "bandit.reward_applied",
            arm_id=str(arm_id),
            arm_type=arm.arm_type,
            reward=round(safe_reward, 4),
            pull_count=pull_count,
            average_reward=round(arm.average_reward, 4),
        )
        return arm

    async def repair_duplicates(self, product_id: uuid.UUID) -> int:
        """
        Keep the earliest arm of each type and delete the rest.

        Idempotent; returns the number of arms removed.
        """
        arms = await self.arms.list_for_product(product_id)
        _, drop = split_duplicate_arms(arms)
        if not drop:
            return 0
        removed = await self.arms.delete_many([arm.arm_id for arm in drop])
        logger.warning("bandit.duplicates_removed", product_id=str(product_id), removed=removed)
        return removed
