"""
Tests for the Bandit Engine.

Covers:
  - Fixed parameter sets per arm type
  - Epsilon-greedy choice (deterministic at ε=0, ties → first stored)
  - Idempotent, race-safe arm initialization (4 arms, never 8)
  - Reward update invariants (average = total / pulls, pulls +1)
  - Stale arm ids and non-finite rewards
  - Duplicate repair keeps the earliest arm per type
"""

import asyncio
import random
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db import stores
from db.models import ARM_TYPES, BanditArm, Product
from db.session import Base
from db.stores import ArmStore
from ml.bandit import (
    ARM_PARAMETERS,
    BanditConfig,
    BanditEngine,
    choose_arm,
    get_arm_parameters,
    split_duplicate_arms,
)


def _arm(arm_type, average_reward=0.0):
    return SimpleNamespace(arm_id=uuid.uuid4(), arm_type=arm_type, average_reward=average_reward)


# ── Parameters ─────────────────────────────────────────────────────────


class TestArmParameters:
    def test_every_arm_type_has_parameters(self):
        assert set(ARM_PARAMETERS) == set(ARM_TYPES)

    def test_only_seasonal_is_flagged(self):
        flagged = [t for t, p in ARM_PARAMETERS.items() if p.seasonal_adjustment]
        assert flagged == ["seasonal"]

    def test_conservative_buffers_deeper_than_aggressive(self):
        conservative = get_arm_parameters("conservative")
        aggressive = get_arm_parameters("aggressive")
        assert conservative.safety_stock > aggressive.safety_stock
        assert conservative.lead_time_buffer > aggressive.lead_time_buffer
        assert conservative.demand_multiplier < aggressive.demand_multiplier

    def test_parameters_are_frozen(self):
        with pytest.raises(AttributeError):
            ARM_PARAMETERS["balanced"].safety_stock = 0.9

    def test_unknown_arm_type(self):
        with pytest.raises(ValueError):
            get_arm_parameters("reckless")


# ── Selection ──────────────────────────────────────────────────────────


class TestChooseArm:
    def test_zero_exploration_picks_max_average(self):
        arms = [_arm("conservative", 0.1), _arm("aggressive", 0.6), _arm("balanced", 0.3)]
        for seed in range(20):
            arm, mode = choose_arm(arms, 0.0, random.Random(seed))
            assert arm is arms[1]
            assert mode == "exploit"

    def test_ties_break_to_first_in_stored_order(self):
        arms = [_arm("conservative", 0.5), _arm("aggressive", 0.5), _arm("balanced", 0.5)]
        arm, _ = choose_arm(arms, 0.0, random.Random(0))
        assert arm is arms[0]

    def test_full_exploration_reaches_every_arm(self):
        arms = [_arm(t, 0.9 if t == "balanced" else 0.0) for t in ARM_TYPES]
        rng = random.Random(7)
        picked = {choose_arm(arms, 1.0, rng)[0].arm_type for _ in range(200)}
        assert picked == set(ARM_TYPES)

    def test_empty_arms_rejected(self):
        with pytest.raises(ValueError):
            choose_arm([], 0.1, random.Random(0))


class TestSplitDuplicates:
    def test_keeps_first_of_each_type(self):
        arms = [
            _arm("conservative"),
            _arm("aggressive"),
            _arm("conservative"),
            _arm("balanced"),
            _arm("seasonal"),
            _arm("aggressive"),
        ]
        keep, drop = split_duplicate_arms(arms)
        assert [a.arm_type for a in keep] == ["conservative", "aggressive", "balanced", "seasonal"]
        assert keep[0] is arms[0]
        assert drop == [arms[2], arms[5]]

    def test_no_duplicates(self):
        arms = [_arm(t) for t in ARM_TYPES]
        keep, drop = split_duplicate_arms(arms)
        assert keep == arms
        assert drop == []


# ── Store-backed engine ────────────────────────────────────────────────


@pytest.mark.asyncio
class TestBanditEngine:
    async def test_initialize_creates_four_arms(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db), BanditConfig(exploration_rate=0.1))

        created = await engine.initialize_arms(product_id)
        await test_db.commit()

        arms = await ArmStore(test_db).list_for_product(product_id)
        assert created == 4
        assert sorted(a.arm_type for a in arms) == sorted(ARM_TYPES)
        assert all(a.pull_count == 0 and a.average_reward == 0.0 for a in arms)
        assert all(a.exploration_rate == 0.1 for a in arms)
        balanced = next(a for a in arms if a.arm_type == "balanced")
        assert balanced.parameters == ARM_PARAMETERS["balanced"].as_dict()

    async def test_initialize_twice_yields_four_not_eight(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        first = BanditEngine(ArmStore(test_db))
        second = BanditEngine(ArmStore(test_db))

        assert await first.initialize_arms(product_id) == 4
        assert await second.initialize_arms(product_id) == 0
        await test_db.commit()

        assert await ArmStore(test_db).count_for_product(product_id) == 4

    async def test_reinitialize_preserves_statistics(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db))
        await engine.initialize_arms(product_id)
        arm = (await engine.get_arms(product_id))[0]
        await engine.update_reward(arm.arm_id, 0.75)

        await engine.initialize_arms(product_id)
        await test_db.commit()

        reloaded = await ArmStore(test_db).get(arm.arm_id)
        assert reloaded.pull_count == 1
        assert reloaded.average_reward == pytest.approx(0.75)

    async def test_select_lazily_initializes(self, test_db, seeded_db):
        product_id = seeded_db["pharma"].product_id
        engine = BanditEngine(ArmStore(test_db), BanditConfig(exploration_rate=0.0))

        arm = await engine.select_arm(product_id)

        assert arm.arm_type in ARM_TYPES
        assert await ArmStore(test_db).count_for_product(product_id) == 4

    async def test_select_exploits_best_arm(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db), BanditConfig(exploration_rate=0.0), rng=random.Random(3))
        arms = await engine.get_arms(product_id)
        seasonal = next(a for a in arms if a.arm_type == "seasonal")
        await engine.update_reward(seasonal.arm_id, 0.9)

        for _ in range(10):
            assert (await engine.select_arm(product_id)).arm_id == seasonal.arm_id

    async def test_select_with_all_zero_rewards_returns_first_stored(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db), BanditConfig(exploration_rate=0.0))
        arms = await engine.get_arms(product_id)

        assert (await engine.select_arm(product_id)).arm_id == arms[0].arm_id
        assert arms[0].arm_type == "conservative"

    async def test_update_reward_invariants(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db))
        arm = (await engine.get_arms(product_id))[1]

        rewards = [0.5, -0.25, 0.8, 0.1]
        for expected_pulls, reward in enumerate(rewards, start=1):
            updated = await engine.update_reward(arm.arm_id, reward)
            assert updated.pull_count == expected_pulls
            assert updated.average_reward == pytest.approx(updated.total_reward / updated.pull_count)
        await test_db.commit()

        reloaded = await ArmStore(test_db).get(arm.arm_id)
        assert reloaded.reward_history == pytest.approx(rewards)
        assert reloaded.total_reward == pytest.approx(sum(rewards))

    async def test_non_finite_reward_counts_as_zero(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db))
        arm = (await engine.get_arms(product_id))[0]

        await engine.update_reward(arm.arm_id, 1.0)
        updated = await engine.update_reward(arm.arm_id, float("nan"))

        assert updated.pull_count == 2
        assert updated.total_reward == pytest.approx(1.0)
        assert updated.average_reward == pytest.approx(0.5)
        assert updated.reward_history[-1] == 0.0

    async def test_update_unknown_arm_is_noop(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db))
        await engine.initialize_arms(product_id)

        result = await engine.update_reward(uuid.uuid4(), 0.5)
        await test_db.commit()

        assert result is None
        arms = (await test_db.execute(select(BanditArm))).scalars().all()
        assert all(a.pull_count == 0 for a in arms)

    async def test_repair_without_duplicates_is_noop(self, test_db, seeded_db):
        product_id = seeded_db["dairy"].product_id
        engine = BanditEngine(ArmStore(test_db))
        await engine.initialize_arms(product_id)

        assert await engine.repair_duplicates(product_id) == 0
        assert await ArmStore(test_db).count_for_product(product_id) == 4


@pytest.mark.asyncio
async def test_concurrent_initializers_across_sessions_create_one_set(tmp_path):
    """Several sessions racing on a fresh product: exactly one batch of arms lands."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'arms.db'}")
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        product = Product(sku="RACE001", name="Race Product", category="Food")
        db.add(product)
        await db.commit()
        product_id = product.product_id

    async def initialize():
        async with session_factory() as db:
            created = await BanditEngine(ArmStore(db)).initialize_arms(product_id)
            await db.commit()
            return created

    try:
        results = await asyncio.gather(*(initialize() for _ in range(5)))
        async with session_factory() as db:
            count = await ArmStore(db).count_for_product(product_id)
    finally:
        await engine.dispose()

    assert sorted(results) == [0, 0, 0, 0, 4]
    assert count == 4


@pytest.mark.asyncio
async def test_savepoint_insert_path_skips_existing_arms(monkeypatch):
    """Dialects without an insert-or-ignore construct fall back to one SAVEPOINT per row."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # pysqlite needs explicit BEGIN for SAVEPOINT to nest correctly
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    monkeypatch.setattr(stores, "_UPSERT_DIALECTS", {})
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        async with session_factory() as db:
            product = Product(sku="SVP001", name="Savepoint Product", category="Dairy")
            db.add(product)
            await db.flush()
            bandit = BanditEngine(ArmStore(db))

            assert await bandit.initialize_arms(product.product_id) == 4
            assert await bandit.initialize_arms(product.product_id) == 0
            await db.commit()

            arms = await ArmStore(db).list_for_product(product.product_id)
            assert [a.arm_type for a in arms] == list(ARM_TYPES)
    finally:
        await engine.dispose()


class _DuplicatedArmStore:
    """In-memory arm store holding a legacy duplicate state."""

    def __init__(self, arms):
        self.rows = list(arms)

    async def list_for_product(self, product_id):
        return list(self.rows)

    async def delete_many(self, arm_ids):
        ids = set(arm_ids)
        before = len(self.rows)
        self.rows = [a for a in self.rows if a.arm_id not in ids]
        return before - len(self.rows)


@pytest.mark.asyncio
async def test_repair_duplicates_keeps_earliest_and_is_idempotent():
    arms = [_arm(t) for t in ARM_TYPES] + [_arm(t) for t in ARM_TYPES]
    store = _DuplicatedArmStore(arms)
    engine = BanditEngine(store)

    removed = await engine.repair_duplicates(uuid.uuid4())

    assert removed == 4
    assert store.rows == arms[:4]
    assert await engine.repair_duplicates(uuid.uuid4()) == 0
