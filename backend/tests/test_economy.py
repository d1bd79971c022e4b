"""
Economy engine against an in-memory database.

Covers session start, clicks, upgrades, bombs/shields, daily rewards,
promo codes and tasks, including every rejected path leaving state intact.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import ADMIN_ID, START
from tapcoin.config import EconomyConfig
from tapcoin.errors import (
    AlreadyClaimed,
    AlreadyClaimedToday,
    AlreadyCompleted,
    EconomyError,
    InsufficientFunds,
    InsufficientItems,
    InvalidPromoCode,
    InvalidTarget,
    NotFound,
    VerificationFailed,
)
from tapcoin.models import PromoCode, PromoRedemption, Task, TaskCompletion, Transaction
from tapcoin.services.catalog import RewardSpec
from tapcoin.services.economy import EconomyEngine
from tapcoin.services.verification import MembershipStatus


# ============================================
# SESSION START
# ============================================

class TestSessionStart:
    async def test_creates_account_with_defaults(self, engine, db):
        session = await engine.start_session(db, 1001, "alice")

        assert session.created is True
        assert session.offline_earnings == 0
        assert session.user.telegram_id == 1001
        assert session.user.username == "alice"
        assert session.user.balance == 0
        assert session.user.click_power == 1
        assert session.user.income_per_second == 0
        assert session.user.is_admin is False

    async def test_admin_flag_from_config(self, engine, db):
        session = await engine.start_session(db, ADMIN_ID, "boss")
        assert session.user.is_admin is True

    async def test_missing_username_defaults(self, engine, db):
        session = await engine.start_session(db, 1001, None)
        assert session.user.username == "Unknown"

    async def test_offline_earnings_two_hours(self, engine, db, clock, make_user):
        await make_user(1001, income_per_second=10.0, last_online=START)
        clock.advance(hours=2)

        session = await engine.start_session(db, 1001, "alice")

        assert session.created is False
        assert session.offline_earnings == 72000
        assert session.user.balance == 72000

    async def test_offline_earnings_capped_at_24_hours(self, engine, db, clock, make_user):
        await make_user(1001, income_per_second=10.0, last_online=START)
        clock.advance(hours=30)

        session = await engine.start_session(db, 1001, "alice")

        assert session.offline_earnings == 864000
        assert session.user.balance == 864000

    async def test_offline_earnings_not_credited_twice(self, engine, db, clock, make_user):
        await make_user(1001, income_per_second=10.0, last_online=START)
        clock.advance(hours=2)

        await engine.start_session(db, 1001, "alice")
        again = await engine.start_session(db, 1001, "alice")

        assert again.offline_earnings == 0
        assert again.user.balance == 72000

    async def test_username_refreshed(self, engine, db, make_user):
        await make_user(1001, username="old")
        session = await engine.start_session(db, 1001, "new")
        assert session.user.username == "new"


class TestReferrals:
    async def test_referrer_rewarded_exactly_once(self, engine, db, make_user):
        await make_user(500)

        await engine.start_session(db, 1001, "invitee", referrer_id=500)
        referrer = await engine.get_snapshot(db, 500)
        assert referrer.referral_count == 1
        assert referrer.referral_earnings == 1_000_000
        assert referrer.balance == 1_000_000

        # Later sessions of the same account never pay again
        await engine.start_session(db, 1001, "invitee", referrer_id=500)
        await engine.start_session(db, 1001, "invitee", referrer_id=500)
        referrer = await engine.get_snapshot(db, 500)
        assert referrer.referral_count == 1
        assert referrer.referral_earnings == 1_000_000
        assert referrer.balance == 1_000_000

    async def test_each_new_account_counts(self, engine, db, make_user):
        await make_user(500)
        await engine.start_session(db, 1001, "a", referrer_id=500)
        await engine.start_session(db, 1002, "b", referrer_id=500)

        referrer = await engine.get_snapshot(db, 500)
        assert referrer.referral_count == 2
        assert referrer.balance == 2_000_000

    async def test_self_referral_ignored(self, engine, db):
        session = await engine.start_session(db, 1001, "me", referrer_id=1001)
        assert session.created is True
        assert session.user.referral_count == 0
        assert session.user.balance == 0

    async def test_unknown_referrer_ignored(self, engine, db):
        session = await engine.start_session(db, 1001, "a", referrer_id=424242)
        assert session.created is True
        assert session.user.balance == 0

    async def test_referral_is_recorded_in_ledger(self, engine, db, make_user):
        referrer = await make_user(500)
        await engine.start_session(db, 1001, "a", referrer_id=500)

        result = await db.execute(select(Transaction).where(Transaction.user_id == referrer.id))
        entries = result.scalars().all()
        assert [(t.type, t.amount) for t in entries] == [("referral", 1_000_000)]


# ============================================
# CLICKS
# ============================================

class TestClick:
    async def test_click_batch_uses_click_power(self, engine, db, make_user):
        await make_user(1001, click_power=3)
        result = await engine.click(db, 1001, 5)

        assert result.coins_earned == 15
        assert result.balance == 15
        assert result.bonus_dropped is None

    async def test_bomb_drop(self, engine, db, rng, make_user):
        await make_user(1001)
        rng.queue(0.0)

        result = await engine.click(db, 1001, 1)

        assert result.bonus_dropped.type == "bomb"
        assert result.bombs == 1
        assert result.shields == 0

    async def test_shield_drop(self, engine, db, rng, make_user):
        await make_user(1001)
        rng.queue(0.0015)

        result = await engine.click(db, 1001, 1)

        assert result.bonus_dropped.type == "shield"
        assert result.shields == 1
        assert result.bombs == 0

    async def test_one_draw_per_request(self, engine, db, rng, make_user):
        await make_user(1001)
        rng.queue(0.0, 0.0, 0.0)

        result = await engine.click(db, 1001, 50)

        assert result.bombs == 1
        assert len(rng.values) == 2

    async def test_too_many_clicks_rejected(self, engine, db, make_user):
        await make_user(1001, balance=10.0)

        with pytest.raises(EconomyError) as exc_info:
            await engine.click(db, 1001, 1001)

        assert exc_info.value.code == "INVALID_CLICK_COUNT"
        snapshot = await engine.get_snapshot(db, 1001)
        assert snapshot.balance == 10

    async def test_unknown_account(self, engine, db):
        with pytest.raises(NotFound):
            await engine.click(db, 404, 1)


# ============================================
# UPGRADES
# ============================================

class TestUpgrades:
    async def test_repeated_purchase_price_grows(self, engine, db, make_user):
        await make_user(1001, balance=1000.0)

        first = await engine.buy_upgrade(db, 1001, "passive", 1)
        second = await engine.buy_upgrade(db, 1001, "passive", 1)

        assert first.price == 100
        assert second.price == 120
        assert second.new_level == 2
        assert second.balance == 780
        assert second.income_per_second == pytest.approx(0.02)
        assert second.click_power is None

    async def test_insufficient_funds_leaves_state(self, engine, db, make_user):
        await make_user(1001, balance=50.0)

        with pytest.raises(InsufficientFunds):
            await engine.buy_upgrade(db, 1001, "passive", 1)

        snapshot = await engine.get_snapshot(db, 1001)
        assert snapshot.balance == 50
        assert snapshot.income_per_second == 0
        listing = await engine.list_upgrades(db, 1001, "passive")
        assert listing.upgrades[0].level == 0

    async def test_unknown_upgrade(self, engine, db, make_user):
        await make_user(1001, balance=1_000_000.0)
        with pytest.raises(NotFound):
            await engine.buy_upgrade(db, 1001, "click", 99)

    async def test_unknown_kind(self, engine, db, make_user):
        await make_user(1001)
        with pytest.raises(NotFound):
            await engine.list_upgrades(db, 1001, "mining")

    async def test_click_power_recomputed_from_levels(self, engine, db, make_user):
        await make_user(1001, balance=10_000.0)

        await engine.buy_upgrade(db, 1001, "click", 1)
        await engine.buy_upgrade(db, 1001, "click", 1)
        result = await engine.buy_upgrade(db, 1001, "click", 2)

        # 1 + 1*2 + 2*1
        assert result.click_power == 5
        assert result.balance == 10_000 - 200 - 340 - 2000

    async def test_drifted_click_power_is_repaired(self, engine, db, make_user):
        await make_user(1001, balance=10_000.0, click_power=99)

        result = await engine.buy_upgrade(db, 1001, "click", 1)

        assert result.click_power == 2

    async def test_listing_reports_next_gain(self, engine, db, make_user):
        await make_user(1001, balance=150.0)
        await engine.buy_upgrade(db, 1001, "passive", 1)

        listing = await engine.list_upgrades(db, 1001, "passive")
        first = listing.upgrades[0]

        assert listing.kind == "passive"
        assert len(listing.upgrades) == 8
        assert first.level == 1
        assert first.price == 120
        assert first.income == pytest.approx(0.02)
        assert first.can_afford is False

    async def test_click_listing_reports_boost(self, engine, db, make_user):
        await make_user(1001, balance=200.0)

        listing = await engine.list_upgrades(db, 1001, "click")

        assert [u.click_boost for u in listing.upgrades] == [1, 2, 5, 10, 25, 50]
        assert listing.upgrades[0].can_afford is True
        assert listing.upgrades[1].can_afford is False

    async def test_purchase_recorded_in_ledger(self, engine, db, make_user):
        user = await make_user(1001, balance=1000.0)
        await engine.buy_upgrade(db, 1001, "passive", 2)

        result = await db.execute(select(Transaction).where(Transaction.user_id == user.id))
        entry = result.scalar_one()
        assert entry.type == "purchase"
        assert entry.amount == -1000
        assert entry.item_type == "passive_upgrade"
        assert entry.item_id == "2"


# ============================================
# BOMBS / SHIELDS
# ============================================

class TestBombs:
    async def test_shield_absorbs_but_bomb_is_spent(self, engine, db, make_user):
        await make_user(1001, bombs=2)
        await make_user(2002, balance=500_000.0, shield_active_until=START + timedelta(hours=1))

        result = await engine.use_bomb(db, 1001, 2002)

        assert result.absorbed is True
        assert result.bombs == 1
        assert result.damage == 0
        target = await engine.get_snapshot(db, 2002)
        assert target.balance == 500_000

    async def test_damage_floors_balance_at_zero(self, engine, db, make_user):
        await make_user(1001, bombs=1)
        await make_user(2002, balance=100_000.0)

        result = await engine.use_bomb(db, 1001, 2002)

        assert result.absorbed is False
        assert result.damage == 100_000
        target = await engine.get_snapshot(db, 2002)
        assert target.balance == 0

    async def test_repeated_bombs_never_go_negative(self, engine, db, make_user):
        await make_user(1001, bombs=3)
        await make_user(2002, balance=700_000.0)

        balances = []
        for _ in range(3):
            await engine.use_bomb(db, 1001, 2002)
            balances.append((await engine.get_snapshot(db, 2002)).balance)

        assert balances == [400_000, 100_000, 0]

    async def test_expired_shield_does_not_protect(self, engine, db, make_user):
        await make_user(1001, bombs=1)
        await make_user(2002, balance=500_000.0, shield_active_until=START - timedelta(minutes=1))

        result = await engine.use_bomb(db, 1001, 2002)

        assert result.absorbed is False
        assert (await engine.get_snapshot(db, 2002)).balance == 200_000

    async def test_no_bombs(self, engine, db, make_user):
        await make_user(1001)
        await make_user(2002, balance=500_000.0)

        with pytest.raises(InsufficientItems):
            await engine.use_bomb(db, 1001, 2002)

    async def test_self_target(self, engine, db, make_user):
        await make_user(1001, bombs=1, balance=500_000.0)

        with pytest.raises(InvalidTarget):
            await engine.use_bomb(db, 1001, 1001)

        snapshot = await engine.get_snapshot(db, 1001)
        assert snapshot.bombs == 1
        assert snapshot.balance == 500_000

    async def test_item_check_precedes_target_check(self, engine, db, make_user):
        await make_user(1001)
        with pytest.raises(InsufficientItems):
            await engine.use_bomb(db, 1001, 1001)

    async def test_missing_target_keeps_bomb(self, engine, db, make_user):
        await make_user(1001, bombs=1)

        with pytest.raises(NotFound):
            await engine.use_bomb(db, 1001, 404)

        assert (await engine.get_snapshot(db, 1001)).bombs == 1


class TestShields:
    async def test_activate(self, engine, db, make_user):
        await make_user(1001, shields=2)

        result = await engine.activate_shield(db, 1001)

        assert result.shields == 1
        assert result.shield_active_until == START + timedelta(hours=3)

    async def test_reactivation_restarts_window(self, engine, db, clock, make_user):
        await make_user(1001, shields=2)
        await engine.activate_shield(db, 1001)
        clock.advance(hours=1)

        result = await engine.activate_shield(db, 1001)

        assert result.shields == 0
        assert result.shield_active_until == START + timedelta(hours=4)

    async def test_no_shields(self, engine, db, make_user):
        await make_user(1001)
        with pytest.raises(InsufficientItems):
            await engine.activate_shield(db, 1001)
        assert (await engine.get_snapshot(db, 1001)).shield_active_until is None


# ============================================
# DAILY REWARDS
# ============================================

class TestDailyRewards:
    async def test_consecutive_days_cycle_table(self, engine, db, clock, make_user):
        await make_user(1001)
        indexes = []
        streaks = []
        for _ in range(9):
            result = await engine.claim_daily(db, 1001)
            indexes.append(result.reward_index)
            streaks.append(result.daily_reward_streak)
            clock.advance(days=1)

        assert indexes == [0, 1, 2, 3, 4, 5, 6, 0, 1]
        assert streaks == [1, 2, 3, 4, 5, 6, 7, 8, 9]

    async def test_rewards_are_granted_by_kind(self, engine, db, clock, make_user):
        await make_user(1001)

        first = await engine.claim_daily(db, 1001)  # 1 shield
        clock.advance(days=1)
        second = await engine.claim_daily(db, 1001)  # 1 bomb
        clock.advance(days=1)
        third = await engine.claim_daily(db, 1001)  # 500k coins

        assert first.shields == 1
        assert second.bombs == 1
        assert third.balance == 500_000

    async def test_second_claim_same_day_rejected(self, engine, db, clock, make_user):
        await make_user(1001)
        await engine.claim_daily(db, 1001)
        clock.advance(hours=6)

        with pytest.raises(AlreadyClaimedToday):
            await engine.claim_daily(db, 1001)

        assert (await engine.get_snapshot(db, 1001)).shields == 1

    async def test_gap_resets_streak(self, engine, db, clock, make_user):
        await make_user(1001)
        for _ in range(3):
            await engine.claim_daily(db, 1001)
            clock.advance(days=1)

        clock.advance(days=1)  # skipped a day
        result = await engine.claim_daily(db, 1001)

        assert result.reward_index == 0
        assert result.daily_reward_streak == 1

    async def test_status(self, engine, db, clock, make_user):
        await make_user(1001)
        before = await engine.daily_status(db, 1001)
        assert before.can_claim is True
        assert before.streak == 0
        assert len(before.rewards) == 7

        await engine.claim_daily(db, 1001)
        after = await engine.daily_status(db, 1001)
        assert after.can_claim is False
        assert after.streak == 1
        assert after.next_reward_index == 1

        clock.advance(days=3)
        broken = await engine.daily_status(db, 1001)
        assert broken.can_claim is True
        assert broken.streak == 0

    async def test_custom_table(self, db, membership, clock, rng, make_user):
        config = EconomyConfig(daily_rewards=(RewardSpec(kind="coins", amount=10),))
        engine = EconomyEngine(config, membership, clock=clock, rng=rng)
        await make_user(1001)

        for _ in range(3):
            result = await engine.claim_daily(db, 1001)
            clock.advance(days=1)

        assert result.reward_index == 0
        assert result.balance == 30


# ============================================
# PROMO CODES
# ============================================

@pytest.fixture
def make_promo(db):
    async def _make_promo(code: str, **fields) -> PromoCode:
        values = {
            "reward_kind": "coins",
            "reward_amount": 1000.0,
            "max_uses": None,
            "current_uses": 0,
            "is_active": True,
            "expires_at": None,
            "created_at": START,
        }
        values.update(fields)
        promo = PromoCode(code=code, **values)
        db.add(promo)
        await db.flush()
        return promo

    return _make_promo


class TestPromoCodes:
    async def test_cap_and_per_account_claim(self, engine, db, make_user, make_promo):
        for telegram_id in (1001, 1002, 1003):
            await make_user(telegram_id)
        promo = await make_promo("WELCOME", max_uses=2)

        first = await engine.redeem_promo(db, 1001, "  welcome ")
        assert first.code == "WELCOME"
        assert first.balance == 1000

        with pytest.raises(AlreadyClaimed):
            await engine.redeem_promo(db, 1001, "WELCOME")

        await engine.redeem_promo(db, 1002, "Welcome")
        await db.refresh(promo)
        assert promo.current_uses == 2

        with pytest.raises(InvalidPromoCode):
            await engine.redeem_promo(db, 1003, "WELCOME")
        # Exhaustion is reported before the per-account check
        with pytest.raises(InvalidPromoCode):
            await engine.redeem_promo(db, 1001, "WELCOME")

        assert (await engine.get_snapshot(db, 1003)).balance == 0
        await db.refresh(promo)
        assert promo.current_uses == 2

    async def test_unknown_code(self, engine, db, make_user):
        await make_user(1001)
        with pytest.raises(NotFound):
            await engine.redeem_promo(db, 1001, "NOPE")

    async def test_expired_code(self, engine, db, make_user, make_promo):
        await make_user(1001)
        await make_promo("OLD", expires_at=START - timedelta(seconds=1))
        with pytest.raises(InvalidPromoCode):
            await engine.redeem_promo(db, 1001, "OLD")

    async def test_inactive_code(self, engine, db, make_user, make_promo):
        await make_user(1001)
        await make_promo("OFF", is_active=False)
        with pytest.raises(InvalidPromoCode):
            await engine.redeem_promo(db, 1001, "OFF")

    async def test_item_reward(self, engine, db, make_user, make_promo):
        await make_user(1001, bombs=1)
        await make_promo("BOOM", reward_kind="bomb", reward_amount=3)

        result = await engine.redeem_promo(db, 1001, "boom")

        assert result.reward_kind == "bomb"
        assert result.bombs == 4
        assert result.balance == 0

    async def test_unlimited_code(self, engine, db, make_user, make_promo):
        await make_promo("FREE", reward_amount=5.0)
        for telegram_id in range(1001, 1011):
            await make_user(telegram_id)
            result = await engine.redeem_promo(db, telegram_id, "FREE")
            assert result.balance == 5

    async def test_last_use_taken_after_validity_check(self, engine, db, make_user, make_promo, monkeypatch):
        # Validity was read before a parallel redemption took the last use
        await make_user(1001)
        promo = await make_promo("LAST", max_uses=1, current_uses=1)
        monkeypatch.setattr("tapcoin.services.economy.is_promo_valid", lambda promo, now: True)

        with pytest.raises(InvalidPromoCode):
            await engine.redeem_promo(db, 1001, "LAST")

        assert (await engine.get_snapshot(db, 1001)).balance == 0
        await db.refresh(promo)
        assert promo.current_uses == 1
        redemptions = await db.execute(select(PromoRedemption.id).where(PromoRedemption.promo_code_id == promo.id))
        assert redemptions.scalars().all() == []

    async def test_parallel_duplicate_redemption(self, engine, db, make_user, make_promo, monkeypatch):
        user = await make_user(1001)
        promo = await make_promo("TWICE", max_uses=5)
        user_id, promo_id = user.id, promo.id
        await db.commit()
        grant = engine._grant

        def grant_with_parallel_redemption(target, kind, amount):
            # Same account, same code, committed by another request in the meantime
            db.add(PromoRedemption(user_id=user_id, promo_code_id=promo_id, code="TWICE", redeemed_at=START))
            grant(target, kind, amount)

        monkeypatch.setattr(engine, "_grant", grant_with_parallel_redemption)

        with pytest.raises(AlreadyClaimed) as exc_info:
            await engine.redeem_promo(db, 1001, "TWICE")

        assert exc_info.value.code == "PROMO_ALREADY_CLAIMED"
        assert (await engine.get_snapshot(db, 1001)).balance == 0
        uses = await db.scalar(select(PromoCode.current_uses).where(PromoCode.id == promo_id))
        assert uses == 0


# ============================================
# TASKS
# ============================================

@pytest.fixture
def make_task(db):
    async def _make_task(**fields) -> Task:
        values = {
            "title": "Subscribe",
            "description": "",
            "channel_link": "https://t.me/tapcoin_news",
            "channel_id": "@tapcoin_news",
            "reward": 5000.0,
            "is_active": True,
            "created_at": START,
        }
        values.update(fields)
        task = Task(**values)
        db.add(task)
        await db.flush()
        return task

    return _make_task


class TestTasks:
    async def test_complete_then_reject_repeat(self, engine, db, membership, make_user, make_task):
        await make_user(1001)
        task = await make_task()

        result = await engine.complete_task(db, 1001, task.id)
        assert result.reward == 5000
        assert result.balance == 5000
        assert result.bypassed is False

        with pytest.raises(AlreadyCompleted):
            await engine.complete_task(db, 1001, task.id)

        assert membership.calls == [("@tapcoin_news", 1001)]
        assert (await engine.get_snapshot(db, 1001)).balance == 5000

    async def test_not_subscribed(self, engine, db, membership, make_user, make_task):
        await make_user(1001)
        task = await make_task()
        membership.status = MembershipStatus.NOT_MEMBER

        with pytest.raises(VerificationFailed) as exc_info:
            await engine.complete_task(db, 1001, task.id)

        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "CHANNEL_NOT_SUBSCRIBED"
        assert (await engine.get_snapshot(db, 1001)).balance == 0

    async def test_unknown_status_is_retryable(self, engine, db, membership, make_user, make_task):
        await make_user(1001)
        task = await make_task()
        membership.status = MembershipStatus.UNKNOWN

        with pytest.raises(VerificationFailed) as exc_info:
            await engine.complete_task(db, 1001, task.id)

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503

        # The user can retry once the check succeeds
        membership.status = MembershipStatus.MEMBER
        result = await engine.complete_task(db, 1001, task.id)
        assert result.balance == 5000

    async def test_bypass_grants_on_unknown(self, db, membership, clock, rng, make_user, make_task):
        engine = EconomyEngine(EconomyConfig(verification_bypass=True), membership, clock=clock, rng=rng)
        await make_user(1001)
        task = await make_task()
        membership.status = MembershipStatus.UNKNOWN

        result = await engine.complete_task(db, 1001, task.id)

        assert result.bypassed is True
        assert result.balance == 5000

    async def test_bypass_does_not_override_negative_answer(self, db, membership, clock, rng, make_user, make_task):
        engine = EconomyEngine(EconomyConfig(verification_bypass=True), membership, clock=clock, rng=rng)
        await make_user(1001)
        task = await make_task()
        membership.status = MembershipStatus.NOT_MEMBER

        with pytest.raises(VerificationFailed):
            await engine.complete_task(db, 1001, task.id)

    async def test_inactive_or_missing_task(self, engine, db, make_user, make_task):
        await make_user(1001)
        task = await make_task(is_active=False)

        with pytest.raises(NotFound):
            await engine.complete_task(db, 1001, task.id)
        with pytest.raises(NotFound):
            await engine.complete_task(db, 1001, 999)

    async def test_listing_marks_completed(self, engine, db, make_user, make_task):
        await make_user(1001)
        done = await make_task(title="Done")
        await make_task(title="Open")
        await make_task(title="Hidden", is_active=False)
        await engine.complete_task(db, 1001, done.id)

        listing = await engine.list_tasks(db, 1001)

        assert {t.title: t.completed for t in listing.tasks} == {"Done": True, "Open": False}

    async def test_completion_recorded_during_verification(self, engine, db, membership, make_user, make_task):
        user = await make_user(1001)
        task = await make_task()

        async def check_while_other_request_completes(channel_id, telegram_id):
            db.add(TaskCompletion(user_id=user.id, task_id=task.id, reward=task.reward, completed_at=START))
            return MembershipStatus.MEMBER

        membership.check = check_while_other_request_completes

        with pytest.raises(AlreadyCompleted):
            await engine.complete_task(db, 1001, task.id)

        assert (await engine.get_snapshot(db, 1001)).balance == 0
        ledger = await db.execute(select(Transaction).where(Transaction.type == "task"))
        assert ledger.scalars().all() == []
