"""
Server-authoritative economy.

Every balance or inventory change goes through ``EconomyEngine``. Each
operation locks the account row(s) it touches (``SELECT ... FOR UPDATE``),
validates before mutating and leaves commit/rollback to the request-scoped
session, so a rejected action never leaves a partial debit behind.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import EconomyConfig, settings
from ..errors import (
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
from ..models import PromoCode, PromoRedemption, Task, TaskCompletion, Transaction, User, UserUpgrade
from ..schemas import (
    AccountSnapshot,
    BonusDrop,
    BuyUpgradeResponse,
    ClickResponse,
    DailyRewardClaimResponse,
    DailyRewardsStatus,
    PromoRedeemResponse,
    SessionResponse,
    ShieldResponse,
    TaskCheckResponse,
    TaskDto,
    TasksResponse,
    UpgradeListResponse,
    UpgradeOffer,
    UseBombResponse,
)
from . import progression
from .catalog import UPGRADE_KIND_CLICK, UPGRADE_KIND_PASSIVE, UPGRADE_KINDS, catalog_for, get_upgrade
from .verification import (
    MembershipChecker,
    MembershipStatus,
    TelegramMembershipChecker,
    is_promo_valid,
    normalize_promo_code,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def snapshot(user: User) -> AccountSnapshot:
    return AccountSnapshot.model_validate(user)


class EconomyEngine:
    """Applies player intents to accounts using an immutable ``EconomyConfig``."""

    def __init__(
        self,
        config: EconomyConfig,
        membership: MembershipChecker,
        *,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.membership = membership
        self.clock = clock
        self.rng = rng or random.Random()

    # ============================================
    # LOADING / HELPERS
    # ============================================

    async def _find_user(self, db: AsyncSession, telegram_id: int, *, lock: bool = False) -> User | None:
        stmt = select(User).where(User.telegram_id == telegram_id)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_user(self, db: AsyncSession, telegram_id: int, *, lock: bool = False) -> User:
        user = await self._find_user(db, telegram_id, lock=lock)
        if user is None:
            raise NotFound("User not found", code="USER_NOT_FOUND")
        return user

    def _record(
        self,
        db: AsyncSession,
        user: User,
        tx_type: str,
        currency: str,
        amount: float,
        item_type: str | None = None,
        item_id: str | None = None,
    ) -> None:
        db.add(
            Transaction(
                user_id=user.id,
                type=tx_type,
                currency=currency,
                amount=amount,
                item_type=item_type,
                item_id=item_id,
                created_at=self.clock(),
            )
        )

    @staticmethod
    def _grant(user: User, kind: str, amount: float) -> None:
        if kind == "coins":
            user.balance += amount
        elif kind == "bomb":
            user.bombs += int(amount)
        elif kind == "shield":
            user.shields += int(amount)
        else:
            raise ValueError(f"Unknown reward kind: {kind}")

    def _recompute_rates(self, user: User) -> None:
        # Always rebuilt from owned levels, never adjusted incrementally.
        user.income_per_second = progression.total_income_per_second(
            self.config.passive_upgrades, user.upgrade_levels(UPGRADE_KIND_PASSIVE)
        )
        user.click_power = progression.total_click_power(
            self.config.click_upgrades, user.upgrade_levels(UPGRADE_KIND_CLICK)
        )

    # ============================================
    # SESSION
    # ============================================

    async def start_session(
        self,
        db: AsyncSession,
        telegram_id: int,
        username: str | None,
        referrer_id: int | None = None,
    ) -> SessionResponse:
        """
        Create-or-fetch the account for ``telegram_id``.

        A new account credits its referrer once. An existing account is
        credited its offline earnings (capped) and its ``last_online`` reset.
        """
        now = self.clock()
        user = await self._find_user(db, telegram_id, lock=True)

        if user is None:
            try:
                user = await self._create_account(db, telegram_id, username, referrer_id, now)
            except IntegrityError:
                # Concurrent first contact created the row first
                await db.rollback()
                logger.info(f"[Economy] Concurrent account creation for {telegram_id}, reusing row")
                user = await self._get_user(db, telegram_id, lock=True)
            else:
                return SessionResponse(user=snapshot(user), offline_earnings=0.0, created=True)

        earnings = progression.offline_earnings(
            user.income_per_second, user.last_online, now, self.config.offline_earnings_cap
        )
        if earnings > 0:
            user.balance += earnings
            self._record(db, user, "offline", "coins", earnings)
            logger.info(f"[Economy] Offline earnings {earnings:.2f} credited to {telegram_id}")
        user.last_online = now
        if username:
            user.username = username

        await db.flush()
        return SessionResponse(user=snapshot(user), offline_earnings=earnings, created=False)

    async def _create_account(
        self,
        db: AsyncSession,
        telegram_id: int,
        username: str | None,
        referrer_id: int | None,
        now: datetime,
    ) -> User:
        referrer = None
        if referrer_id is not None and referrer_id != telegram_id:
            referrer = await self._find_user(db, referrer_id, lock=True)
            if referrer is None:
                logger.info(f"[Referral] Referrer {referrer_id} not found for new user {telegram_id}")

        user = User(
            telegram_id=telegram_id,
            username=username or "Unknown",
            balance=0.0,
            click_power=1,
            income_per_second=0.0,
            bombs=0,
            shields=0,
            daily_reward_streak=0,
            referral_count=0,
            referral_earnings=0.0,
            referred_by_id=referrer.id if referrer else None,
            is_admin=telegram_id in self.config.admin_ids,
            created_at=now,
            last_online=now,
            upgrades=[],
        )
        db.add(user)

        if referrer is not None:
            reward = self.config.referral_reward
            referrer.balance += reward
            referrer.referral_count += 1
            referrer.referral_earnings += reward
            self._record(db, referrer, "referral", "coins", reward, item_type="referral", item_id=str(telegram_id))
            logger.info(f"[Referral] {referrer.telegram_id} awarded {reward} for new user {telegram_id}")

        await db.flush()
        logger.info(f"[Economy] New account created: {telegram_id}")
        return user

    async def get_snapshot(self, db: AsyncSession, telegram_id: int) -> AccountSnapshot:
        return snapshot(await self._get_user(db, telegram_id))

    # ============================================
    # CLICKS
    # ============================================

    async def click(self, db: AsyncSession, telegram_id: int, clicks: int = 1) -> ClickResponse:
        if clicks < 1 or clicks > self.config.max_clicks_per_request:
            raise EconomyError(
                f"Clicks per request must be between 1 and {self.config.max_clicks_per_request}",
                code="INVALID_CLICK_COUNT",
            )

        user = await self._get_user(db, telegram_id, lock=True)

        coins_earned = user.click_power * clicks
        user.balance += coins_earned
        user.last_online = self.clock()

        bonus = progression.roll_bonus_drop(
            self.rng.random(), self.config.bomb_drop_chance, self.config.shield_drop_chance
        )
        if bonus is not None:
            self._grant(user, bonus, 1)
            self._record(db, user, "drop", bonus, 1)
            logger.info(f"[Economy] Bonus {bonus} dropped for {telegram_id}")

        await db.flush()
        return ClickResponse(
            balance=user.balance,
            coins_earned=coins_earned,
            bombs=user.bombs,
            shields=user.shields,
            shield_active_until=user.shield_active_until,
            bonus_dropped=BonusDrop(type=bonus) if bonus else None,
        )

    # ============================================
    # UPGRADES
    # ============================================

    def _catalog(self, kind: str):
        if kind not in UPGRADE_KINDS:
            raise NotFound(f"Unknown upgrade kind: {kind}", code="UPGRADE_NOT_FOUND")
        return catalog_for(self.config, kind)

    async def list_upgrades(self, db: AsyncSession, telegram_id: int, kind: str) -> UpgradeListResponse:
        catalog = self._catalog(kind)
        user = await self._get_user(db, telegram_id)
        levels = user.upgrade_levels(kind)

        offers = []
        for upgrade in catalog:
            level = levels.get(upgrade.id, 0)
            price = progression.upgrade_price(upgrade.base_price, level, upgrade.price_multiplier)
            offer = UpgradeOffer(
                id=upgrade.id,
                name=upgrade.name,
                description=upgrade.description,
                icon=upgrade.icon,
                level=level,
                price=price,
                can_afford=user.balance >= price,
            )
            if kind == UPGRADE_KIND_PASSIVE:
                offer.income = progression.upgrade_income(upgrade.base_income, level + 1)
            else:
                offer.click_boost = progression.click_boost(upgrade.click_boost, 1)
            offers.append(offer)

        return UpgradeListResponse(kind=kind, upgrades=offers)

    async def buy_upgrade(
        self,
        db: AsyncSession,
        telegram_id: int,
        kind: str,
        upgrade_id: int,
    ) -> BuyUpgradeResponse:
        upgrade = get_upgrade(self._catalog(kind), upgrade_id)
        if upgrade is None:
            raise NotFound("Upgrade not found", code="UPGRADE_NOT_FOUND")

        user = await self._get_user(db, telegram_id, lock=True)
        level = user.get_upgrade_level(kind, upgrade_id)
        price = progression.upgrade_price(upgrade.base_price, level, upgrade.price_multiplier)

        if user.balance < price:
            raise InsufficientFunds("Insufficient balance")

        user.balance -= price
        owned = next((u for u in user.upgrades if u.kind == kind and u.upgrade_id == upgrade_id), None)
        if owned is None:
            owned = UserUpgrade(kind=kind, upgrade_id=upgrade_id, level=0)
            user.upgrades.append(owned)
        owned.level += 1
        self._recompute_rates(user)
        user.last_online = self.clock()

        self._record(db, user, "purchase", "coins", -price, item_type=f"{kind}_upgrade", item_id=str(upgrade_id))
        await db.flush()

        return BuyUpgradeResponse(
            balance=user.balance,
            income_per_second=user.income_per_second if kind == UPGRADE_KIND_PASSIVE else None,
            click_power=user.click_power if kind == UPGRADE_KIND_CLICK else None,
            new_level=owned.level,
            price=price,
        )

    # ============================================
    # PROMO CODES
    # ============================================

    async def redeem_promo(self, db: AsyncSession, telegram_id: int, code: str) -> PromoRedeemResponse:
        normalized = normalize_promo_code(code)
        now = self.clock()

        user = await self._get_user(db, telegram_id, lock=True)

        result = await db.execute(
            select(PromoCode)
            .where(PromoCode.code == normalized)
            .execution_options(populate_existing=True)
        )
        promo = result.scalar_one_or_none()
        if promo is None:
            raise NotFound("Promo code does not exist", code="PROMO_NOT_FOUND")

        if not is_promo_valid(promo, now):
            raise InvalidPromoCode()

        existing = await db.execute(
            select(PromoRedemption.id).where(
                PromoRedemption.user_id == user.id,
                PromoRedemption.promo_code_id == promo.id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyClaimed("You have already used this promo code", code="PROMO_ALREADY_CLAIMED")

        # Guarded increment: a concurrent redemption cannot push usage past the cap
        bumped = await db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo.id,
                PromoCode.is_active.is_(True),
                or_(PromoCode.max_uses.is_(None), PromoCode.current_uses < PromoCode.max_uses),
            )
            .values(current_uses=PromoCode.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount != 1:
            raise InvalidPromoCode()

        self._grant(user, promo.reward_kind, promo.reward_amount)
        user.last_online = now
        db.add(PromoRedemption(user_id=user.id, promo_code_id=promo.id, code=normalized, redeemed_at=now))
        self._record(db, user, "promo", promo.reward_kind, promo.reward_amount, item_type="promo", item_id=normalized)

        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise AlreadyClaimed("You have already used this promo code", code="PROMO_ALREADY_CLAIMED") from exc

        await db.refresh(promo)
        logger.info(f"[Promo] {normalized} redeemed by {telegram_id} ({promo.current_uses}/{promo.max_uses or '∞'})")

        return PromoRedeemResponse(
            code=normalized,
            reward_kind=promo.reward_kind,
            reward_amount=promo.reward_amount,
            balance=user.balance,
            bombs=user.bombs,
            shields=user.shields,
        )

    # ============================================
    # TASKS
    # ============================================

    async def _completed_task_ids(self, db: AsyncSession, user: User) -> set[int]:
        result = await db.execute(select(TaskCompletion.task_id).where(TaskCompletion.user_id == user.id))
        return set(result.scalars().all())

    async def list_tasks(self, db: AsyncSession, telegram_id: int) -> TasksResponse:
        user = await self._get_user(db, telegram_id)
        completed = await self._completed_task_ids(db, user)
        result = await db.execute(
            select(Task).where(Task.is_active.is_(True)).order_by(Task.created_at.desc(), Task.id.desc())
        )
        return TasksResponse(
            tasks=[
                TaskDto(
                    id=task.id,
                    title=task.title,
                    description=task.description or "",
                    channel_link=task.channel_link,
                    reward=task.reward,
                    completed=task.id in completed,
                )
                for task in result.scalars().all()
            ]
        )

    async def complete_task(self, db: AsyncSession, telegram_id: int, task_id: int) -> TaskCheckResponse:
        """
        Grant a task reward after the membership oracle confirms subscription.

        The oracle is called before the account row is locked; completion is
        re-checked under the lock and guarded by a unique constraint.
        """
        user = await self._get_user(db, telegram_id)
        task = await db.get(Task, task_id)
        if task is None or not task.is_active:
            raise NotFound("Task not found or inactive", code="TASK_NOT_FOUND")
        if task.id in await self._completed_task_ids(db, user):
            raise AlreadyCompleted()

        status = await self.membership.check(task.channel_id, telegram_id)
        bypassed = False
        if status is MembershipStatus.NOT_MEMBER:
            raise VerificationFailed("You are not subscribed to the channel", code="CHANNEL_NOT_SUBSCRIBED")
        if status is MembershipStatus.UNKNOWN:
            if not self.config.verification_bypass:
                raise VerificationFailed(
                    "Failed to verify subscription, try again later",
                    code="VERIFICATION_UNAVAILABLE",
                    retryable=True,
                )
            bypassed = True
            logger.warning(f"[Tasks] Verification bypass used for task {task.id}, user {telegram_id}")

        user = await self._get_user(db, telegram_id, lock=True)
        if task.id in await self._completed_task_ids(db, user):
            raise AlreadyCompleted()

        user.balance += task.reward
        user.last_online = self.clock()
        db.add(TaskCompletion(user_id=user.id, task_id=task.id, reward=task.reward, completed_at=self.clock()))
        self._record(db, user, "task", "coins", task.reward, item_type="task", item_id=str(task.id))

        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise AlreadyCompleted() from exc

        logger.info(f"[Tasks] Task {task.id} completed by {telegram_id}, reward {task.reward}")
        return TaskCheckResponse(task_id=task.id, reward=task.reward, balance=user.balance, bypassed=bypassed)

    # ============================================
    # BOMBS / SHIELDS
    # ============================================

    async def use_bomb(self, db: AsyncSession, attacker_id: int, target_id: int) -> UseBombResponse:
        """
        Spend one bomb against another account.

        Both rows are locked in ascending telegram id order. The bomb is spent
        even when an active shield absorbs the hit.
        """
        now = self.clock()
        locked: dict[int, User | None] = {}
        for telegram_id in sorted({attacker_id, target_id}):
            locked[telegram_id] = await self._find_user(db, telegram_id, lock=True)

        attacker = locked[attacker_id]
        if attacker is None:
            raise NotFound("User not found", code="USER_NOT_FOUND")
        if attacker.bombs <= 0:
            raise InsufficientItems("You have no bombs", code="NO_BOMBS")
        if target_id == attacker_id:
            raise InvalidTarget("You cannot bomb yourself")
        target = locked[target_id]
        if target is None:
            raise NotFound("Target not found", code="TARGET_NOT_FOUND")

        attacker.bombs -= 1
        attacker.last_online = now
        self._record(db, attacker, "bomb", "bomb", -1, item_type="target", item_id=str(target_id))

        if target.shield_active_until is not None and target.shield_active_until > now:
            await db.flush()
            logger.info(f"[Economy] Bomb from {attacker_id} absorbed by shield of {target_id}")
            return UseBombResponse(
                absorbed=True,
                bombs=attacker.bombs,
                balance=attacker.balance,
                damage=0.0,
                target_username=target.username,
                message=f"{target.username} is protected by a shield. Your bomb was spent.",
            )

        damage = min(target.balance, self.config.bomb_damage)
        target.balance = max(0.0, target.balance - self.config.bomb_damage)
        self._record(db, target, "bomb", "coins", -damage, item_type="attacker", item_id=str(attacker_id))
        await db.flush()

        logger.info(f"[Economy] Bomb from {attacker_id} hit {target_id} for {damage}")
        return UseBombResponse(
            absorbed=False,
            bombs=attacker.bombs,
            balance=attacker.balance,
            damage=damage,
            target_username=target.username,
            message=f"Bomb dropped on {target.username}!",
        )

    async def activate_shield(self, db: AsyncSession, telegram_id: int) -> ShieldResponse:
        now = self.clock()
        user = await self._get_user(db, telegram_id, lock=True)
        if user.shields <= 0:
            raise InsufficientItems("You have no shields", code="NO_SHIELDS")

        user.shields -= 1
        # Re-arming starts a fresh window from now
        user.shield_active_until = now + self.config.shield_duration
        user.last_online = now
        self._record(db, user, "shield", "shield", -1)
        await db.flush()

        return ShieldResponse(shields=user.shields, shield_active_until=user.shield_active_until)

    # ============================================
    # DAILY REWARDS
    # ============================================

    async def daily_status(self, db: AsyncSession, telegram_id: int) -> DailyRewardsStatus:
        now = self.clock()
        user = await self._get_user(db, telegram_id)
        offset = self.config.day_boundary_offset
        streak = progression.effective_streak(
            user.daily_reward_streak, user.last_claimed_daily_reward_at, now, offset
        )
        return DailyRewardsStatus(
            streak=streak,
            last_claimed_date=user.last_claimed_daily_reward_at,
            can_claim=not progression.claimed_today(user.last_claimed_daily_reward_at, now, offset),
            next_reward_index=streak % len(self.config.daily_rewards),
            rewards=list(self.config.daily_rewards),
        )

    async def claim_daily(self, db: AsyncSession, telegram_id: int) -> DailyRewardClaimResponse:
        now = self.clock()
        offset = self.config.day_boundary_offset
        user = await self._get_user(db, telegram_id, lock=True)

        if progression.claimed_today(user.last_claimed_daily_reward_at, now, offset):
            raise AlreadyClaimedToday()

        streak = progression.effective_streak(
            user.daily_reward_streak, user.last_claimed_daily_reward_at, now, offset
        )
        index = streak % len(self.config.daily_rewards)
        reward = self.config.daily_rewards[index]

        self._grant(user, reward.kind, reward.amount)
        user.daily_reward_streak = streak + 1
        user.last_claimed_daily_reward_at = now
        user.last_online = now
        self._record(db, user, "daily", reward.kind, reward.amount, item_type="daily", item_id=str(index))
        await db.flush()

        return DailyRewardClaimResponse(
            reward=reward,
            reward_index=index,
            balance=user.balance,
            bombs=user.bombs,
            shields=user.shields,
            daily_reward_streak=user.daily_reward_streak,
        )


@lru_cache()
def get_engine() -> EconomyEngine:
    """Dependency: engine built from environment settings."""
    return EconomyEngine(
        EconomyConfig.from_settings(settings),
        TelegramMembershipChecker(settings.TELEGRAM_BOT_TOKEN, settings.SUBSCRIPTION_CHECK_TIMEOUT_SECONDS),
    )
