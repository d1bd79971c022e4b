"""
TapCoin - Game API

Клики, апгрейды, бомбы/щиты, ежедневные награды.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..middleware.security import limiter
from ..models import User
from ..schemas import (
    BuyUpgradeRequest,
    BuyUpgradeResponse,
    ClickRequest,
    ClickResponse,
    DailyRewardClaimResponse,
    DailyRewardsStatus,
    ShieldResponse,
    UpgradeKind,
    UpgradeListResponse,
    UseBombRequest,
    UseBombResponse,
)
from ..services.economy import EconomyEngine, get_engine
from .auth import get_current_user


router = APIRouter(prefix="/game", tags=["game"])


# ============================================
# CLICKS
# ============================================

@router.post("/click", response_model=ClickResponse)
@limiter.limit(f"{settings.RATE_LIMIT_GAME}/minute")
async def click(
    request: Request,
    payload: ClickRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Пачка кликов: баланс += click_power * clicks, шанс бонуса."""
    return await engine.click(db, user.telegram_id, payload.clicks)


# ============================================
# UPGRADES
# ============================================

@router.get("/upgrades/{kind}", response_model=UpgradeListResponse)
async def list_upgrades(
    kind: UpgradeKind,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Каталог апгрейдов с уровнями и ценами игрока."""
    return await engine.list_upgrades(db, user.telegram_id, kind)


@router.post("/upgrades/{kind}/buy", response_model=BuyUpgradeResponse)
async def buy_upgrade(
    kind: UpgradeKind,
    payload: BuyUpgradeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Покупка следующего уровня апгрейда."""
    return await engine.buy_upgrade(db, user.telegram_id, kind, payload.upgrade_id)


# ============================================
# BOMBS / SHIELDS
# ============================================

@router.post("/bomb", response_model=UseBombResponse)
async def use_bomb(
    payload: UseBombRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Сбросить бомбу на другого игрока."""
    return await engine.use_bomb(db, user.telegram_id, payload.target_telegram_id)


@router.post("/shield", response_model=ShieldResponse)
async def activate_shield(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Активировать щит."""
    return await engine.activate_shield(db, user.telegram_id)


# ============================================
# DAILY REWARDS
# ============================================

@router.get("/daily-rewards", response_model=DailyRewardsStatus)
async def daily_rewards_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.daily_status(db, user.telegram_id)


@router.post("/daily-rewards/claim", response_model=DailyRewardClaimResponse)
async def claim_daily_reward(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Забрать награду дня (раз в игровые сутки)."""
    return await engine.claim_daily(db, user.telegram_id)
