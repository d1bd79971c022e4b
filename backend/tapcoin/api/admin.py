"""
TapCoin - Admin API

Управление заданиями и промокодами, статистика.
Доступ только для администраторов (ADMIN_IDS).
"""

import logging
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..errors import NotFound
from ..models import PromoCode, Task, User
from ..schemas import (
    AdminPromoCreate,
    AdminPromoDto,
    AdminPromoUpdate,
    AdminStatsResponse,
    AdminTaskCreate,
    AdminTaskDto,
    AdminTaskUpdate,
    TopUser,
)
from ..services.catalog import RewardSpec
from ..services.economy import utcnow
from ..services.verification import normalize_promo_code
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _reward_fields(reward: float | RewardSpec) -> tuple[str, float]:
    # Число трактуется как монеты
    if isinstance(reward, RewardSpec):
        return reward.kind, reward.amount
    return "coins", float(reward)


# ============================================
# TASKS
# ============================================

@router.get("/tasks", response_model=List[AdminTaskDto])
async def list_tasks(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Task).order_by(desc(Task.created_at), desc(Task.id)))
    return result.scalars().all()


@router.post("/tasks", response_model=AdminTaskDto, status_code=201)
async def create_task(
    request: AdminTaskCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    task = Task(
        title=request.title,
        description=request.description,
        channel_link=request.channel_link,
        channel_id=request.channel_id,
        reward=request.reward,
        is_active=True,
        created_by=admin.telegram_id,
        created_at=utcnow(),
    )
    db.add(task)
    await db.flush()
    logger.info(f"[Admin] Task {task.id} created by {admin.telegram_id}")
    return task


@router.patch("/tasks/{task_id}", response_model=AdminTaskDto)
async def update_task(
    task_id: int,
    request: AdminTaskUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found", code="TASK_NOT_FOUND")

    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(task, field, value)

    await db.flush()
    logger.info(f"[Admin] Task {task.id} updated by {admin.telegram_id}")
    return task


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(delete(Task).where(Task.id == task_id))
    if result.rowcount == 0:
        raise NotFound("Task not found", code="TASK_NOT_FOUND")

    logger.info(f"[Admin] Task {task_id} deleted by {admin.telegram_id}")
    return {"success": True}


# ============================================
# PROMO CODES
# ============================================

@router.get("/promo", response_model=List[AdminPromoDto])
async def list_promo_codes(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(PromoCode).order_by(desc(PromoCode.created_at), desc(PromoCode.id)))
    return result.scalars().all()


@router.post("/promo", response_model=AdminPromoDto, status_code=201)
async def create_promo_code(
    request: AdminPromoCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    code = normalize_promo_code(request.code)
    if not code:
        raise HTTPException(status_code=400, detail={"code": "PROMO_CODE_EMPTY", "message": "Promo code is empty"})

    reward_kind, reward_amount = _reward_fields(request.reward)
    promo = PromoCode(
        code=code,
        reward_kind=reward_kind,
        reward_amount=reward_amount,
        max_uses=request.max_uses,
        current_uses=0,
        is_active=True,
        expires_at=request.expires_at,
        created_by=admin.telegram_id,
        created_at=utcnow(),
    )
    db.add(promo)

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail={"code": "PROMO_CODE_EXISTS", "message": "Promo code already exists"},
        )

    logger.info(f"[Admin] Promo {code} created by {admin.telegram_id}")
    return promo


@router.patch("/promo/{promo_id}", response_model=AdminPromoDto)
async def update_promo_code(
    promo_id: int,
    request: AdminPromoUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    promo = await db.get(PromoCode, promo_id)
    if promo is None:
        raise NotFound("Promo code not found", code="PROMO_NOT_FOUND")

    if request.reward is not None:
        promo.reward_kind, promo.reward_amount = _reward_fields(request.reward)
    if request.clear_max_uses:
        promo.max_uses = None
    elif request.max_uses is not None:
        promo.max_uses = request.max_uses
    if request.is_active is not None:
        promo.is_active = request.is_active
    if request.clear_expires_at:
        promo.expires_at = None
    elif request.expires_at is not None:
        promo.expires_at = request.expires_at

    await db.flush()
    logger.info(f"[Admin] Promo {promo.code} updated by {admin.telegram_id}")
    return promo


@router.delete("/promo/{promo_id}")
async def delete_promo_code(
    promo_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(delete(PromoCode).where(PromoCode.id == promo_id))
    if result.rowcount == 0:
        raise NotFound("Promo code not found", code="PROMO_NOT_FOUND")

    logger.info(f"[Admin] Promo {promo_id} deleted by {admin.telegram_id}")
    return {"success": True}


# ============================================
# STATS
# ============================================

@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Сводка: пользователи, активность за 24ч, задания, промокоды, топ-10."""
    day_ago = utcnow() - timedelta(hours=24)

    async def count(stmt) -> int:
        return (await db.execute(stmt)).scalar_one()

    top_balance = await db.execute(
        select(User.username, User.balance).order_by(desc(User.balance), User.id).limit(10)
    )
    top_referrals = await db.execute(
        select(User.username, User.referral_count).order_by(desc(User.referral_count), User.id).limit(10)
    )

    return AdminStatsResponse(
        users_total=await count(select(func.count(User.id))),
        users_active_24h=await count(select(func.count(User.id)).where(User.last_online >= day_ago)),
        tasks_total=await count(select(func.count(Task.id))),
        tasks_active=await count(select(func.count(Task.id)).where(Task.is_active.is_(True))),
        promo_codes_total=await count(select(func.count(PromoCode.id))),
        promo_codes_active=await count(select(func.count(PromoCode.id)).where(PromoCode.is_active.is_(True))),
        top_by_balance=[TopUser(username=name, score=score) for name, score in top_balance.all()],
        top_by_referrals=[TopUser(username=name, score=score) for name, score in top_referrals.all()],
    )
