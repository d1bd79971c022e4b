"""
TapCoin - Leaderboard API

Публичные лидерборды по балансу и рефералам.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import LeaderboardResponse
from ..services.leaderboard import build_leaderboard


router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/{board}", response_model=LeaderboardResponse)
async def get_leaderboard(
    board: Literal["balance", "referrals"],
    limit: int = Query(default=100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Получить лидерборд.
    board: 'balance' (топ-3 выделены) | 'referrals' (топ-1 выделен)
    """
    return await build_leaderboard(db, board, limit)
