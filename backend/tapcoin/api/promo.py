"""Promo codes API."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import User
from ..schemas import PromoRedeemRequest, PromoRedeemResponse
from ..services.economy import EconomyEngine, get_engine
from .auth import get_current_user


router = APIRouter(prefix="/promo", tags=["promo"])


@router.post("/redeem", response_model=PromoRedeemResponse)
async def redeem_promo(
    request: PromoRedeemRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Активировать промокод (регистр и пробелы не важны)."""
    return await engine.redeem_promo(db, user.telegram_id, request.code)
