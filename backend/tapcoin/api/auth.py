"""
TapCoin - Authentication API

Авторизация через Telegram Mini App и старт игровой сессии.
"""

import logging
import time
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db, get_redis
from ..middleware.security import validate_telegram_init_data
from ..models import User
from ..schemas import AccountSnapshot, AuthResponse, TelegramAuthRequest
from ..services.economy import EconomyEngine, get_engine, snapshot
from ..services.referrals import extract_referrer_id, pop_pending_referrer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ============================================
# JWT HELPERS
# ============================================

def create_jwt_token(user_id: int) -> str:
    """Создаёт JWT токен."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + settings.JWT_EXPIRE_HOURS * 3600,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Optional[int]:
    """Проверяет JWT токен и возвращает user_id."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM]
        )
        return int(payload["sub"])
    except jwt.ExpiredSignatureError:
        logger.info("[Auth] Token expired")
        return None
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        logger.warning(f"[Auth] Invalid token: {e}")
        return None


# ============================================
# DEPENDENCY: GET CURRENT USER
# ============================================

async def get_current_user(
    authorization: Optional[str] = Header(None),
    x_dev_user_id: Optional[str] = Header(None, alias="X-Dev-User-Id"),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
) -> User:
    """
    Dependency для получения текущего пользователя.

    1. Если включен DEV_AUTH и передан X-Dev-User-Id -> входим как разработчик.
    2. Иначе -> требуем стандартный Bearer токен.
    """

    # --- 1. DEV MODE: Controlled bypass ---
    if x_dev_user_id is not None:
        if not settings.dev_auth_active:
            raise HTTPException(status_code=403, detail="Development authentication is disabled")

        try:
            telegram_id = int(x_dev_user_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid X-Dev-User-Id header")

        if telegram_id not in settings.dev_auth_allowlist_ids:
            raise HTTPException(status_code=403, detail="Dev user id is not allowlisted")

        result = await db.execute(select(User).where(User.telegram_id == telegram_id))
        user = result.scalar_one_or_none()
        if user is None:
            logger.info(f"[Auth] Dev user {telegram_id} not found, creating...")
            await engine.start_session(db, telegram_id, "dev_user")
            result = await db.execute(select(User).where(User.telegram_id == telegram_id))
            user = result.scalar_one()

        return user

    # --- 2. PROD MODE: Bearer token ---
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    user_id = verify_jwt_token(authorization[7:])
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: только администраторы (ADMIN_IDS или is_admin)."""
    if not (user.is_admin or user.telegram_id in settings.admin_ids):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ============================================
# REFERRAL: Redis Fallback
# ============================================

async def resolve_pending_referrer(telegram_id: int) -> Optional[int]:
    """
    Реферер, сохранённый ботом в Redis.

    Пользователь мог открыть бота по ссылке /start <id>, а Mini App запустить
    позже без start_param. Недоступный Redis не мешает авторизации.
    """
    try:
        redis = await get_redis()
        referrer_id = await pop_pending_referrer(redis, telegram_id)
    except (RedisError, OSError) as e:
        logger.warning(f"[Auth] Redis referral check failed: {e}")
        return None

    if referrer_id:
        logger.info(f"[Auth] Found pending referrer {referrer_id} for telegram_id={telegram_id}")
    return referrer_id


# ============================================
# ENDPOINTS
# ============================================

@router.post("/telegram", response_model=AuthResponse)
async def auth_telegram(
    request: TelegramAuthRequest,
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """
    Авторизация через Telegram Mini App.

    Создаёт аккаунт при первом входе (с реферальной наградой), иначе
    начисляет офлайн-доход.
    """
    init_data = validate_telegram_init_data(request.init_data)
    if not init_data:
        raise HTTPException(status_code=401, detail="Invalid Telegram authentication data")

    telegram_user = init_data["user"]
    telegram_id = int(telegram_user["id"])
    username = telegram_user.get("username") or telegram_user.get("first_name")

    referrer_id = request.referrer_id or extract_referrer_id(init_data.get("start_param"))
    if referrer_id is None:
        referrer_id = await resolve_pending_referrer(telegram_id)

    session = await engine.start_session(db, telegram_id, username, referrer_id)

    result = await db.execute(select(User.id).where(User.telegram_id == telegram_id))
    token = create_jwt_token(result.scalar_one())

    logger.info(f"[Auth] Telegram user {telegram_id} authenticated (new={session.created})")
    return AuthResponse(
        token=token,
        user=session.user,
        offline_earnings=session.offline_earnings,
        created=session.created,
        bot_username=settings.TELEGRAM_BOT_USERNAME,
    )


@router.get("/me", response_model=AccountSnapshot)
async def get_me(user: User = Depends(get_current_user)):
    """Получить данные текущего пользователя."""
    return snapshot(user)
