"""
TapCoin - Pydantic Schemas

Все схемы валидации в одном файле.
"""

from datetime import datetime, timezone
from typing import Literal, Optional, List
from pydantic import BaseModel, Field, field_validator

from .services.catalog import RewardKind, RewardSpec


# ============================================
# AUTH / SESSION
# ============================================

class TelegramAuthRequest(BaseModel):
    """Старт сессии через Telegram Mini App."""
    init_data: str
    referrer_id: Optional[int] = None


class AccountSnapshot(BaseModel):
    """Наблюдаемые поля аккаунта."""
    telegram_id: int
    username: str
    balance: float
    click_power: int
    income_per_second: float
    referral_count: int
    referral_earnings: float
    bombs: int
    shields: int
    shield_active_until: Optional[datetime] = None
    is_admin: bool = False

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    """Результат init: снапшот и начисленный офлайн-доход."""
    user: AccountSnapshot
    offline_earnings: float = 0.0
    created: bool = False
    bot_username: Optional[str] = None


class AuthResponse(SessionResponse):
    """Ответ авторизации."""
    token: str


# ============================================
# GAME - CLICK
# ============================================

class ClickRequest(BaseModel):
    """Пачка кликов."""
    clicks: int = Field(default=1, ge=1)


class BonusDrop(BaseModel):
    type: Literal["bomb", "shield"]


class ClickResponse(BaseModel):
    success: bool = True
    balance: float
    coins_earned: float
    bombs: int
    shields: int
    shield_active_until: Optional[datetime] = None
    bonus_dropped: Optional[BonusDrop] = None


# ============================================
# GAME - UPGRADES
# ============================================

UpgradeKind = Literal["passive", "click"]


class UpgradeOffer(BaseModel):
    """Апгрейд в каталоге с учётом уровня игрока."""
    id: int
    name: str
    description: str
    icon: str
    level: int
    price: int
    income: Optional[float] = None  # passive: доход на следующем уровне
    click_boost: Optional[int] = None  # click: прибавка за уровень
    can_afford: bool


class UpgradeListResponse(BaseModel):
    kind: UpgradeKind
    upgrades: List[UpgradeOffer]


class BuyUpgradeRequest(BaseModel):
    upgrade_id: int


class BuyUpgradeResponse(BaseModel):
    success: bool = True
    balance: float
    income_per_second: Optional[float] = None
    click_power: Optional[int] = None
    new_level: int
    price: int


# ============================================
# GAME - BOMBS / SHIELDS
# ============================================

class UseBombRequest(BaseModel):
    target_telegram_id: int


class UseBombResponse(BaseModel):
    success: bool = True
    absorbed: bool
    bombs: int
    balance: float
    damage: float
    target_username: str
    message: str


class ShieldResponse(BaseModel):
    success: bool = True
    shields: int
    shield_active_until: datetime


# ============================================
# GAME - DAILY REWARDS
# ============================================

class DailyRewardsStatus(BaseModel):
    streak: int
    last_claimed_date: Optional[datetime] = None
    can_claim: bool
    next_reward_index: int
    rewards: List[RewardSpec]


class DailyRewardClaimResponse(BaseModel):
    success: bool = True
    reward: RewardSpec
    reward_index: int
    balance: float
    bombs: int
    shields: int
    daily_reward_streak: int


# ============================================
# TASKS
# ============================================

class TaskDto(BaseModel):
    id: int
    title: str
    description: str
    channel_link: str
    reward: float
    completed: bool


class TasksResponse(BaseModel):
    tasks: List[TaskDto]


class TaskCheckRequest(BaseModel):
    task_id: int


class TaskCheckResponse(BaseModel):
    success: bool = True
    task_id: int
    reward: float
    balance: float
    bypassed: bool = False


# ============================================
# PROMO
# ============================================

class PromoRedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class PromoRedeemResponse(BaseModel):
    success: bool = True
    code: str
    reward_kind: RewardKind
    reward_amount: float
    balance: float
    bombs: int
    shields: int


# ============================================
# LEADERBOARD
# ============================================

class LeaderboardEntry(BaseModel):
    """Запись в лидерборде."""
    rank: int
    telegram_id: int
    username: str
    score: float
    highlighted: bool = False


class LeaderboardResponse(BaseModel):
    """Ответ лидерборда."""
    board: Literal["balance", "referrals"]
    leaders: List[LeaderboardEntry]


# ============================================
# ADMIN
# ============================================

class AdminTaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    description: str = ""
    channel_link: str = Field(min_length=1, max_length=512)
    channel_id: str = Field(min_length=1, max_length=128)
    reward: float = Field(ge=0)


class AdminTaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=256)
    description: Optional[str] = None
    channel_link: Optional[str] = Field(default=None, min_length=1, max_length=512)
    channel_id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    reward: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class AdminTaskDto(BaseModel):
    id: int
    title: str
    description: str
    channel_link: str
    channel_id: str
    reward: float
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Время с часовым поясом -> naive UTC (как хранится в БД)."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AdminPromoCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    # Число трактуется как монеты
    reward: float | RewardSpec
    max_uses: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)


class AdminPromoUpdate(BaseModel):
    reward: Optional[float | RewardSpec] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    clear_max_uses: bool = False
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None
    clear_expires_at: bool = False

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)


class AdminPromoDto(BaseModel):
    id: int
    code: str
    reward_kind: str
    reward_amount: float
    max_uses: Optional[int]
    current_uses: int
    is_active: bool
    expires_at: Optional[datetime]
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TopUser(BaseModel):
    username: str
    score: float


class AdminStatsResponse(BaseModel):
    users_total: int
    users_active_24h: int
    tasks_total: int
    tasks_active: int
    promo_codes_total: int
    promo_codes_active: int
    top_by_balance: List[TopUser]
    top_by_referrals: List[TopUser]
