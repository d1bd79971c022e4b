"""
TapCoin - Database Models

Все SQLAlchemy модели в одном файле.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Float,
    ForeignKey, Text, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship

from .database import Base


# ============================================
# USER
# ============================================

class User(Base):
    """Игровой аккаунт."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(128), nullable=False, default="Unknown")

    # Экономика
    balance = Column(Float, nullable=False, default=0.0, index=True)
    click_power = Column(Integer, nullable=False, default=1)
    income_per_second = Column(Float, nullable=False, default=0.0)

    # Бонусные предметы
    bombs = Column(Integer, nullable=False, default=0)
    shields = Column(Integer, nullable=False, default=0)
    shield_active_until = Column(DateTime, nullable=True)

    # Ежедневные награды
    daily_reward_streak = Column(Integer, nullable=False, default=0)
    last_claimed_daily_reward_at = Column(DateTime, nullable=True)

    # Рефералы
    referred_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    referral_count = Column(Integer, nullable=False, default=0, index=True)
    referral_earnings = Column(Float, nullable=False, default=0.0)

    # Статус
    is_admin = Column(Boolean, nullable=False, default=False)

    # Метаданные
    created_at = Column(DateTime, default=datetime.utcnow)
    last_online = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    referred_by = relationship("User", remote_side=[id], backref="referrals")
    upgrades = relationship("UserUpgrade", back_populates="user", cascade="all, delete-orphan", lazy="selectin")
    task_completions = relationship("TaskCompletion", back_populates="user", cascade="all, delete-orphan")
    promo_redemptions = relationship("PromoRedemption", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        CheckConstraint("click_power >= 1", name="ck_users_click_power_positive"),
        CheckConstraint("bombs >= 0 AND shields >= 0", name="ck_users_items_non_negative"),
    )

    def upgrade_levels(self, kind: str) -> dict[int, int]:
        """upgrade_id -> level для указанного вида апгрейдов."""
        return {u.upgrade_id: u.level for u in self.upgrades if u.kind == kind}

    def get_upgrade_level(self, kind: str, upgrade_id: int) -> int:
        return self.upgrade_levels(kind).get(upgrade_id, 0)


# ============================================
# UPGRADES
# ============================================

class UserUpgrade(Base):
    """Уровень купленного апгрейда."""

    __tablename__ = "user_upgrades"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(String(16), nullable=False)  # 'passive' | 'click'
    upgrade_id = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False, default=0)

    user = relationship("User", back_populates="upgrades")

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "upgrade_id", name="uq_user_upgrade_kind_id"),
    )


# ============================================
# TASKS
# ============================================

class Task(Base):
    """Задание: подписка на канал."""

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=False, default="")
    channel_link = Column(String(512), nullable=False)
    channel_id = Column(String(128), nullable=False)  # ключ для getChatMember
    reward = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class TaskCompletion(Base):
    """Выполненное задание (одна награда на аккаунт)."""

    __tablename__ = "task_completions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    reward = Column(Float, nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="task_completions")

    __table_args__ = (
        UniqueConstraint("user_id", "task_id", name="uq_task_completion_user_task"),
    )


# ============================================
# PROMO CODES
# ============================================

class PromoCode(Base):
    """Промокод."""

    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # всегда UPPERCASE

    reward_kind = Column(String(16), nullable=False, default="coins")  # 'coins' | 'bomb' | 'shield'
    reward_amount = Column(Float, nullable=False)

    max_uses = Column(Integer, nullable=True)  # NULL = без лимита
    current_uses = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)  # NULL = бессрочно

    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PromoRedemption(Base):
    """Активация промокода аккаунтом."""

    __tablename__ = "promo_redemptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(64), nullable=False)
    redeemed_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="promo_redemptions")

    __table_args__ = (
        UniqueConstraint("user_id", "promo_code_id", name="uq_promo_redemption_user_code"),
    )


# ============================================
# TRANSACTION
# ============================================

class Transaction(Base):
    """Журнал изменений баланса и инвентаря."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)

    type = Column(String(32), nullable=False)  # 'purchase', 'task', 'promo', 'daily', 'referral', 'bomb', 'offline'
    currency = Column(String(16), nullable=False)  # 'coins', 'bomb', 'shield'
    amount = Column(Float, nullable=False)

    item_type = Column(String(32), nullable=True)
    item_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="transactions")
