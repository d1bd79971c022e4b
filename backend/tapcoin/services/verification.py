"""
External truth the economy depends on.

Channel membership is a real network call (Telegram getChatMember) and is
fallible and slow: it is bounded by a timeout and reports a tri-state.
Promo validity is plain data evaluated locally.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime
from typing import Protocol

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from ..models import PromoCode

logger = logging.getLogger(__name__)

MEMBER_STATUSES = {"member", "administrator", "creator"}


class MembershipStatus(str, enum.Enum):
    MEMBER = "member"
    NOT_MEMBER = "not_member"
    UNKNOWN = "unknown"


class MembershipChecker(Protocol):
    async def check(self, channel_id: str, telegram_id: int) -> MembershipStatus:
        ...


class TelegramMembershipChecker:
    """Asks the Bot API whether ``telegram_id`` is subscribed to ``channel_id``."""

    def __init__(self, bot_token: str, timeout: float = 5.0):
        self.bot_token = bot_token
        self.timeout = timeout

    async def check(self, channel_id: str, telegram_id: int) -> MembershipStatus:
        if not self.bot_token:
            logger.warning("[Tasks] Telegram bot token is not configured, membership unknown")
            return MembershipStatus.UNKNOWN

        bot = None
        try:
            bot = Bot(token=self.bot_token)
            member = await asyncio.wait_for(
                bot.get_chat_member(channel_id, telegram_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[Tasks] getChatMember timed out: channel={channel_id} user={telegram_id}")
            return MembershipStatus.UNKNOWN
        except TelegramAPIError as exc:
            logger.warning(f"[Tasks] getChatMember failed: channel={channel_id} user={telegram_id}: {exc}")
            return MembershipStatus.UNKNOWN
        except Exception as exc:
            logger.warning(f"[Tasks] Subscription check error: channel={channel_id} user={telegram_id}: {exc}")
            return MembershipStatus.UNKNOWN
        finally:
            if bot is not None:
                await bot.session.close()

        if member.status in MEMBER_STATUSES:
            return MembershipStatus.MEMBER
        return MembershipStatus.NOT_MEMBER


def normalize_promo_code(code: str) -> str:
    return code.strip().upper()


def is_promo_valid(promo: PromoCode, now: datetime) -> bool:
    """Active, not expired and under its use cap."""
    if not promo.is_active:
        return False
    if promo.expires_at is not None and now > promo.expires_at:
        return False
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        return False
    return True
