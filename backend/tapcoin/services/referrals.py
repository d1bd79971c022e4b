"""
Referral helpers shared across API and bot entrypoints.

A referral link carries the inviter's telegram id, either bare
(`startapp=123`) or prefixed (`/start ref_123`).
"""

import logging

from ..config import settings

logger = logging.getLogger(__name__)

PENDING_REFERRAL_KEY = "ref_pending:{telegram_id}"


def extract_referrer_id(raw_value: str | None) -> int | None:
    """Extracts the inviter telegram id from a raw start parameter."""
    if not raw_value:
        return None

    value = raw_value.strip()
    if value.lower().startswith("ref_"):
        value = value[4:].strip()

    if not value.isdigit():
        return None

    referrer_id = int(value)
    return referrer_id if referrer_id > 0 else None


def extract_referrer_id_from_start_text(text: str | None) -> int | None:
    """Extracts the inviter id from `/start <id>` bot command text."""
    if not text:
        return None

    parts = text.split(maxsplit=1)
    if len(parts) < 2:
        return None

    return extract_referrer_id(parts[1])


async def store_pending_referrer(redis, telegram_id: int, referrer_id: int, *, source: str) -> bool:
    """Stores the inviter in Redis so a later Mini App session can pick it up."""
    if referrer_id == telegram_id:
        return False

    await redis.set(
        PENDING_REFERRAL_KEY.format(telegram_id=telegram_id),
        str(referrer_id),
        ex=settings.PENDING_REFERRAL_TTL_HOURS * 3600,
    )
    logger.info(f"[Referral:{source}] Stored pending referrer {referrer_id} for telegram_id={telegram_id}")
    return True


async def pop_pending_referrer(redis, telegram_id: int) -> int | None:
    """Reads and clears a pending inviter stored by the bot."""
    key = PENDING_REFERRAL_KEY.format(telegram_id=telegram_id)
    value = await redis.get(key)
    if value is None:
        return None

    await redis.delete(key)
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return extract_referrer_id(value)
