"""
TapCoin - Security Middleware

Rate limiting, Telegram initData validation, security headers.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Callable
from urllib.parse import parse_qs

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import settings

logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITER
# ============================================

def get_rate_limit_key(request: Request) -> str:
    """
    Ключ для rate limiting.
    Использует IP + dev/bearer идентичность (если есть).
    """
    ip = get_remote_address(request)
    identity = request.headers.get("X-Dev-User-Id") or request.headers.get("Authorization")

    if identity:
        digest = hashlib.sha256(identity.encode()).hexdigest()[:16]
        return f"{ip}:{digest}"
    return ip


limiter = Limiter(key_func=get_rate_limit_key, enabled=settings.RATE_LIMIT_ENABLED)


# ============================================
# TELEGRAM VALIDATION
# ============================================

def telegram_secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def validate_telegram_init_data(
    init_data: str,
    bot_token: str | None = None,
    max_age_seconds: int | None = None,
) -> dict | None:
    """
    Валидация Telegram initData.

    Официальная документация:
    https://core.telegram.org/bots/webapps#validating-data-received-via-the-mini-app

    Returns:
        {"user": {...}, "start_param": str | None} или None если невалидно
    """
    bot_token = settings.TELEGRAM_BOT_TOKEN if bot_token is None else bot_token
    max_age = settings.INIT_DATA_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds

    if not bot_token:
        logger.error("[Security] TELEGRAM_BOT_TOKEN is not configured")
        return None

    try:
        parsed = parse_qs(init_data, strict_parsing=True)

        received_hash = parsed.get("hash", [None])[0]
        if not received_hash:
            logger.warning("[Security] No hash in initData")
            return None

        auth_date = int(parsed.get("auth_date", [0])[0])
        age = time.time() - auth_date
        if age > max_age:
            logger.warning(f"[Security] initData too old: {age:.0f}s")
            return None

        # data_check_string: все поля кроме hash, отсортированы по ключу
        data_check_string = "\n".join(
            f"{key}={parsed[key][0]}" for key in sorted(parsed.keys()) if key != "hash"
        )

        calculated_hash = hmac.new(
            telegram_secret_key(bot_token),
            data_check_string.encode(),
            hashlib.sha256,
        ).hexdigest()

        if not hmac.compare_digest(calculated_hash, received_hash):
            logger.warning("[Security] initData hash mismatch")
            return None

        user_json = parsed.get("user", [None])[0]
        if not user_json:
            logger.warning("[Security] No user in initData")
            return None

        user_data = json.loads(user_json)
        if not isinstance(user_data, dict) or "id" not in user_data:
            logger.warning("[Security] initData user has no id")
            return None

    except (ValueError, TypeError) as e:
        logger.warning(f"[Security] Telegram validation error: {e}")
        return None

    logger.info(f"[Security] Telegram auth OK: {user_data.get('id')}")
    return {
        "user": user_data,
        "start_param": parsed.get("start_param", [None])[0],
    }


# ============================================
# SECURITY HEADERS MIDDLEWARE
# ============================================

async def add_security_headers(request: Request, call_next: Callable):
    """Добавляет security headers ко всем ответам."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # CSP (для production настройте под ваш домен)
    if not settings.DEBUG:
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://telegram.org; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: https:; "
            "connect-src 'self' https://api.telegram.org"
        )

    return response
