"""
TapCoin - Telegram Bot

Обработчик команд бота и точка входа в Mini App.
"""

import asyncio
import logging

from aiogram import Bot, Dispatcher, F, types
from aiogram.filters import Command
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo
from redis.exceptions import RedisError

from tapcoin.config import settings
from tapcoin.database import close_redis, get_redis
from tapcoin.services.referrals import extract_referrer_id_from_start_text, store_pending_referrer


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


dp = Dispatcher()


def build_start_keyboard(webapp_url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text=f"Играть в {settings.APP_NAME}",
                    web_app=WebAppInfo(url=webapp_url),
                )
            ],
        ]
    )


@dp.message(Command("start"))
async def cmd_start(message: types.Message):
    """
    Обработчик /start и /start <referrer_id>.
    Открывает Web App игры; реферер сохраняется в Redis до первого входа.
    """
    referrer_id = extract_referrer_id_from_start_text(message.text)
    webapp_url = settings.WEBAPP_URL

    if referrer_id and referrer_id != message.from_user.id:
        logger.info(f"User {message.from_user.id} has referrer: {referrer_id}")
        webapp_url += f"?startapp={referrer_id}"
        try:
            redis = await get_redis()
            await store_pending_referrer(redis, message.from_user.id, referrer_id, source="polling-bot")
        except (RedisError, OSError) as exc:
            logger.warning(f"Referral fallback save failed for {message.from_user.id}: {exc}")

    welcome_text = (
        f"Привет, {message.from_user.first_name}!\n\n"
        f"<b>{settings.APP_NAME}</b> — тапай монету и богатей!\n\n"
        f"<b>Как играть:</b>\n"
        f"• Тапай монету, чтобы зарабатывать\n"
        f"• Покупай апгрейды для пассивного дохода\n"
        f"• Забирай ежедневные награды\n"
        f"• Приглашай друзей и получай бонусы\n\n"
        f"Нажми кнопку ниже, чтобы начать!"
    )

    await message.answer(
        welcome_text,
        reply_markup=build_start_keyboard(webapp_url),
        parse_mode="HTML",
    )


@dp.message(F.text)
async def fallback(message: types.Message):
    """Любое другое сообщение: подсказка."""
    await message.answer("Используйте /start, чтобы открыть игру.")


async def main():
    """Запуск бота."""
    logger.info(f"Starting {settings.APP_NAME} Bot...")
    logger.info(f"Web App URL: {settings.WEBAPP_URL}")

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
    await bot.delete_webhook(drop_pending_updates=True)

    logger.info("Bot is running!")
    try:
        await dp.start_polling(bot)
    finally:
        await close_redis()
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped")
