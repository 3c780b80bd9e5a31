from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from loguru import logger

from bot.middleware import AdminOnlyMiddleware, ThrottleMiddleware
from bot.routers import build_router
from data.store import create_store
from services.config_service import IntegritySettings
from services.notifier import Notifier
from services.orchestrator import EvaluatorOrchestrator, configure_logging


async def main() -> None:
    settings = IntegritySettings()
    configure_logging(settings.LOG_LEVEL)
    store = create_store(settings.DATABASE_URL, settings.DATABASE_PATH)
    notifier = Notifier()

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
    dp = Dispatcher()
    dp.message.middleware(AdminOnlyMiddleware(settings))
    dp.callback_query.middleware(AdminOnlyMiddleware(settings))
    dp.message.middleware(ThrottleMiddleware())
    dp.callback_query.middleware(ThrottleMiddleware())

    orchestrator = EvaluatorOrchestrator(store, settings, notifier)
    router = build_router(orchestrator, store, orchestrator.config_service)
    dp.include_router(router)

    await notifier.start(bot)
    orchestrator.start_schedule()
    logger.info("Bot starting")
    try:
        await dp.start_polling(bot)
    finally:
        await orchestrator.stop()
        await notifier.stop()
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
