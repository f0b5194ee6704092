from __future__ import annotations

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from aiohttp import web

from predikto.bot.handlers import init_handlers, router
from predikto.core.config import Settings, get_settings
from predikto.core.container import ServiceHub, build_hub
from predikto.core.logging import setup_logging
from predikto.workers.scheduler import WorkerScheduler

logger = logging.getLogger(__name__)


def build_dispatcher(settings: Settings) -> tuple[Bot, Dispatcher, ServiceHub, WorkerScheduler]:
    bot = Bot(settings.telegram_bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()
    dp.include_router(router)
    hub = build_hub(bot, settings)
    init_handlers(hub)
    return bot, dp, hub, WorkerScheduler(hub)


async def run_polling(settings: Settings) -> None:
    bot, dp, hub, scheduler = build_dispatcher(settings)
    scheduler.start()
    logger.info("bot_started", extra={"event": "bot_started"})
    try:
        await bot.delete_webhook(drop_pending_updates=False)
        await dp.start_polling(bot)
    finally:
        scheduler.stop()
        await hub.close()
        await bot.session.close()


def build_webhook_app(settings: Settings) -> web.Application:
    bot, dp, hub, scheduler = build_dispatcher(settings)

    async def on_startup(bot: Bot) -> None:
        scheduler.start()
        await bot.set_webhook(settings.webhook_url(), secret_token=settings.webhook_secret or None)
        logger.info("webhook_set", extra={"event": "webhook_set"})

    async def on_shutdown(bot: Bot) -> None:
        scheduler.stop()
        await hub.close()

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    app = web.Application()
    SimpleRequestHandler(dispatcher=dp, bot=bot, secret_token=settings.webhook_secret or None).register(
        app, path=settings.webhook_path
    )
    setup_application(app, dp, bot=bot)
    return app


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    if settings.bot_mode == "webhook":
        if not settings.webhook_base_url:
            raise RuntimeError("WEBHOOK_BASE_URL is required in webhook mode")
        web.run_app(build_webhook_app(settings), host=settings.webapp_host, port=settings.webapp_port)
        return
    asyncio.run(run_polling(settings))


if __name__ == "__main__":
    main()
