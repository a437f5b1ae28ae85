"""
Zlink Bridge - Main Bot Entry Point

Runs the Telegram bot, one watcher task per configured chain and the
price refresh scheduler in a single asyncio process.
"""

import asyncio
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from config.chains import deposit_addresses, load_chain_configs
from config.config import BOT_TOKEN, validate_config
from config.logging import setup_logging
from config.sentry import init_sentry
from zlink.bot.handlers import (
    start,
    help_cmd,
    wallets,
    stats,
    claim,
    admin,
    errors,
)
from zlink.bot.middleware.admin import AdminMiddleware
from zlink.bot.middleware.database import DatabaseMiddleware
from zlink.bot.middleware.logging import LoggingMiddleware
from zlink.database.engine import check_connection, dispose_engine, get_session_maker
from zlink.services.container import Services, build_services
from zlink.services.messaging import TelegramMessenger
from zlink.tasks.chain_watchers import start_watchers, stop_watchers
from zlink.tasks.price_refresh import refresh_prices, schedule_price_refresh
from zlink.watchers import build_watcher

# Background tasks references
_watcher_tasks = []
_scheduler = None


async def setup_bot_commands(bot: Bot) -> None:
    """
    Setup bot commands menu

    Args:
        bot: Bot instance
    """
    commands = [
        BotCommand(command="start", description="🚀 Start the bot"),
        BotCommand(command="howtoget", description="💱 Deposit addresses, minimum and fee"),
        BotCommand(command="register", description="👛 Register a sending wallet"),
        BotCommand(command="mywallets", description="📋 Your registered wallets"),
        BotCommand(command="setaddress", description="📬 Save your payout address"),
        BotCommand(command="myaddress", description="📬 Show your payout address"),
        BotCommand(command="claim", description="🎟 Redeem a claim link"),
        BotCommand(command="mystats", description="📊 Your claims and payouts"),
        BotCommand(command="help", description="💡 Help"),
    ]

    await bot.set_my_commands(commands)
    logger.info("Bot commands menu initialized successfully")


def build_chain_watchers():
    """
    One watcher per valid chain config; a misconfigured chain is skipped
    and the others still run.
    """
    configs, problems = load_chain_configs()
    for problem in problems:
        logger.warning(f"⚠️ {problem}")

    watchers = []
    for cfg in configs:
        try:
            watchers.append(build_watcher(cfg))
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot start watcher for {cfg.chain.display_name}: {e}")

    if not watchers:
        logger.warning("No chain watchers configured - deposits will not be detected")
    return configs, watchers


async def on_startup(bot: Bot, services: Services, watchers: list, **kwargs) -> None:
    """Actions to perform on bot startup"""
    global _watcher_tasks, _scheduler

    logger.info("Starting Zlink Bridge Bot...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head
    if not await check_connection():
        logger.error("Database is unreachable - handlers will fail until it recovers")

    await setup_bot_commands(bot)

    # Warm the price cache before the first deposit needs it
    await refresh_prices(services.oracle)

    _watcher_tasks = start_watchers(watchers, services.orchestrator)
    logger.info(f"Chain watchers started: {', '.join(w.chain.display_name for w in watchers) or 'none'}")

    _scheduler = AsyncIOScheduler()
    schedule_price_refresh(_scheduler, services.oracle)
    _scheduler.start()
    logger.info("Price refresh scheduler started")

    bot_info = await bot.get_me()
    logger.info(f"Bot started: @{bot_info.username} (ID: {bot_info.id})")


async def on_shutdown(bot: Bot, services: Services, **kwargs) -> None:
    """Actions to perform on bot shutdown"""
    global _watcher_tasks, _scheduler

    logger.info("Shutting down Zlink Bridge Bot...")

    if _watcher_tasks:
        await stop_watchers(_watcher_tasks)
        _watcher_tasks = []
        logger.info("Chain watchers stopped")

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Price refresh scheduler stopped")

    await services.close()
    logger.info("Price oracle session closed")

    await dispose_engine()
    logger.info("Database connections closed")

    await bot.session.close()
    logger.info("Bot session closed")


async def main() -> None:
    """Main bot function"""

    setup_logging("bot")

    init_sentry()

    try:
        validate_config()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("Configuration validated successfully")

    bot = Bot(
        token=BOT_TOKEN,
        default=DefaultBotProperties(
            parse_mode=ParseMode.HTML, link_preview_is_disabled=True
        ),
    )

    services = build_services(get_session_maker(), messenger=TelegramMessenger(bot))
    configs, watchers = build_chain_watchers()

    # Workflow data is injected into handlers and startup/shutdown hooks by name
    dp = Dispatcher(
        storage=MemoryStorage(),
        services=services,
        watchers=watchers,
        deposit_addresses=deposit_addresses(configs),
    )

    # Register middleware (order matters!)
    # 1. Logging middleware (first to log everything)
    dp.message.middleware(LoggingMiddleware())
    dp.callback_query.middleware(LoggingMiddleware())

    # 2. Database middleware (provides session and user to handlers)
    dp.message.middleware(DatabaseMiddleware(services.session_maker))
    dp.callback_query.middleware(DatabaseMiddleware(services.session_maker))

    # 3. Admin middleware (checks admin rights for admin commands)
    dp.message.middleware(AdminMiddleware())
    dp.callback_query.middleware(AdminMiddleware())

    # Register routers (admin last: it takes operators' free text)
    dp.include_router(start.router)
    dp.include_router(help_cmd.router)
    dp.include_router(wallets.router)
    dp.include_router(stats.router)
    dp.include_router(claim.router)
    dp.include_router(admin.router)
    dp.include_router(errors.router)

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
        )
    except Exception as e:
        logger.exception(f"Critical error during bot operation: {e}")
        raise


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
