from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from aiogram import F, Router
from aiogram.enums import ChatAction
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from predikto.bot import templates
from predikto.bot.keyboards import markets_menu, onboarding_menu
from predikto.core.container import ServiceHub
from predikto.core.errors import BotError

router = Router()
_hub: ServiceHub | None = None
logger = logging.getLogger(__name__)


def init_handlers(hub: ServiceHub) -> None:
    global _hub
    _hub = hub


def _require_hub() -> ServiceHub:
    if _hub is None:
        raise RuntimeError("Handlers not initialized")
    return _hub


def _user_id(event: Message | CallbackQuery) -> str | None:
    if event.from_user is None:
        return None
    return str(event.from_user.id)


async def _acquire_message_once(message: Message, ttl: int = 60 * 60 * 6) -> bool:
    hub = _require_hub()
    key = f"seen:message:{message.chat.id}:{message.message_id}"
    return await hub.cache.set_if_absent(key, ttl=ttl)


async def _acquire_callback_once(callback: CallbackQuery, ttl: int = 60 * 30) -> bool:
    hub = _require_hub()
    cb_id = (callback.id or "").strip()
    if not cb_id:
        return True
    return await hub.cache.set_if_absent(f"seen:callback:{cb_id}", ttl=ttl)


async def _typing_loop(bot, chat_id: int, stop: asyncio.Event) -> None:
    while not stop.is_set():
        with suppress(Exception):
            await bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        try:
            await asyncio.wait_for(stop.wait(), timeout=4.0)
        except asyncio.TimeoutError:
            pass


@router.message(Command("start"))
async def start_cmd(message: Message) -> None:
    hub = _require_hub()
    user_id = _user_id(message)
    if not user_id:
        return
    if await hub.wallet_service.has_wallet(user_id):
        await message.answer(templates.WELCOME_BACK)
        return
    await message.answer(templates.WELCOME_NEW, reply_markup=onboarding_menu())


@router.message(Command("help"))
async def help_cmd(message: Message) -> None:
    await message.answer(templates.help_text())


@router.message(Command("wallet"))
async def wallet_cmd(message: Message) -> None:
    hub = _require_hub()
    user_id = _user_id(message)
    if not user_id:
        return
    address = await hub.wallet_service.get_address(user_id)
    if not address:
        await message.answer(templates.NO_WALLET)
        return
    await message.answer(templates.wallet_template(address))


@router.message(Command("markets"))
async def markets_cmd(message: Message) -> None:
    hub = _require_hub()
    try:
        markets = await hub.markets_service.list_markets()
    except BotError as exc:
        logger.warning("markets_fetch_failed", extra={"event": "markets_fetch_failed", "error": str(exc)})
        await message.answer("Couldn't load markets right now. Try again in a minute.")
        return
    await message.answer(templates.markets_template(markets), reply_markup=markets_menu())


@router.callback_query(F.data == "markets:refresh")
async def markets_refresh_cb(callback: CallbackQuery) -> None:
    hub = _require_hub()
    await callback.answer()
    if callback.message is None:
        return
    try:
        markets = await hub.markets_service.list_markets(force=True)
    except BotError as exc:
        logger.warning("markets_fetch_failed", extra={"event": "markets_fetch_failed", "error": str(exc)})
        await callback.message.answer("Couldn't load markets right now. Try again in a minute.")
        return
    await callback.message.answer(templates.markets_template(markets), reply_markup=markets_menu())


@router.callback_query(F.data == "create_account")
async def create_account_cb(callback: CallbackQuery) -> None:
    hub = _require_hub()
    user_id = _user_id(callback)
    await callback.answer()
    if not user_id or callback.message is None or not await _acquire_callback_once(callback):
        return
    wallet = await hub.wallet_service.get_or_create_wallet(user_id)
    await callback.message.answer(templates.ACCOUNT_CREATED)
    await callback.message.answer(templates.wallet_template(wallet.address))
    await callback.message.answer(templates.ACCOUNT_NEXT_STEPS)


@router.callback_query(F.data == "import_account")
async def import_account_cb(callback: CallbackQuery) -> None:
    hub = _require_hub()
    user_id = _user_id(callback)
    await callback.answer()
    if not user_id or callback.message is None:
        return
    await hub.orchestrator.begin_import(user_id, callback.message.answer)


@router.message(F.text)
async def route_text(message: Message) -> None:
    hub = _require_hub()
    user_id = _user_id(message)
    text = (message.text or "").strip()
    if not user_id or not text or text.startswith("/"):
        return

    if not await _acquire_message_once(message):
        logger.info(
            "duplicate_message_ignored",
            extra={"event": "duplicate_message_ignored", "user_id": user_id},
        )
        return

    stop = asyncio.Event()
    typing_task = asyncio.create_task(_typing_loop(message.bot, message.chat.id, stop))
    try:
        outcome = await hub.orchestrator.handle_message(user_id, text, message.answer)
        logger.info("message_handled", extra={"event": "message_handled", "user_id": user_id, "outcome": outcome.value})
    except Exception as exc:  # noqa: BLE001
        logger.exception("message_failed", extra={"event": "message_failed", "user_id": user_id, "error": str(exc)})
        with suppress(Exception):
            await message.answer(templates.REQUEST_ERROR)
    finally:
        stop.set()
        typing_task.cancel()
        with suppress(asyncio.CancelledError):
            await typing_task
