from __future__ import annotations

from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder


def onboarding_menu() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="Create New Account", callback_data="create_account")
    kb.button(text="Import Existing Account", callback_data="import_account")
    kb.adjust(2)
    return kb.as_markup()


def markets_menu() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="Refresh", callback_data="markets:refresh")
    kb.adjust(1)
    return kb.as_markup()
