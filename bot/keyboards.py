from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup


def main_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="▶️ Evaluate now", callback_data="evaluate")],
        [InlineKeyboardButton(text="✅ Status", callback_data="status")],
        [InlineKeyboardButton(text="🚩 Flagged", callback_data="flagged")],
        [InlineKeyboardButton(text="⚙️ Settings", callback_data="settings")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def settings_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="Provider", callback_data="set_provider")],
        [InlineKeyboardButton(text="Exit tie-break", callback_data="set_tie_break")],
        [InlineKeyboardButton(text="HORIZON_DAYS", callback_data="prompt:HORIZON_DAYS")],
        [InlineKeyboardButton(text="MAX_CONCURRENCY", callback_data="prompt:MAX_CONCURRENCY")],
        [InlineKeyboardButton(text="MAX_CANDLE_GAP_SECONDS", callback_data="prompt:MAX_CANDLE_GAP_SECONDS")],
        [InlineKeyboardButton(text="Back", callback_data="main_menu")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def provider_menu() -> InlineKeyboardMarkup:
    names = ["stub", "csv", "binance", "bridge", "mt5", "routed"]
    buttons = [[InlineKeyboardButton(text=n, callback_data=f"provider:{n}")] for n in names]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def tie_break_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="adverse (stop loss wins)", callback_data="tie_break:adverse")],
        [InlineKeyboardButton(text="flag as unverified", callback_data="tie_break:flag")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)
