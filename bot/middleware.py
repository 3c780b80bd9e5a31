from __future__ import annotations

import time
from typing import Callable, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery

from bot.messages import access_denied_text
from services.config_service import IntegritySettings


def _is_admin(user_id: int, settings: IntegritySettings) -> bool:
    ids = {int(x.strip()) for x in settings.ADMIN_TELEGRAM_IDS.split(",") if x.strip()}
    return user_id in ids


def _event_user_id(event) -> int | None:
    if isinstance(event, (Message, CallbackQuery)) and event.from_user:
        return event.from_user.id
    return None


class AdminOnlyMiddleware(BaseMiddleware):
    def __init__(self, settings: IntegritySettings) -> None:
        self.settings = settings

    async def __call__(self, handler: Callable, event, data) -> Awaitable:
        user_id = _event_user_id(event)
        if user_id is not None and not _is_admin(user_id, self.settings):
            if isinstance(event, Message):
                await event.answer(access_denied_text())
            elif isinstance(event, CallbackQuery):
                await event.answer(access_denied_text(), show_alert=True)
            return
        return await handler(event, data)


class ThrottleMiddleware(BaseMiddleware):
    def __init__(self, cooldown: float = 1.0) -> None:
        self.cooldown = cooldown
        self._last: dict[int, float] = {}

    async def __call__(self, handler: Callable, event, data) -> Awaitable:
        user_id = _event_user_id(event)
        if user_id:
            now = time.time()
            if now - self._last.get(user_id, 0) < self.cooldown:
                if isinstance(event, CallbackQuery):
                    await event.answer("Slow down.")
                return
            self._last[user_id] = now
        return await handler(event, data)
