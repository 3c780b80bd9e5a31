from __future__ import annotations

from aiogram import Router
from aiogram.filters import CommandStart, Command
from aiogram.types import Message, CallbackQuery
from loguru import logger

from bot import keyboards, messages
from data.store import BaseStore
from engine.state import RunnerStateStore
from services.config_service import ConfigService
from services.orchestrator import EvaluatorOrchestrator


def build_router(
    orchestrator: EvaluatorOrchestrator,
    store: BaseStore,
    config_service: ConfigService,
) -> Router:
    router = Router()
    pending_setting: dict[int, str] = {}
    state_store = RunnerStateStore(store)

    async def run_evaluation(message: Message) -> None:
        await message.answer("Evaluating open signals...")
        try:
            summary = await orchestrator.run_once()
        except Exception as exc:
            logger.exception("Manual evaluation failed: {}", exc)
            await message.answer("Evaluation failed. See logs.")
            return
        await message.answer(messages.summary_text(summary.as_dict()), reply_markup=keyboards.main_menu())

    def status_body() -> str:
        return messages.status_text(config_service.load(), state_store.load(), store.count_by_status())

    def apply_setting(key: str, value: str) -> str:
        try:
            config_service.update(key, value)
        except ValueError as exc:
            return f"Invalid setting: {exc}"
        logger.info("Setting {} updated to {}", key.upper(), value)
        return f"Updated {key.upper()}"

    @router.message(CommandStart())
    async def start_cmd(message: Message) -> None:
        await message.answer(messages.main_menu_text(), reply_markup=keyboards.main_menu())

    @router.message(Command("evaluate"))
    async def evaluate_cmd(message: Message) -> None:
        await run_evaluation(message)

    @router.message(Command("status"))
    async def status_cmd(message: Message) -> None:
        await message.answer(status_body())

    @router.message(Command("flagged"))
    async def flagged_cmd(message: Message) -> None:
        await message.answer(messages.flagged_text(store.list_flagged_signals(limit=10)))

    @router.message(Command("set"))
    async def set_cmd(message: Message) -> None:
        parts = message.text.split(maxsplit=2)
        if len(parts) < 3:
            await message.answer("Usage: /set KEY VALUE")
            return
        await message.answer(apply_setting(parts[1], parts[2].strip()))

    @router.callback_query(lambda c: c.data == "main_menu")
    async def main_menu_cb(query: CallbackQuery) -> None:
        await query.message.edit_text(messages.main_menu_text(), reply_markup=keyboards.main_menu())

    @router.callback_query(lambda c: c.data == "evaluate")
    async def evaluate_cb(query: CallbackQuery) -> None:
        await query.answer()
        await run_evaluation(query.message)

    @router.callback_query(lambda c: c.data == "status")
    async def status_cb(query: CallbackQuery) -> None:
        await query.message.edit_text(status_body(), reply_markup=keyboards.main_menu())

    @router.callback_query(lambda c: c.data == "flagged")
    async def flagged_cb(query: CallbackQuery) -> None:
        await query.message.answer(messages.flagged_text(store.list_flagged_signals(limit=10)))

    @router.callback_query(lambda c: c.data == "settings")
    async def settings_cb(query: CallbackQuery) -> None:
        await query.message.edit_text(messages.settings_text(), reply_markup=keyboards.settings_menu())

    @router.callback_query(lambda c: c.data == "set_provider")
    async def set_provider_cb(query: CallbackQuery) -> None:
        await query.message.edit_text("Select candle provider", reply_markup=keyboards.provider_menu())

    @router.callback_query(lambda c: c.data.startswith("provider:"))
    async def provider_set_cb(query: CallbackQuery) -> None:
        name = query.data.split(":", 1)[1]
        text = apply_setting("CANDLE_PROVIDER", name)
        await query.message.edit_text(f"{text}. Restart to switch providers.", reply_markup=keyboards.settings_menu())

    @router.callback_query(lambda c: c.data == "set_tie_break")
    async def set_tie_break_cb(query: CallbackQuery) -> None:
        await query.message.edit_text("Select exit tie-break", reply_markup=keyboards.tie_break_menu())

    @router.callback_query(lambda c: c.data.startswith("tie_break:"))
    async def tie_break_set_cb(query: CallbackQuery) -> None:
        mode = query.data.split(":", 1)[1]
        await query.message.edit_text(apply_setting("EXIT_TIE_BREAK", mode), reply_markup=keyboards.settings_menu())

    @router.callback_query(lambda c: c.data.startswith("prompt:"))
    async def prompt_cb(query: CallbackQuery) -> None:
        key = query.data.split(":", 1)[1]
        pending_setting[query.from_user.id] = key
        await query.message.answer(messages.prompt_text(key))

    @router.message()
    async def catch_all(message: Message) -> None:
        key = pending_setting.pop(message.from_user.id, None)
        if not key or not message.text:
            return
        await message.answer(apply_setting(key, message.text.strip()))

    return router
