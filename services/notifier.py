from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger


@dataclass
class Alert:
    chat_id: str
    text: str


def pass_alert_text(summary: dict[str, int]) -> str | None:
    """Admin alert for a finished pass, or None when nothing needs attention."""
    flagged = summary.get("flagged", 0)
    errors = summary.get("errors", 0)
    if not flagged and not errors:
        return None
    parts = []
    if flagged:
        parts.append(f"{flagged} flagged unverified")
    if errors:
        parts.append(f"{errors} could not be evaluated")
    return f"Evaluation pass over {summary.get('evaluated', 0)} signals: " + " and ".join(parts)


class Notifier:
    """Outgoing admin alerts, delivered by the bot in the background."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Alert] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def start(self, bot) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._deliver(bot))

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _deliver(self, bot) -> None:
        while True:
            alert = await self.queue.get()
            try:
                await bot.send_message(alert.chat_id, alert.text)
            except Exception as exc:
                logger.exception("Failed to deliver alert to {}: {}", alert.chat_id, exc)
            finally:
                self.queue.task_done()

    async def send(self, chat_id: str, text: str) -> None:
        await self.queue.put(Alert(chat_id=chat_id, text=text))

    async def notify_pass(self, chat_id: str, summary: dict[str, int]) -> bool:
        text = pass_alert_text(summary)
        if text is None:
            return False
        await self.send(chat_id, text)
        return True
