import asyncio

from services.notifier import Notifier, pass_alert_text


class RecordingBot:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))


def test_pass_alert_text():
    assert pass_alert_text({"evaluated": 3, "flagged": 0, "errors": 0}) is None
    assert pass_alert_text({"evaluated": 3, "flagged": 2, "errors": 1}) == (
        "Evaluation pass over 3 signals: 2 flagged unverified and 1 could not be evaluated"
    )


def test_notifier_delivers_through_bot():
    bot = RecordingBot()

    async def scenario():
        notifier = Notifier()
        await notifier.start(bot)
        assert await notifier.notify_pass("42", {"evaluated": 1, "errors": 1})
        assert not await notifier.notify_pass("42", {"evaluated": 1})
        await notifier.queue.join()
        await notifier.stop()

    asyncio.run(scenario())
    assert bot.sent == [("42", "Evaluation pass over 1 signals: 1 could not be evaluated")]
