from bot.messages import flagged_text, summary_text
from bot.middleware import _is_admin
from conftest import T0, make_signal
from engine.models import IntegrityReason, SignalStatus
from services.config_service import IntegritySettings


def test_admin_guard_allows_admin():
    settings = IntegritySettings(_env_file=None, ADMIN_TELEGRAM_IDS="123,456")
    assert _is_admin(123, settings)


def test_admin_guard_blocks_non_admin():
    settings = IntegritySettings(_env_file=None, ADMIN_TELEGRAM_IDS="123,456")
    assert not _is_admin(999, settings)


def test_summary_text():
    text = summary_text({"evaluated": 4, "entered": 1, "resolved": 2, "flagged": 1, "errors": 0})
    assert "Evaluated: 4" in text
    assert "Flagged: 1" in text


def test_flagged_text():
    assert flagged_text([]) == "No unverified signals."
    signal = make_signal(
        id=12,
        status=SignalStatus.UNVERIFIED,
        integrity_reason=IntegrityReason.ENTRY_NEVER_REACHED,
        resolved_at=T0,
    )
    text = flagged_text([signal])
    assert "#12 EURUSD LONG @ 1.1: ENTRY_NEVER_REACHED (2024-01-10 12:00 UTC)" in text
