from __future__ import annotations

from datetime import datetime, timezone

from engine.models import TradeSignal
from engine.state import RunnerState
from services.config_service import RuntimeConfig


def _fmt_ts(ts: int | None) -> str:
    if not ts:
        return "n/a"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def main_menu_text() -> str:
    return "Trade Integrity Control Panel"


def summary_text(summary: dict[str, int]) -> str:
    return (
        f"Evaluated: {summary.get('evaluated', 0)}\n"
        f"Entered: {summary.get('entered', 0)}\n"
        f"Resolved: {summary.get('resolved', 0)}\n"
        f"Flagged: {summary.get('flagged', 0)}\n"
        f"Errors: {summary.get('errors', 0)}"
    )


def status_text(config: RuntimeConfig, state: RunnerState, counts: dict[str, int]) -> str:
    by_status = ", ".join(f"{k} {v}" for k, v in sorted(counts.items())) or "none"
    last = summary_text(state.last_summary) if state.last_summary else "none"
    return (
        f"Provider: {config.candle_provider}\n"
        f"Horizon: {config.horizon_days:g} days\n"
        f"Exit tie-break: {config.exit_tie_break}\n"
        f"Schedule: {f'every {config.evaluation_interval_seconds}s' if config.evaluation_interval_seconds else 'manual'}\n"
        f"Signals: {by_status}\n"
        f"Last run: {_fmt_ts(state.last_run_at)}\n"
        f"Last summary:\n{last}\n"
        f"Last error: {state.last_error or 'none'}"
    )


def flagged_text(signals: list[TradeSignal]) -> str:
    if not signals:
        return "No unverified signals."
    lines = [
        f"#{s.id} {s.instrument} {s.direction.value} @ {s.entry_price}: "
        f"{s.integrity_reason.value if s.integrity_reason else 'unknown'} ({_fmt_ts(s.resolved_at)})"
        for s in signals
    ]
    return "Unverified signals:\n" + "\n".join(lines)


def access_denied_text() -> str:
    return "Access denied. This bot is admin-only."


def settings_text() -> str:
    return "Settings: choose what to update, or send /set KEY VALUE."


def prompt_text(label: str) -> str:
    return f"Send new value for {label}."
