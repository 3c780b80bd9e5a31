import asyncio

from conftest import HORIZON, T0, FakeProvider, candle, make_signal
from engine.errors import ProviderUnavailable
from engine.models import EvalResult, SignalStatus
from engine.runner import BatchRunner
from engine.state import RunnerStateStore
from services.config_service import ConfigService, IntegritySettings
from services.notifier import Notifier


def _runner(store, provider, now, notifier=None, **settings):
    config_service = ConfigService(store, IntegritySettings(_env_file=None, **settings))
    return BatchRunner(provider, store, config_service, notifier=notifier, chat_id="42", clock=lambda: now)


def _add(store, **overrides):
    return store.add_signal(make_signal(id=None, **overrides))


def test_pass_tallies_each_outcome(store):
    pending = _add(store, instrument="EURUSD")
    entered = _add(store, instrument="GBPUSD", entry_price=1.2700, stop_loss=1.2650, take_profit=1.2750)
    store.apply_result(entered, EvalResult.enter(T0 + 60), T0 + 60)
    silent = _add(store, instrument="USDJPY", declared_entry_ts=T0 - HORIZON - 60,
                  entry_price=148.0, stop_loss=147.0, take_profit=149.0)
    provider = FakeProvider(
        {
            "EURUSD": [candle(T0 + 120, 1.0995, 1.1005)],
            "GBPUSD": [candle(T0 + 180, 1.2690, 1.2760)],
        }
    )
    summary = asyncio.run(_runner(store, provider, T0 + 600).evaluate_all_pending_trades())

    assert summary.as_dict() == {"evaluated": 3, "entered": 1, "resolved": 1, "flagged": 1, "errors": 0, "conflicts": 0}
    assert store.get_signal(pending.id).status == SignalStatus.ENTERED
    assert store.get_signal(entered.id).status == SignalStatus.RESOLVED_TP
    assert store.get_signal(silent.id).status == SignalStatus.UNVERIFIED


def test_provider_timeout_leaves_signal_pending(store):
    signal = _add(store)
    provider = FakeProvider([candle(T0 + 120, 1.0995, 1.1005)], delay=1.0)
    runner = _runner(store, provider, T0 + 600, PROVIDER_TIMEOUT_SECONDS=0.05)
    summary = asyncio.run(runner.evaluate_all_pending_trades())

    assert summary.errors == 1
    assert summary.evaluated == 0
    assert store.get_signal(signal.id).status == SignalStatus.PENDING
    assert "no answer" in RunnerStateStore(store).load().last_error


def test_one_failure_does_not_stop_the_pass(store):
    _add(store, instrument="EURUSD")
    ok = _add(store, instrument="AUDUSD", entry_price=0.6600, stop_loss=0.6550, take_profit=0.6650)
    provider = FakeProvider(
        {"AUDUSD": [candle(T0 + 60, 0.6595, 0.6605)]},
        errors={"EURUSD": ProviderUnavailable("EURUSD", "bridge down")},
    )
    summary = asyncio.run(_runner(store, provider, T0 + 600).evaluate_all_pending_trades())

    assert summary.errors == 1
    assert summary.entered == 1
    assert store.get_signal(ok.id).status == SignalStatus.ENTERED


def test_terminal_signals_are_never_touched(store):
    done = _add(store)
    store.mark_manual_resolution(done.id, SignalStatus.RESOLVED_SL, T0 + 60)
    provider = FakeProvider([candle(T0 + 120, 1.0900, 1.1100)])
    summary = asyncio.run(_runner(store, provider, T0 + 600).evaluate_all_pending_trades())

    assert summary.evaluated == 0
    assert provider.calls == []
    assert store.get_signal(done.id).status == SignalStatus.RESOLVED_SL


def test_concurrent_manual_resolution_wins(store):
    signal = _add(store)

    def resolve_by_hand(instrument):
        store.mark_manual_resolution(signal.id, SignalStatus.RESOLVED_TP, T0 + 300)

    provider = FakeProvider([candle(T0 + 120, 1.0995, 1.1005)], on_fetch=resolve_by_hand)
    summary = asyncio.run(_runner(store, provider, T0 + 600).evaluate_all_pending_trades())

    assert summary.conflicts == 1
    assert summary.entered == 0
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.RESOLVED_TP
    assert loaded.entered_at is None


def test_pass_pages_through_all_signals(store):
    for _ in range(5):
        _add(store)
    provider = FakeProvider()
    summary = asyncio.run(_runner(store, provider, T0 + 600, BATCH_SIZE=2).evaluate_all_pending_trades())

    assert summary.evaluated == 5
    assert len(provider.calls) == 5


def test_second_pass_makes_no_changes(store):
    _add(store)
    provider = FakeProvider([candle(T0 + 120, 1.0995, 1.1005)])
    runner = _runner(store, provider, T0 + 600)
    asyncio.run(runner.evaluate_all_pending_trades())
    second = asyncio.run(runner.evaluate_all_pending_trades())

    assert second.entered == 0
    assert second.evaluated == 1


def test_flagged_signals_alert_admin_chat(store):
    _add(store, declared_entry_ts=T0 - HORIZON - 60)

    async def scenario():
        notifier = Notifier()
        summary = await _runner(store, FakeProvider(), T0, notifier=notifier).evaluate_all_pending_trades()
        return summary, notifier.queue.get_nowait()

    summary, alert = asyncio.run(scenario())
    assert summary.flagged == 1
    assert alert.chat_id == "42"
    assert "1 flagged unverified" in alert.text


def test_run_records_state(store):
    _add(store)
    asyncio.run(_runner(store, FakeProvider(), T0 + 600).evaluate_all_pending_trades())
    state = RunnerStateStore(store).load()
    assert state.last_run_at == T0 + 600
    assert state.last_summary["evaluated"] == 1
    assert state.last_error is None
