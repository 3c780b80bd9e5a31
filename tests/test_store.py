import pytest

from conftest import T0, make_signal
from engine.models import EvalResult, InstrumentType, IntegrityReason, ResolutionSource, SignalStatus
from engine.state import RunnerStateStore


def _add(store, **overrides):
    return store.add_signal(make_signal(id=None, **overrides))


def test_add_and_get_signal(store):
    saved = _add(store, instrument="GBPUSD", user_id=7)
    loaded = store.get_signal(saved.id)
    assert loaded.instrument == "GBPUSD"
    assert loaded.user_id == 7
    assert loaded.status == SignalStatus.PENDING
    assert loaded.entry_price == 1.1
    assert loaded.created_at is not None
    assert store.get_signal(9999) is None


def test_list_open_signals_pages_by_id(store):
    ids = [_add(store).id for _ in range(5)]
    first = store.list_open_signals(limit=2)
    assert [s.id for s in first] == ids[:2]
    rest = store.list_open_signals(after_id=first[-1].id, limit=10)
    assert [s.id for s in rest] == ids[2:]


def test_list_open_signals_skips_terminal_and_manual(store):
    open_signal = _add(store)
    manual = _add(store)
    store.mark_manual_resolution(manual.id, SignalStatus.RESOLVED_TP, T0 + 60)
    resolved = _add(store)
    store.apply_result(resolved, EvalResult.unverified(IntegrityReason.NO_MARKET_DATA, {}), T0)
    assert [s.id for s in store.list_open_signals()] == [open_signal.id]


def test_apply_enter_records_history(store):
    signal = _add(store)
    assert store.apply_result(signal, EvalResult.enter(T0 + 120), T0 + 600)
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.ENTERED
    assert loaded.entered_at == T0 + 120
    assert loaded.last_evaluated_at == T0 + 600
    assert loaded.resolved_at is None
    history = store.list_status_history(signal.id)
    assert len(history) == 1
    assert history[0]["from_status"] == "pending"
    assert history[0]["to_status"] == "entered"
    assert history[0]["note"] == "Evaluator: ENTER"


def test_apply_resolution_sets_source(store):
    signal = _add(store)
    store.apply_result(signal, EvalResult.enter(T0 + 60), T0 + 60)
    entered = store.get_signal(signal.id)
    assert store.apply_result(entered, EvalResult.resolve_sl(T0 + 300), T0 + 600)
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.RESOLVED_SL
    assert loaded.resolved_at == T0 + 300
    assert loaded.resolution_source == ResolutionSource.EVALUATOR
    assert loaded.entered_at == T0 + 60


def test_apply_unverified_stores_evidence(store):
    signal = _add(store)
    details = {"message": "no market data", "tradeSnapshot": signal.snapshot()}
    store.apply_result(signal, EvalResult.unverified(IntegrityReason.NO_MARKET_DATA, details), T0 + 900)
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.UNVERIFIED
    assert loaded.integrity_reason == IntegrityReason.NO_MARKET_DATA
    assert loaded.integrity_details == details
    assert loaded.resolved_at == T0 + 900
    assert store.list_status_history(signal.id)[0]["note"] == "Evaluator: NO_MARKET_DATA"
    assert [s.id for s in store.list_flagged_signals()] == [signal.id]


def test_apply_noop_only_touches_evaluation_time(store):
    signal = _add(store)
    assert store.apply_result(signal, EvalResult.noop(), T0 + 42)
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.PENDING
    assert loaded.last_evaluated_at == T0 + 42
    assert store.list_status_history(signal.id) == []


def test_apply_result_on_stale_signal_is_rejected(store):
    signal = _add(store)
    assert store.apply_result(signal, EvalResult.enter(T0 + 60), T0 + 60)
    # same pending snapshot applied twice
    assert not store.apply_result(signal, EvalResult.enter(T0 + 120), T0 + 120)
    assert store.get_signal(signal.id).entered_at == T0 + 60
    assert len(store.list_status_history(signal.id)) == 1


def test_manual_resolution(store):
    signal = _add(store)
    with pytest.raises(ValueError):
        store.mark_manual_resolution(signal.id, SignalStatus.ENTERED, T0)
    assert store.mark_manual_resolution(signal.id, SignalStatus.RESOLVED_TP, T0 + 60, note="screenshot checked")
    assert not store.mark_manual_resolution(signal.id, SignalStatus.RESOLVED_SL, T0 + 120)
    loaded = store.get_signal(signal.id)
    assert loaded.status == SignalStatus.RESOLVED_TP
    assert loaded.resolution_source == ResolutionSource.MANUAL
    assert store.list_status_history(signal.id)[0]["note"] == "screenshot checked"


def test_count_by_status(store):
    _add(store)
    _add(store)
    flagged = _add(store)
    store.apply_result(flagged, EvalResult.unverified(IntegrityReason.NO_MARKET_DATA, {}), T0)
    assert store.count_by_status() == {"pending": 2, "unverified": 1}


def test_settings_round_trip(store):
    assert store.get_setting("HORIZON_DAYS", 7) == 7
    store.set_setting("HORIZON_DAYS", "3")
    store.set_setting("HORIZON_DAYS", "5")
    assert store.get_setting("HORIZON_DAYS") == "5"


def test_runner_state_round_trip(store):
    state_store = RunnerStateStore(store)
    assert state_store.load().last_run_at is None
    state_store.record_run(T0, {"evaluated": 3, "errors": 1}, "EURUSD: timeout")
    state = state_store.load()
    assert state.last_run_at == T0
    assert state.last_summary == {"evaluated": 3, "errors": 1}
    assert state.last_error == "EURUSD: timeout"


def test_missing_instrument_type_is_classified(store):
    saved = _add(store, instrument="ETHUSDT", instrument_type=None)
    assert store.get_signal(saved.id).instrument_type == InstrumentType.CRYPTO


def test_noop_on_stale_signal_leaves_terminal_row_alone(store):
    stale = _add(store)
    store.mark_manual_resolution(stale.id, SignalStatus.RESOLVED_TP, T0 + 60)
    assert not store.apply_result(stale, EvalResult.noop(), T0 + 999)
    assert store.get_signal(stale.id).last_evaluated_at is None
