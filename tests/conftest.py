import asyncio

import pytest

from data.store import SQLiteStore
from engine.models import Candle, Direction, InstrumentType, SignalStatus, TradeSignal
from providers.base import CandleProvider
from services.config_service import IntegritySettings

# Wednesday 2024-01-10 12:00 UTC
T0 = 1704888000
HORIZON = 7 * 86400


def candle(ts: int, low: float, high: float) -> Candle:
    return Candle(ts=ts, open=low, high=high, low=low, close=high)


class FakeProvider(CandleProvider):
    """Serves fixed candles per instrument and records every request."""

    def __init__(self, candles=None, errors=None, delay: float = 0.0, on_fetch=None) -> None:
        self.candles = candles or {}
        self.errors = errors or {}
        self.delay = delay
        self.on_fetch = on_fetch
        self.calls: list[tuple[str, int, int]] = []
        self.types: list = []
        self.closed = False

    async def fetch_one_minute_candles(self, instrument, start_ts, end_ts, instrument_type=None):
        self.calls.append((instrument, start_ts, end_ts))
        self.types.append(instrument_type)
        if self.on_fetch:
            self.on_fetch(instrument)
        if self.delay:
            await asyncio.sleep(self.delay)
        if instrument in self.errors:
            raise self.errors[instrument]
        rows = self.candles.get(instrument, []) if isinstance(self.candles, dict) else self.candles
        return [c for c in rows if start_ts <= c.ts <= end_ts]

    async def aclose(self) -> None:
        self.closed = True


def make_signal(**overrides) -> TradeSignal:
    values = dict(
        id=1,
        instrument="EURUSD",
        instrument_type=InstrumentType.FOREX,
        direction=Direction.LONG,
        entry_price=1.1000,
        stop_loss=1.0950,
        take_profit=1.1050,
        declared_entry_ts=T0,
        status=SignalStatus.PENDING,
    )
    values.update(overrides)
    return TradeSignal(**values)


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "integrity.db"))


@pytest.fixture
def settings():
    return IntegritySettings(_env_file=None, ADMIN_API_TOKENS="secret-1,secret-2", ADMIN_TELEGRAM_IDS="123,456")
