from __future__ import annotations

from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class StubCandleProvider(CandleProvider):
    """Never has market data. Signals stay open until their horizon elapses."""

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        return []
