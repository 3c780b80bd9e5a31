from __future__ import annotations

from abc import ABC, abstractmethod

from engine.models import Candle, InstrumentType


class CandleProvider(ABC):
    @abstractmethod
    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        """Return one-minute candles in ``[start_ts, end_ts]`` ascending by ``ts``.

        ``instrument_type`` is the stored type of the signal, when known.
        An empty list means the provider has no data for the range. I/O
        failures raise ``ProviderUnavailable``.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
