from __future__ import annotations

from engine.instruments import classify_instrument
from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class RoutingCandleProvider(CandleProvider):
    """Dispatch each instrument to the provider registered for its type."""

    def __init__(self, routes: dict[InstrumentType, CandleProvider], default: CandleProvider) -> None:
        self.routes = routes
        self.default = default

    def provider_for(self, instrument: str, instrument_type: InstrumentType | None = None) -> CandleProvider:
        return self.routes.get(instrument_type or classify_instrument(instrument), self.default)

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        provider = self.provider_for(instrument, instrument_type)
        return await provider.fetch_one_minute_candles(instrument, start_ts, end_ts, instrument_type=instrument_type)

    async def aclose(self) -> None:
        seen: set[int] = set()
        for provider in [*self.routes.values(), self.default]:
            if id(provider) in seen:
                continue
            seen.add(id(provider))
            await provider.aclose()
