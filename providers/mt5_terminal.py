from __future__ import annotations

import asyncio
from datetime import datetime, timezone

try:
    import MetaTrader5 as mt5
except Exception:  # pragma: no cover - runtime gated
    mt5 = None

from engine.errors import ProviderUnavailable
from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class MT5CandleProvider(CandleProvider):
    """M1 rates from a locally running MetaTrader 5 terminal (FOREX and CFD)."""

    def __init__(self, login: str, password: str, server: str, symbol_map: dict[str, str] | None = None) -> None:
        self.login = login
        self.password = password
        self.server = server
        self.symbol_map = symbol_map or {}
        self._initialized = False
        self._lock = asyncio.Lock()

    def _ensure_init(self) -> None:
        if not mt5:
            raise RuntimeError("MetaTrader5 package not installed")
        if self._initialized:
            return
        if not mt5.initialize():
            raise RuntimeError(f"MT5 initialize failed: {mt5.last_error()}")
        if self.login and not mt5.login(int(self.login), password=self.password, server=self.server):
            raise RuntimeError(f"MT5 login failed: {mt5.last_error()}")
        self._initialized = True

    def _map_symbol(self, symbol: str) -> str:
        return self.symbol_map.get(symbol, symbol)

    def _copy_rates(self, symbol: str, start_ts: int, end_ts: int):
        self._ensure_init()
        start = datetime.fromtimestamp(start_ts, tz=timezone.utc)
        end = datetime.fromtimestamp(end_ts, tz=timezone.utc)
        rates = mt5.copy_rates_range(symbol, mt5.TIMEFRAME_M1, start, end)
        if rates is None:
            raise RuntimeError(f"MT5 copy_rates failed: {mt5.last_error()}")
        return rates

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        mapped = self._map_symbol(instrument)
        # the terminal API is not thread safe
        async with self._lock:
            try:
                rates = await asyncio.to_thread(self._copy_rates, mapped, start_ts, end_ts)
            except RuntimeError as exc:
                raise ProviderUnavailable(instrument, str(exc)) from exc
        return [
            Candle(ts=int(r[0]), open=float(r[1]), high=float(r[2]), low=float(r[3]), close=float(r[4]), volume=float(r[5]))
            for r in rates
        ]

    async def aclose(self) -> None:
        if mt5 and self._initialized:
            await asyncio.to_thread(mt5.shutdown)
            self._initialized = False
