from __future__ import annotations

import asyncio

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from loguru import logger

from engine.errors import ProviderUnavailable
from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class BinanceCandleProvider(CandleProvider):
    """Spot klines from Binance. Public market data, keys are optional."""

    def __init__(self, api_key: str = "", api_secret: str = "", symbol_map: dict[str, str] | None = None) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.symbol_map = symbol_map or {}
        self._client: Client | None = None

    def _get_client(self) -> Client:
        # Client() pings the exchange on construction, so defer it to the first request
        if self._client is None:
            self._client = Client(self.api_key or None, self.api_secret or None)
        return self._client

    def _map_symbol(self, instrument: str) -> str:
        symbol = self.symbol_map.get(instrument, instrument).replace("/", "").upper()
        if symbol.endswith("USD"):
            symbol += "T"
        return symbol

    def _fetch(self, symbol: str, start_ts: int, end_ts: int) -> list:
        client = self._get_client()
        return client.get_historical_klines(
            symbol,
            Client.KLINE_INTERVAL_1MINUTE,
            start_str=start_ts * 1000,
            end_str=end_ts * 1000,
        )

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        symbol = self._map_symbol(instrument)
        try:
            klines = await asyncio.to_thread(self._fetch, symbol, start_ts, end_ts)
        except BinanceAPIException as exc:
            # -1121 is "Invalid symbol": the exchange simply has no data for it
            if exc.code == -1121:
                logger.warning("Binance has no symbol {} for {}", symbol, instrument)
                return []
            raise ProviderUnavailable(instrument, f"Binance API error: {exc.message}") from exc
        except (BinanceRequestException, OSError) as exc:
            raise ProviderUnavailable(instrument, f"Binance request failed: {exc}") from exc
        candles = []
        for k in klines:
            candles.append(
                Candle(
                    ts=int(k[0] / 1000),
                    open=float(k[1]),
                    high=float(k[2]),
                    low=float(k[3]),
                    close=float(k[4]),
                    volume=float(k[5]),
                )
            )
        return candles
