from __future__ import annotations

import httpx

from engine.errors import ProviderUnavailable
from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class HttpBridgeCandleProvider(CandleProvider):
    """Market data bridge speaking JSON over HTTP.

    ``GET {base_url}/candles?symbol=EURUSD&tf=1m&from=<ts>&to=<ts>`` must
    answer with a list of ``{"ts", "open", "high", "low", "close", "volume"}``
    objects. A 404 means the bridge does not know the symbol.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        symbol_map: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.symbol_map = symbol_map or {}
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout, transport=transport)

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        symbol = self.symbol_map.get(instrument, instrument)
        try:
            resp = await self._client.get(
                "/candles",
                params={"symbol": symbol, "tf": "1m", "from": start_ts, "to": end_ts},
            )
            if resp.status_code == 404:
                return []
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(instrument, f"bridge request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderUnavailable(instrument, f"bridge returned invalid JSON: {exc}") from exc
        candles = [
            Candle(
                ts=int(row["ts"]),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row.get("volume", 0.0)),
            )
            for row in data
        ]
        candles.sort(key=lambda c: c.ts)
        return candles

    async def aclose(self) -> None:
        await self._client.aclose()
