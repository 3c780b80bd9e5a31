from __future__ import annotations

import asyncio
from pathlib import Path

import pandas as pd
from loguru import logger

from engine.errors import ProviderUnavailable
from engine.models import Candle, InstrumentType
from providers.base import CandleProvider


class CsvCandleProvider(CandleProvider):
    """Replay one-minute candles from ``{csv_dir}/{SYMBOL}.csv``.

    Expected columns: ``timestamp`` (epoch seconds or ISO time), ``open``,
    ``high``, ``low``, ``close`` and optionally ``volume``. A missing file
    means no data for that instrument.
    """

    def __init__(self, csv_dir: str, symbol_map: dict[str, str] | None = None) -> None:
        self.csv_dir = Path(csv_dir)
        self.symbol_map = symbol_map or {}
        self._cache: dict[str, tuple[float, pd.DataFrame]] = {}

    def _load(self, instrument: str) -> pd.DataFrame | None:
        symbol = self.symbol_map.get(instrument, instrument)
        path = self.csv_dir / f"{symbol.upper()}.csv"
        if not path.exists():
            return None
        mtime = path.stat().st_mtime
        cached = self._cache.get(symbol)
        if cached and cached[0] == mtime:
            return cached[1]
        df = pd.read_csv(path)
        if "timestamp" not in df.columns:
            raise ValueError(f"{path} has no timestamp column")
        ts = df["timestamp"]
        if pd.api.types.is_numeric_dtype(ts):
            df["ts"] = ts.astype("int64")
        else:
            epoch = pd.Timestamp("1970-01-01", tz="UTC")
            df["ts"] = (pd.to_datetime(ts, utc=True) - epoch) // pd.Timedelta(seconds=1)
        if "volume" not in df.columns:
            df["volume"] = 0.0
        df = df.sort_values("ts").reset_index(drop=True)
        self._cache[symbol] = (mtime, df)
        logger.debug("Loaded {} candles for {} from {}", len(df), symbol, path)
        return df

    async def fetch_one_minute_candles(
        self, instrument: str, start_ts: int, end_ts: int, instrument_type: InstrumentType | None = None
    ) -> list[Candle]:
        try:
            df = await asyncio.to_thread(self._load, instrument)
        except OSError as exc:
            raise ProviderUnavailable(instrument, f"CSV read failed: {exc}") from exc
        if df is None:
            return []
        window = df[(df["ts"] >= start_ts) & (df["ts"] <= end_ts)]
        return [
            Candle(
                ts=int(row["ts"]),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            )
            for _, row in window.iterrows()
        ]
