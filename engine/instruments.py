from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from engine.models import Candle, InstrumentType


_CRYPTO_PATTERNS = ("BTC", "ETH", "XRP", "SOL", "DOGE", "ADA", "DOT", "AVAX", "LINK", "MATIC", "LTC", "SHIB", "BNB")

_CFD_PATTERNS = ("US30", "NAS100", "SPX500", "USOIL", "UKOIL", "DAX", "FTSE", "GER40", "UK100", "JP225")

_DAYS = {"MON": 0, "TUE": 1, "WED": 2, "THU": 3, "FRI": 4, "SAT": 5, "SUN": 6}

_WEEK_MINUTES = 7 * 1440


def classify_instrument(instrument: str) -> InstrumentType:
    upper = instrument.upper()
    if any(p in upper for p in _CRYPTO_PATTERNS):
        return InstrumentType.CRYPTO
    if any(p in upper for p in _CFD_PATTERNS):
        return InstrumentType.CFD
    # metals and unknown symbols follow forex hours
    return InstrumentType.FOREX


@dataclass(frozen=True)
class WeekBoundary:
    weekday: int
    minute_of_day: int

    @classmethod
    def parse(cls, raw: str) -> WeekBoundary:
        """Parse strings like ``"FRI 21:00"``."""
        parts = raw.strip().split()
        if len(parts) != 2 or parts[0].upper() not in _DAYS:
            raise ValueError(f"Invalid weekend boundary: {raw!r}")
        hour, minute = (int(x) for x in parts[1].split(":"))
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Invalid weekend boundary: {raw!r}")
        return cls(weekday=_DAYS[parts[0].upper()], minute_of_day=hour * 60 + minute)


class MarketCalendar:
    """Forex weekend window in UTC. Crypto never closes."""

    def __init__(self, weekend_start: str = "FRI 21:00", weekend_end: str = "MON 00:00") -> None:
        self.start = WeekBoundary.parse(weekend_start)
        self.end = WeekBoundary.parse(weekend_end)

    @staticmethod
    def _week_minute(weekday: int, minute_of_day: int) -> int:
        return weekday * 1440 + minute_of_day

    def _now_minute(self, ts: int) -> int:
        dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        return self._week_minute(dt.weekday(), dt.hour * 60 + dt.minute)

    def is_weekend(self, ts: int) -> bool:
        now = self._now_minute(ts)
        start = self._week_minute(self.start.weekday, self.start.minute_of_day)
        end = self._week_minute(self.end.weekday, self.end.minute_of_day)
        if start <= end:
            return start <= now < end
        return now >= start or now < end

    def spans_weekend(self, from_ts: int, to_ts: int) -> bool:
        if self.is_weekend(from_ts) or self.is_weekend(to_ts):
            return True
        start = self._week_minute(self.start.weekday, self.start.minute_of_day)
        minutes_ahead = (start - self._now_minute(from_ts)) % _WEEK_MINUTES
        next_close = from_ts - from_ts % 60 + minutes_ahead * 60
        return next_close <= to_ts

    def is_gap(self, prev: Candle, curr: Candle, instrument_type: InstrumentType, max_gap_seconds: int) -> bool:
        if curr.ts - prev.ts <= max_gap_seconds:
            return False
        if instrument_type == InstrumentType.CRYPTO:
            return True
        # silence across the weekend close is expected
        return not self.spans_weekend(prev.ts, curr.ts)
