from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from loguru import logger

from engine.errors import InvalidSignalState, ProviderUnavailable
from engine.instruments import MarketCalendar, classify_instrument
from engine.models import Candle, EvalResult, InstrumentType, IntegrityReason, SignalStatus, TradeSignal
from providers.base import CandleProvider
from services.config_service import RuntimeConfig


class IntegrityEvaluator:
    """Decide the next transition of an open trade signal from one-minute candles.

    The evaluator never mutates the signal and never writes anywhere. It
    fetches one bounded window of candles and returns an ``EvalResult``
    for the caller to apply:

    * pending: the first candle whose range contains the entry price gives
      ENTER at that candle's timestamp.
    * entered: the first candle after the recorded entry whose range
      contains the take profit or the stop loss resolves the trade. A bar
      containing both cannot tell which came first, so the adverse outcome
      (stop loss) is assumed unless ``exit_tie_break`` is ``"flag"``.
    * once ``horizon`` has passed since the window start, missing evidence
      is final and the signal is marked unverified.

    Provider failures propagate as ``ProviderUnavailable`` so the caller can
    retry on a later pass instead of flagging the signal.
    """

    def __init__(
        self,
        provider: CandleProvider,
        config: RuntimeConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.config = config
        self.clock = clock
        self.calendar = MarketCalendar(config.forex_weekend_start, config.forex_weekend_end)

    def _check(self, signal: TradeSignal) -> None:
        if signal.status.is_terminal:
            raise InvalidSignalState(signal.id, f"status {signal.status.value} is terminal")
        if not signal.instrument or not signal.instrument.strip():
            raise InvalidSignalState(signal.id, "instrument is empty")
        if signal.status == SignalStatus.ENTERED and signal.entered_at is None:
            raise InvalidSignalState(signal.id, "entered without an entry timestamp")

    async def _fetch(self, signal: TradeSignal, kind: InstrumentType, start_ts: int, end_ts: int) -> list[Candle]:
        try:
            candles = await asyncio.wait_for(
                self.provider.fetch_one_minute_candles(signal.instrument, start_ts, end_ts, instrument_type=kind),
                timeout=self.config.provider_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                signal.instrument, f"no answer within {self.config.provider_timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise ProviderUnavailable(signal.instrument, str(exc)) from exc
        window = [c for c in candles if start_ts <= c.ts <= end_ts]
        window.sort(key=lambda c: c.ts)
        return window

    async def evaluate(self, signal: TradeSignal, now: int | None = None) -> EvalResult:
        self._check(signal)
        now = int(self.clock()) if now is None else now

        start = signal.entered_at if signal.status == SignalStatus.ENTERED else signal.declared_entry_ts
        if start > now:
            return EvalResult.noop()
        deadline = start + self.config.horizon_seconds
        end = min(now, deadline)
        elapsed = now >= deadline

        kind = signal.instrument_type or classify_instrument(signal.instrument)
        candles = await self._fetch(signal, kind, start, end)
        window = {"from": start, "to": end, "horizonEnd": deadline}

        if not candles:
            if elapsed:
                return EvalResult.unverified(
                    IntegrityReason.NO_MARKET_DATA,
                    {"message": "no market data", "window": window, "tradeSnapshot": signal.snapshot()},
                )
            return EvalResult.noop()

        # candles are read once in time order; a gap only counts if it comes before the decisive bar
        pending = signal.status == SignalStatus.PENDING
        decide = self._decide_pending if pending else self._decide_entered
        prev: Candle | None = None
        for candle in candles:
            if prev is not None:
                gap = self._gap_result(signal, kind, prev, candle)
                if gap is not None:
                    return gap
            prev = candle
            result = decide(signal, candle)
            if result is not None:
                return result

        if elapsed:
            if pending:
                return EvalResult.unverified(
                    IntegrityReason.ENTRY_NEVER_REACHED,
                    {"message": "entry never reached", "window": window, "tradeSnapshot": signal.snapshot()},
                )
            return EvalResult.unverified(
                IntegrityReason.NO_RESOLUTION_BEFORE_HORIZON,
                {"message": "no resolution before horizon", "window": window, "tradeSnapshot": signal.snapshot()},
            )
        return EvalResult.noop()

    def _gap_result(self, signal: TradeSignal, kind: InstrumentType, prev: Candle, curr: Candle) -> EvalResult | None:
        max_gap = self.config.max_candle_gap_seconds
        if not max_gap or not self.calendar.is_gap(prev, curr, kind, max_gap):
            return None
        return EvalResult.unverified(
            IntegrityReason.DATA_GAP,
            {
                "message": "market data gap",
                "gapFrom": prev.ts,
                "gapTo": curr.ts,
                "instrumentType": kind.value,
                "tradeSnapshot": signal.snapshot(),
            },
        )

    def _decide_pending(self, signal: TradeSignal, candle: Candle) -> EvalResult | None:
        if not candle.contains(signal.entry_price):
            return None
        if self.config.flag_entry_conflicts:
            touched = _touched_levels(signal, candle)
            if len(touched) > 1:
                return EvalResult.unverified(
                    IntegrityReason.ENTRY_CONFLICT,
                    _conflict_details("entry bar also touched an exit level", signal, candle, touched),
                )
        return EvalResult.enter(candle.ts)

    def _decide_entered(self, signal: TradeSignal, candle: Candle) -> EvalResult | None:
        if candle.ts <= signal.entered_at:
            return None
        tp_hit = candle.contains(signal.take_profit)
        sl_hit = candle.contains(signal.stop_loss)
        if tp_hit and sl_hit:
            if self.config.exit_tie_break == "flag":
                return EvalResult.unverified(
                    IntegrityReason.EXIT_CONFLICT,
                    _conflict_details(
                        "stop loss and take profit touched in one bar", signal, candle, ["stopLoss", "takeProfit"]
                    ),
                )
            logger.debug("Signal {}: bar {} straddles SL and TP, resolving SL", signal.id, candle.ts)
            return EvalResult.resolve_sl(candle.ts)
        if sl_hit:
            return EvalResult.resolve_sl(candle.ts)
        if tp_hit:
            return EvalResult.resolve_tp(candle.ts)
        return None


def _touched_levels(signal: TradeSignal, candle: Candle) -> list[str]:
    levels = []
    if candle.contains(signal.entry_price):
        levels.append("entry")
    if candle.contains(signal.stop_loss):
        levels.append("stopLoss")
    if candle.contains(signal.take_profit):
        levels.append("takeProfit")
    return levels


def _conflict_details(message: str, signal: TradeSignal, candle: Candle, touched: list[str]) -> dict[str, Any]:
    return {
        "message": message,
        "candleTimestamp": candle.ts,
        "candleOHLC": {"open": candle.open, "high": candle.high, "low": candle.low, "close": candle.close},
        "touchedLevels": touched,
        "tradeSnapshot": signal.snapshot(),
    }
