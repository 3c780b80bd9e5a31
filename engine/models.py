from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class InstrumentType(str, Enum):
    CRYPTO = "CRYPTO"
    FOREX = "FOREX"
    CFD = "CFD"


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStatus(str, Enum):
    PENDING = "pending"
    ENTERED = "entered"
    RESOLVED_TP = "resolved-tp"
    RESOLVED_SL = "resolved-sl"
    UNVERIFIED = "unverified"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SignalStatus.RESOLVED_TP, SignalStatus.RESOLVED_SL, SignalStatus.UNVERIFIED})
OPEN_STATUSES = (SignalStatus.PENDING, SignalStatus.ENTERED)


class ResolutionSource(str, Enum):
    EVALUATOR = "EVALUATOR"
    MANUAL = "MANUAL"


class IntegrityReason(str, Enum):
    NO_MARKET_DATA = "NO_MARKET_DATA"
    ENTRY_NEVER_REACHED = "ENTRY_NEVER_REACHED"
    NO_RESOLUTION_BEFORE_HORIZON = "NO_RESOLUTION_BEFORE_HORIZON"
    ENTRY_CONFLICT = "ENTRY_CONFLICT"
    EXIT_CONFLICT = "EXIT_CONFLICT"
    DATA_GAP = "DATA_GAP"


class EvalAction(str, Enum):
    NOOP = "NOOP"
    ENTER = "ENTER"
    RESOLVE_TP = "RESOLVE_TP"
    RESOLVE_SL = "RESOLVE_SL"
    MARK_UNVERIFIED = "MARK_UNVERIFIED"


@dataclass
class Candle:
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high


@dataclass
class TradeSignal:
    id: int | None
    instrument: str
    instrument_type: InstrumentType | None
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    declared_entry_ts: int
    status: SignalStatus = SignalStatus.PENDING
    user_id: int | None = None
    entered_at: int | None = None
    resolved_at: int | None = None
    resolution_source: ResolutionSource | None = None
    integrity_reason: IntegrityReason | None = None
    integrity_details: dict[str, Any] | None = None
    last_evaluated_at: int | None = None
    created_at: int | None = None

    def snapshot(self) -> dict[str, float]:
        return {"entry": self.entry_price, "stopLoss": self.stop_loss, "takeProfit": self.take_profit}


@dataclass(frozen=True)
class EvalResult:
    """Instruction produced by the evaluator and applied by the caller."""

    action: EvalAction
    timestamp: int | None = None
    reason: IntegrityReason | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def noop(cls) -> EvalResult:
        return cls(EvalAction.NOOP)

    @classmethod
    def enter(cls, timestamp: int) -> EvalResult:
        return cls(EvalAction.ENTER, timestamp=timestamp)

    @classmethod
    def resolve_tp(cls, timestamp: int) -> EvalResult:
        return cls(EvalAction.RESOLVE_TP, timestamp=timestamp)

    @classmethod
    def resolve_sl(cls, timestamp: int) -> EvalResult:
        return cls(EvalAction.RESOLVE_SL, timestamp=timestamp)

    @classmethod
    def unverified(cls, reason: IntegrityReason, details: dict[str, Any]) -> EvalResult:
        return cls(EvalAction.MARK_UNVERIFIED, reason=reason, details=details)

    @property
    def target_status(self) -> SignalStatus | None:
        return _ACTION_STATUS.get(self.action)


_ACTION_STATUS = {
    EvalAction.ENTER: SignalStatus.ENTERED,
    EvalAction.RESOLVE_TP: SignalStatus.RESOLVED_TP,
    EvalAction.RESOLVE_SL: SignalStatus.RESOLVED_SL,
    EvalAction.MARK_UNVERIFIED: SignalStatus.UNVERIFIED,
}
