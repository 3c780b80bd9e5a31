from __future__ import annotations


class IntegrityError(Exception):
    pass


class ProviderUnavailable(IntegrityError):
    """Transient market data failure. The signal stays open and is retried next pass."""

    def __init__(self, instrument: str, message: str) -> None:
        super().__init__(f"{instrument}: {message}")
        self.instrument = instrument


class InvalidSignalState(IntegrityError):
    def __init__(self, signal_id: int | None, message: str) -> None:
        super().__init__(f"signal {signal_id}: {message}")
        self.signal_id = signal_id
