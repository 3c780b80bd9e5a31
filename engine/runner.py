from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import Callable

from loguru import logger

from data.store import BaseStore
from engine.errors import IntegrityError, ProviderUnavailable
from engine.evaluator import IntegrityEvaluator
from engine.models import EvalAction, TradeSignal
from engine.state import RunnerStateStore
from providers.base import CandleProvider
from services.config_service import ConfigService
from services.notifier import Notifier
from services.scheduler import wait_next_tick


@dataclass
class EvalSummary:
    evaluated: int = 0
    entered: int = 0
    resolved: int = 0
    flagged: int = 0
    errors: int = 0
    conflicts: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class BatchRunner:
    """Evaluate every open signal once and apply the results.

    Signals are read page by page in id order and evaluated concurrently,
    at most ``max_concurrency`` at a time. A failure on one signal is
    logged and counted, never fatal to the pass.
    """

    def __init__(
        self,
        provider: CandleProvider,
        store: BaseStore,
        config_service: ConfigService,
        notifier: Notifier | None = None,
        chat_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.store = store
        self.config_service = config_service
        self.notifier = notifier
        self.chat_id = chat_id
        self.clock = clock
        self.state_store = RunnerStateStore(store)
        self._running = False
        self._pass_lock = asyncio.Lock()

    async def run_forever(self) -> None:
        self._running = True
        while self._running:
            try:
                await self.evaluate_all_pending_trades()
            except Exception as exc:
                logger.exception("Evaluation pass failed: {}", exc)
            interval = self.config_service.load().evaluation_interval_seconds
            if interval <= 0:
                logger.info("Evaluation interval set to 0, periodic evaluation stopped")
                break
            await wait_next_tick(interval)

    def stop(self) -> None:
        self._running = False

    async def evaluate_all_pending_trades(self) -> EvalSummary:
        # one pass at a time per process
        async with self._pass_lock:
            return await self._run_pass()

    async def _run_pass(self) -> EvalSummary:
        config = self.config_service.load()
        evaluator = IntegrityEvaluator(self.provider, config, clock=self.clock)
        semaphore = asyncio.Semaphore(config.max_concurrency)
        summary = EvalSummary()
        last_error: str | None = None
        started = int(self.clock())

        async def _bounded(signal: TradeSignal) -> None:
            nonlocal last_error
            async with semaphore:
                error = await self._evaluate_one(evaluator, signal, summary)
            if error:
                last_error = error

        after_id = 0
        while True:
            signals = self.store.list_open_signals(after_id=after_id, limit=config.batch_size)
            if not signals:
                break
            await asyncio.gather(*(_bounded(s) for s in signals))
            after_id = signals[-1].id
            if len(signals) < config.batch_size:
                break

        result = summary.as_dict()
        self.state_store.record_run(started, result, last_error)
        logger.info(
            "Evaluation pass: {} evaluated, {} entered, {} resolved, {} flagged, {} errors",
            summary.evaluated,
            summary.entered,
            summary.resolved,
            summary.flagged,
            summary.errors,
        )
        if self.notifier and self.chat_id:
            await self.notifier.notify_pass(self.chat_id, result)
        return summary

    async def _evaluate_one(self, evaluator: IntegrityEvaluator, signal: TradeSignal, summary: EvalSummary) -> str | None:
        if signal.status.is_terminal:
            logger.warning("Skipping terminal signal {} ({})", signal.id, signal.status.value)
            return None
        now = int(self.clock())
        try:
            result = await evaluator.evaluate(signal, now=now)
        except ProviderUnavailable as exc:
            logger.warning("Market data unavailable for signal {}: {}", signal.id, exc)
            summary.errors += 1
            return str(exc)
        except IntegrityError as exc:
            logger.error("Signal {} rejected by evaluator: {}", signal.id, exc)
            summary.errors += 1
            return str(exc)
        except Exception as exc:
            logger.exception("Evaluator error for signal {}: {}", signal.id, exc)
            summary.errors += 1
            return str(exc)

        summary.evaluated += 1
        try:
            applied = self.store.apply_result(signal, result, now)
        except Exception as exc:
            logger.exception("Failed to apply {} to signal {}: {}", result.action.value, signal.id, exc)
            summary.errors += 1
            return str(exc)
        if not applied:
            logger.info("Signal {} changed since read, {} not applied", signal.id, result.action.value)
            summary.conflicts += 1
            return None

        if result.action == EvalAction.ENTER:
            summary.entered += 1
            logger.info("Signal {} {} entered at {}", signal.id, signal.instrument, result.timestamp)
        elif result.action in (EvalAction.RESOLVE_TP, EvalAction.RESOLVE_SL):
            summary.resolved += 1
            logger.info("Signal {} {} {} at {}", signal.id, signal.instrument, result.action.value, result.timestamp)
        elif result.action == EvalAction.MARK_UNVERIFIED:
            summary.flagged += 1
            logger.info("Signal {} {} flagged: {}", signal.id, signal.instrument, result.reason.value)
        return None
