from __future__ import annotations

import asyncio
import sys

from loguru import logger

from data.store import BaseStore
from engine.models import InstrumentType
from engine.runner import BatchRunner, EvalSummary
from providers.base import CandleProvider
from providers.binance_spot import BinanceCandleProvider
from providers.csv_files import CsvCandleProvider
from providers.http_bridge import HttpBridgeCandleProvider
from providers.mt5_terminal import MT5CandleProvider
from providers.routing import RoutingCandleProvider
from providers.stub import StubCandleProvider
from services.config_service import ConfigService, IntegritySettings
from services.notifier import Notifier


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def build_provider(name: str, settings: IntegritySettings, symbol_map: dict[str, str]) -> CandleProvider:
    """Build the candle provider selected by ``CANDLE_PROVIDER``."""
    if name == "stub":
        return StubCandleProvider()
    if name == "csv":
        return CsvCandleProvider(settings.CANDLE_CSV_DIR, symbol_map)
    if name == "binance":
        return BinanceCandleProvider(settings.BINANCE_API_KEY, settings.BINANCE_API_SECRET, symbol_map)
    if name == "bridge":
        if not settings.MARKET_DATA_BRIDGE_URL:
            raise ValueError("MARKET_DATA_BRIDGE_URL is required for the bridge provider")
        return HttpBridgeCandleProvider(
            settings.MARKET_DATA_BRIDGE_URL,
            token=settings.MARKET_DATA_BRIDGE_TOKEN,
            symbol_map=symbol_map,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    if name == "mt5":
        return MT5CandleProvider(settings.MT5_LOGIN, settings.MT5_PASSWORD, settings.MT5_SERVER, symbol_map)
    if name == "routed":
        crypto = build_provider("binance", settings, symbol_map)
        if settings.MARKET_DATA_BRIDGE_URL:
            fx = build_provider("bridge", settings, symbol_map)
        elif settings.MT5_LOGIN:
            fx = build_provider("mt5", settings, symbol_map)
        else:
            fx = StubCandleProvider()
        return RoutingCandleProvider({InstrumentType.CRYPTO: crypto, InstrumentType.FOREX: fx, InstrumentType.CFD: fx}, default=fx)
    raise ValueError(f"Unknown candle provider: {name}")


class EvaluatorOrchestrator:
    """Process wiring: one provider, one runner, an optional periodic loop."""

    def __init__(
        self,
        store: BaseStore,
        settings: IntegritySettings,
        notifier: Notifier | None = None,
        provider: CandleProvider | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.notifier = notifier
        self.config_service = ConfigService(store, settings)
        if provider is None:
            config = self.config_service.load()
            provider = build_provider(config.candle_provider, settings, config.symbol_map)
        self.provider = provider
        admins = [x.strip() for x in settings.ADMIN_TELEGRAM_IDS.split(",") if x.strip()]
        chat_id = settings.TELEGRAM_CHAT_ID or (admins[0] if admins else None)
        self.runner = BatchRunner(provider, store, self.config_service, notifier=notifier, chat_id=chat_id)
        self._task: asyncio.Task | None = None

    async def run_once(self) -> EvalSummary:
        return await self.runner.evaluate_all_pending_trades()

    def start_schedule(self) -> bool:
        if self._task and not self._task.done():
            return True
        interval = self.config_service.load().evaluation_interval_seconds
        if interval <= 0:
            logger.info("Periodic evaluation disabled")
            return False
        self._task = asyncio.create_task(self.runner.run_forever())
        logger.info("Periodic evaluation every {}s", interval)
        return True

    async def stop(self) -> None:
        self.runner.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.provider.aclose()
        logger.info("Evaluator stopped")
