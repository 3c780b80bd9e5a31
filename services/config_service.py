from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from data.store import BaseStore
from engine.instruments import WeekBoundary


class IntegritySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_PATH: str = "./integrity.db"
    DATABASE_URL: str = ""
    CANDLE_PROVIDER: str = "stub"
    CANDLE_CSV_DIR: str = "./candles"
    BINANCE_API_KEY: str = ""
    BINANCE_API_SECRET: str = ""
    MARKET_DATA_BRIDGE_URL: str = ""
    MARKET_DATA_BRIDGE_TOKEN: str = ""
    MT5_LOGIN: str = ""
    MT5_PASSWORD: str = ""
    MT5_SERVER: str = ""
    SYMBOL_MAP: str = "{}"
    HORIZON_DAYS: float = 7.0
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    MAX_CONCURRENCY: int = 4
    BATCH_SIZE: int = 50
    EXIT_TIE_BREAK: str = "adverse"
    FLAG_ENTRY_CONFLICTS: bool = False
    MAX_CANDLE_GAP_SECONDS: int = 0
    FOREX_WEEKEND_START_UTC: str = "FRI 21:00"
    FOREX_WEEKEND_END_UTC: str = "MON 00:00"
    EVALUATION_INTERVAL_SECONDS: int = 0
    ADMIN_API_TOKENS: str = ""
    TELEGRAM_BOT_TOKEN: str = ""
    ADMIN_TELEGRAM_IDS: str = ""
    TELEGRAM_CHAT_ID: str = ""
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"


class RuntimeConfig(BaseModel):
    candle_provider: Literal["stub", "csv", "binance", "bridge", "mt5", "routed"] = "stub"
    horizon_days: float = Field(default=7.0, gt=0)
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1)
    batch_size: int = Field(default=50, ge=1)
    exit_tie_break: Literal["adverse", "flag"] = "adverse"
    flag_entry_conflicts: bool = False
    max_candle_gap_seconds: int = Field(default=0, ge=0)
    forex_weekend_start: str = "FRI 21:00"
    forex_weekend_end: str = "MON 00:00"
    evaluation_interval_seconds: int = Field(default=0, ge=0)
    symbol_map: dict[str, str] = Field(default_factory=dict)

    @field_validator("forex_weekend_start", "forex_weekend_end")
    @classmethod
    def _check_week_boundary(cls, value: str) -> str:
        WeekBoundary.parse(value)
        return value

    @property
    def horizon_seconds(self) -> int:
        return int(self.horizon_days * 86400)


# settings an admin may override at runtime, mapped to RuntimeConfig fields
RUNTIME_KEYS = {
    "CANDLE_PROVIDER": "candle_provider",
    "HORIZON_DAYS": "horizon_days",
    "PROVIDER_TIMEOUT_SECONDS": "provider_timeout_seconds",
    "MAX_CONCURRENCY": "max_concurrency",
    "BATCH_SIZE": "batch_size",
    "EXIT_TIE_BREAK": "exit_tie_break",
    "FLAG_ENTRY_CONFLICTS": "flag_entry_conflicts",
    "MAX_CANDLE_GAP_SECONDS": "max_candle_gap_seconds",
    "FOREX_WEEKEND_START_UTC": "forex_weekend_start",
    "FOREX_WEEKEND_END_UTC": "forex_weekend_end",
    "EVALUATION_INTERVAL_SECONDS": "evaluation_interval_seconds",
    "SYMBOL_MAP": "symbol_map",
}


class ConfigService:
    def __init__(self, store: BaseStore, base: IntegritySettings) -> None:
        self.store = store
        self.base = base

    def _values(self, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, field_name in RUNTIME_KEYS.items():
            default = getattr(self.base, key)
            if overrides and key in overrides:
                values[field_name] = overrides[key]
            else:
                values[field_name] = self.store.get_setting(key, default)
        raw_map = values["symbol_map"]
        try:
            values["symbol_map"] = json.loads(raw_map) if isinstance(raw_map, str) else raw_map
        except json.JSONDecodeError:
            values["symbol_map"] = {}
        return values

    def load(self) -> RuntimeConfig:
        return RuntimeConfig(**self._values())

    def update(self, key: str, value: Any) -> RuntimeConfig:
        """Validate and persist a runtime override. Raises ValueError for unknown keys or bad values."""
        key = key.upper()
        if key not in RUNTIME_KEYS:
            raise ValueError(f"Unknown setting: {key}")
        config = RuntimeConfig(**self._values({key: value}))
        self.store.set_setting(key, value)
        return config
