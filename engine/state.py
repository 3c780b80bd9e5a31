from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from data.store import BaseStore


@dataclass
class RunnerState:
    last_run_at: int | None
    last_summary: dict[str, Any] | None
    last_error: str | None


class RunnerStateStore:
    def __init__(self, store: BaseStore) -> None:
        self.store = store

    def load(self) -> RunnerState:
        row = self.store.get_runner_state()
        summary = row.get("last_summary")
        return RunnerState(
            last_run_at=row.get("last_run_at"),
            last_summary=json.loads(summary) if summary else None,
            last_error=row.get("last_error"),
        )

    def record_run(self, run_at: int, summary: dict[str, Any], last_error: str | None) -> None:
        self.store.set_runner_state(last_run_at=run_at, last_summary=json.dumps(summary), last_error=last_error)
