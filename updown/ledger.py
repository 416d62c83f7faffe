"""Trade ledger: one record per decision attempt, qualified or not.

The ledger service itself lives outside this process; ``TradeLedger`` is
the narrow seam it plugs into. ``JsonlLedger`` is the local default.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from updown.execution import ExecutionResult
from updown.gate import TradeDecision

log = logging.getLogger(__name__)


def ledger_record(decision: TradeDecision, mode: str,
                  result: ExecutionResult | None = None,
                  now: datetime | None = None) -> dict[str, Any]:
    rec = decision.record()
    rec["loggedAt"] = (now or datetime.now(timezone.utc)).isoformat()
    rec["mode"] = mode
    rec["execution"] = result.to_dict() if result is not None else None
    return rec


class TradeLedger:
    def log_attempt(self, record: dict[str, Any]) -> None:
        raise NotImplementedError

    def read_all(self) -> list[dict[str, Any]]:
        raise NotImplementedError


class JsonlLedger(TradeLedger):
    """Append-only JSON lines file, fsynced per record."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def log_attempt(self, record: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            log.exception("Failed to append ledger record")

    def read_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        out = []
        with open(self.path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(json.loads(line))
                except ValueError:
                    log.warning("Skipping malformed ledger line")
        return out
