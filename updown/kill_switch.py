"""File-based kill switch and trading-mode flag.

The kill switch is a JSON marker file; while it exists no order reaches the
venue. Operators create/remove it through the CLI, the Execution Engine
creates it on a daily-loss breach or a balance/allowance failure.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from updown.config import TRADING_MODES

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class KillSwitchInfo:
    reason: str
    activated: str


class KillSwitch:
    """Singleton-style flag backed by one marker file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def is_active(self) -> bool:
        return self.path.exists()

    def info(self) -> KillSwitchInfo | None:
        """Return activation details, or None when not active."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
            return KillSwitchInfo(reason=data.get("reason", "unknown"), activated=data.get("activated", "unknown"))
        except (OSError, json.JSONDecodeError):
            return KillSwitchInfo(reason="unknown", activated="unknown")

    def activate(self, reason: str = "Manual kill") -> KillSwitchInfo:
        ts = datetime.now(timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"activated": ts, "reason": reason}))
        log.warning("KILL SWITCH ACTIVATED: %s", reason)
        return KillSwitchInfo(reason=reason, activated=ts)

    def clear(self) -> bool:
        """Remove the marker. Returns False if it was not set."""
        if self.path.exists():
            self.path.unlink()
            log.info("Kill switch deactivated")
            return True
        return False


class TradingModeFile:
    """Persisted trading mode: ``paper`` (default), ``real`` or ``disabled``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> str:
        try:
            mode = json.loads(self.path.read_text()).get("mode", "paper")
        except (OSError, json.JSONDecodeError):
            return "paper"
        return mode if mode in TRADING_MODES else "paper"

    def set(self, mode: str, updated_by: str = "cli") -> dict:
        if mode not in TRADING_MODES:
            raise ValueError(f"Invalid mode: {mode} (expected one of {', '.join(TRADING_MODES)})")
        data = {
            "mode": mode,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
            "updatedBy": updated_by,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))
        log.info("Trading mode set to: %s", mode)
        return data
