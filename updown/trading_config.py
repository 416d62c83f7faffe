"""Hot-reloadable trading configuration.

``trading-config.json`` is edited by operators while the engine runs. It is
parsed into an immutable ``TradingConfig`` snapshot; ``ConfigWatcher`` polls
the file and swaps the snapshot reference, and every decision receives the
snapshot as an argument instead of reading disk on the hot path.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

log = logging.getLogger(__name__)

PATH_NAMES = ("arb", "breakingNews", "path1", "path2", "path3", "whale", "macro")

DEFAULT_PARAMS: dict[str, float] = {
    "minMarketOdds": 0.40,
    "minEdge": 0.03,                     # 3% min edge over market price
    "arbMinDiscrepancy": 0.02,           # implied vs actual odds gap
    "arbMinPriceMove": 0.003,            # 0.3% spot move to look for arb
    "arbMinConfidence": 0.45,
    "breakingNewsMinConfidence": 0.60,
    "breakingNewsCooldownMin": 15,       # per asset
    "breakingNewsMaxPerHour": 3,         # all assets
    "breakingNewsMinPriceMove": 0.002,   # same-direction confirmation
    "path1Confidence": 0.55, "path1Categories": 3,
    "path2Confidence": 0.70, "path2Categories": 2,
    "path3Confidence": 0.75, "path3Categories": 1,
    "whaleMinImbalance": 0.15,
    "correlationThreshold": 0.03,        # 3% BTC move
    "correlationWindowMin": 5,
    "minScore": 1.0,
    "confidenceBase": 0.50,
    "confidenceDivisor": 6.0,
    "confidenceSpan": 0.30,
    "confidenceCap": 0.80,
    "regimeLowRatio": 0.8, "regimeLowMultiplier": 0.5,
    "regimeHighRatio": 1.6, "regimeHighMultiplier": 1.2,
    "macroMinOdds": 0.40,
    "macroMinEdge": 0.03,
}

DEFAULT_ASSET_WEIGHTS: dict[str, float] = {"SOL": 0.03, "ETH": 0.02, "BTC": 0.0}
DEFAULT_EXCLUDED_ASSETS: tuple[str, ...] = ("XRP",)

# Confidence -> multiplier of the base stake, used when no stakeTiers are configured
DEFAULT_STAKE_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (0.75, 2.0),
    (0.70, 1.5),
    (0.60, 1.0),
    (0.50, 0.5),
    (0.0, 0.5),
)


@dataclass(frozen=True)
class StakeTier:
    min_conf: float
    stake: float


@dataclass(frozen=True)
class TradingConfig:
    paths: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({p: True for p in PATH_NAMES}))
    params: Mapping[str, float] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_PARAMS)))
    asset_weights: Mapping[str, float] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_ASSET_WEIGHTS)))
    excluded_assets: tuple[str, ...] = DEFAULT_EXCLUDED_ASSETS
    stake_tiers: tuple[StakeTier, ...] = ()
    kill_switch: bool = False

    def param(self, key: str) -> float:
        return self.params.get(key, DEFAULT_PARAMS[key])

    def path_enabled(self, name: str) -> bool:
        return self.paths.get(name, True)

    def asset_weight(self, asset: str) -> float:
        return self.asset_weights.get(asset, 0.0)

    def stake_for_confidence(self, confidence: float, base_stake: float) -> float:
        """Stake in dollars for a given confidence.

        Configured tiers carry absolute stakes; the built-in tiers are
        multipliers of ``base_stake``.
        """
        if self.stake_tiers:
            for tier in self.stake_tiers:
                if confidence >= tier.min_conf:
                    return tier.stake
            return self.stake_tiers[-1].stake
        for min_conf, mult in DEFAULT_STAKE_MULTIPLIERS:
            if confidence >= min_conf:
                return float(round(base_stake * mult))
        return base_stake

    def describe_stake_tiers(self, base_stake: float) -> list[dict[str, float]]:
        if self.stake_tiers:
            return [{"minConf": t.min_conf, "stake": t.stake} for t in self.stake_tiers]
        return [
            {"minConf": c, "multiplier": m, "stake": round(base_stake * m)}
            for c, m in DEFAULT_STAKE_MULTIPLIERS
        ]


def parse_trading_config(raw: dict[str, Any]) -> TradingConfig:
    """Build a snapshot from the JSON document, layering it over defaults.

    Unknown keys are ignored; malformed entries raise ValueError/TypeError.
    """
    paths = {p: True for p in PATH_NAMES}
    for name, entry in (raw.get("paths") or {}).items():
        if isinstance(entry, dict):
            paths[name] = entry.get("enabled") is not False
        else:
            paths[name] = bool(entry)

    params = dict(DEFAULT_PARAMS)
    for key, value in (raw.get("params") or {}).items():
        params[key] = float(value)

    weights = dict(DEFAULT_ASSET_WEIGHTS)
    if raw.get("assetWeights") is not None:
        weights = {str(k).upper(): float(v) for k, v in raw["assetWeights"].items()}

    excluded = DEFAULT_EXCLUDED_ASSETS
    if raw.get("excludedAssets") is not None:
        excluded = tuple(str(a).upper() for a in raw["excludedAssets"])

    tiers = tuple(
        StakeTier(min_conf=float(t["minConf"]), stake=float(t["stake"]))
        for t in (raw.get("stakeTiers") or [])
    )
    tiers = tuple(sorted(tiers, key=lambda t: t.min_conf, reverse=True))

    return TradingConfig(
        paths=MappingProxyType(paths),
        params=MappingProxyType(params),
        asset_weights=MappingProxyType(weights),
        excluded_assets=excluded,
        stake_tiers=tiers,
        kill_switch=raw.get("killSwitch") is True,
    )


def load_trading_config(path: Path, fallback: TradingConfig | None = None) -> TradingConfig:
    """Read the config file; on any failure return ``fallback`` (or defaults)."""
    fallback = fallback or TradingConfig()
    try:
        raw = json.loads(Path(path).read_text())
    except FileNotFoundError:
        return fallback
    except (OSError, json.JSONDecodeError):
        log.warning("Trading config unreadable at %s, keeping previous settings", path)
        return fallback
    try:
        return parse_trading_config(raw)
    except (ValueError, TypeError, KeyError, AttributeError):
        log.warning("Trading config malformed at %s, keeping previous settings", path)
        return fallback


class ConfigWatcher:
    """Keeps ``current`` in sync with the file on disk.

    Readers grab ``watcher.current`` once per decision; the reference swap is
    atomic, so a decision never sees a half-applied update.
    """

    def __init__(self, path: Path, interval_s: float = 5.0):
        self.path = Path(path)
        self.interval_s = interval_s
        self._mtime: float | None = None
        self.current: TradingConfig = TradingConfig()
        self._task: asyncio.Task | None = None
        self.refresh()

    def refresh(self) -> bool:
        """Reload if the file changed. Returns True when a new snapshot was swapped in."""
        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            mtime = None
        if mtime == self._mtime:
            return False
        self._mtime = mtime
        new = load_trading_config(self.path, fallback=self.current) if mtime is not None else TradingConfig()
        if new != self.current:
            self.current = new
            log.info(
                "Trading config reloaded: paths=%s excluded=%s kill=%s",
                [p for p, on in new.paths.items() if on], list(new.excluded_assets), new.kill_switch,
            )
            return True
        return False

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.refresh()
            except Exception:
                log.exception("Config watcher refresh failed")
