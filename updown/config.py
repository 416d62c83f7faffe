from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _flag(key: str, default: str = "false") -> bool:
    return _env(key, default).lower() in ("true", "1", "yes")


DATA_DIR = Path(_env("DATA_DIR", str(Path(__file__).resolve().parent.parent / "data")))

ASSETS = ("BTC", "ETH", "SOL", "XRP")
TRADING_MODES = ("paper", "real", "disabled")


@dataclass(frozen=True)
class Config:
    # Wallet & auth
    private_key: str = _env("POLYMARKET_PRIVATE_KEY", _env("PRIVATE_KEY"))
    funder_address: str = _env("FUNDER_ADDRESS")
    signature_type: int = int(_env("SIGNATURE_TYPE", "2"))  # POLY_GNOSIS_SAFE
    chain_id: int = int(_env("CHAIN_ID", "137"))

    # Endpoints (CLOB_HOST may point at the authenticated regional proxy)
    clob_host: str = _env("CLOB_HOST", "https://clob.polymarket.com")
    gamma_host: str = _env("GAMMA_HOST", "https://gamma-api.polymarket.com")
    data_api_host: str = _env("DATA_API_HOST", "https://data-api.polymarket.com")
    binance_ws_url: str = _env("BINANCE_WS_URL", "wss://stream.binance.us:9443")
    binance_futures_ws_url: str = _env("BINANCE_FUTURES_WS_URL", "wss://fstream.binance.com")
    binance_futures_rest: str = _env("BINANCE_FUTURES_REST", "https://fapi.binance.com")
    coinbase_ws_url: str = _env("COINBASE_WS_URL", "wss://ws-feed.exchange.coinbase.com")
    coingecko_url: str = _env("COINGECKO_URL", "https://api.coingecko.com/api/v3")
    calendar_url: str = _env("CALENDAR_URL", "https://nfs.faireconomy.media/ff_calendar_thisweek.json")

    # Venue ceilings
    max_stake_per_trade: float = float(_env("MAX_STAKE_PER_TRADE", "10"))
    max_daily_loss: float = float(_env("MAX_DAILY_LOSS", "50"))
    max_daily_trades: int = int(_env("MAX_DAILY_TRADES", "30"))
    max_concurrent_positions: int = int(_env("MAX_CONCURRENT_POSITIONS", "20"))
    base_stake: float = float(_env("BASE_STAKE", "10"))
    order_strategy: str = _env("ORDER_STRATEGY", "taker")  # "maker" | "taker"

    # Smart-money wallet
    whale_wallet: str = _env("WHALE_WALLET", "0x732f189193d7a8c8bc8d8eb91f501a22736af081")

    # External sentiment classifier: shell command printing JSON, or a JSON file
    sentiment_cmd: str = _env("SENTIMENT_CMD")
    sentiment_file: str = _env("SENTIMENT_FILE")
    sentiment_timeout_s: float = float(_env("SENTIMENT_TIMEOUT_S", "45"))

    # Loop timing
    tick_interval_s: int = int(_env("TICK_INTERVAL_S", "30"))
    whale_poll_interval_s: int = int(_env("WHALE_POLL_INTERVAL_S", "300"))
    results_interval_s: int = int(_env("RESULTS_INTERVAL_S", "300"))
    config_watch_interval_s: float = float(_env("CONFIG_WATCH_INTERVAL_S", "5"))
    feed_warmup_s: float = float(_env("FEED_WARMUP_S", "3"))
    orderbook_enabled: bool = _flag("ORDERBOOK_ENABLED", "true")
    liquidations_enabled: bool = _flag("LIQUIDATIONS_ENABLED", "true")

    # Files
    data_dir: Path = DATA_DIR
    kill_switch_path: Path = Path(_env("KILL_SWITCH_PATH", str(DATA_DIR / "kill_switch.flag")))
    trading_mode_path: Path = Path(_env("TRADING_MODE_PATH", str(DATA_DIR / "trading-mode.json")))
    trading_config_path: Path = Path(_env("TRADING_CONFIG_PATH", str(DATA_DIR / "trading-config.json")))
    state_db_path: Path = Path(_env("STATE_DB_PATH", str(DATA_DIR / "state.db")))
    daily_state_path: Path = Path(_env("DAILY_STATE_PATH", str(DATA_DIR / "real-trading-state.json")))
    bot_status_path: Path = Path(_env("BOT_STATUS_PATH", str(DATA_DIR / "bot-status.json")))
    price_alert_path: Path = Path(_env("PRICE_ALERT_PATH", str(DATA_DIR / "price-alert.json")))
    ledger_path: Path = Path(_env("LEDGER_PATH", str(DATA_DIR / "trades.jsonl")))
    whale_report_path: Path = Path(_env("WHALE_REPORT_PATH", str(DATA_DIR / "whale-analysis.md")))

    log_level: str = _env("LOG_LEVEL", "INFO")
