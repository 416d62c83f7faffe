"""Operator commands.

    updown status
    updown mode [paper|real|disabled]
    updown kill [reason...]
    updown unkill
    updown wallet
    updown whale {check,backfill,report}
    updown run
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging

from updown.active_trades import ActiveTrades
from updown.auth import ClientFactory
from updown.config import TRADING_MODES, Config
from updown.execution import Executor
from updown.kill_switch import KillSwitch, TradingModeFile
from updown.store import StateStore
from updown.whale_tracker import WhaleTracker, WhaleTradeDB

log = logging.getLogger(__name__)


def _status(cfg: Config) -> int:
    kill = KillSwitch(cfg.kill_switch_path)
    mode = TradingModeFile(cfg.trading_mode_path)
    store = StateStore(cfg.state_db_path)
    state = Executor(cfg, store, kill, mode).daily_state()

    info = kill.info()
    print(f"Mode:          {mode.read()}")
    print(f"Kill switch:   {'ACTIVE (' + info.reason + ')' if info else 'off'}")
    print(f"Wallet:        {cfg.funder_address or 'not configured'}")
    print(f"Date:          {state['date']}")
    print(f"Trades placed: {state['tradesPlaced']}/{cfg.max_daily_trades}")
    print(f"Open:          {state['openPositions']}/{cfg.max_concurrent_positions}")
    print(f"PnL:           ${state['totalPnl']:+.2f} (limit -${cfg.max_daily_loss:g})")
    for t in state["trades"][-10:]:
        print(f"  {t['timestamp'][11:19]} {t['asset']:<4} {t['direction']:<4} "
              f"${t['stake']:.2f} @ {t['entryOdds']:.2f} ({t.get('orderType')})")
    if cfg.bot_status_path.exists():
        try:
            bot = json.loads(cfg.bot_status_path.read_text())
            print(f"Bot:           {bot.get('status')} (last run {bot.get('lastRun')}, "
                  f"{bot.get('consecutiveErrors', 0)} consecutive errors)")
        except (OSError, ValueError):
            print("Bot:           status file unreadable")
    return 0


def _mode(cfg: Config, value: str | None) -> int:
    mode = TradingModeFile(cfg.trading_mode_path)
    if value is None:
        print(mode.read())
        return 0
    try:
        mode.set(value, updated_by="cli")
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Trading mode set to: {value}")
    return 0


def _kill(cfg: Config, reason: list[str]) -> int:
    info = KillSwitch(cfg.kill_switch_path).activate(" ".join(reason) or "Manual kill")
    print(f"Kill switch ACTIVATED: {info.reason}")
    return 0


def _unkill(cfg: Config) -> int:
    if KillSwitch(cfg.kill_switch_path).clear():
        print("Kill switch deactivated")
    else:
        print("Kill switch was not active")
    return 0


def _wallet(cfg: Config) -> int:
    print(f"Funder:         {cfg.funder_address or 'not configured'}")
    print(f"Signing key:    {'configured' if cfg.private_key else 'missing'}")
    print(f"Signature type: {cfg.signature_type}")
    print(f"CLOB host:      {cfg.clob_host}")
    if not cfg.private_key:
        return 1
    client = ClientFactory(cfg).get()
    print(f"API creds:      {'ok' if client is not None else 'FAILED'}")
    return 0 if client is not None else 1


def _whale(cfg: Config, action: str) -> int:
    tracker = WhaleTracker(cfg.whale_wallet, WhaleTradeDB(cfg.state_db_path), cfg.data_api_host)
    if action == "check":
        fresh = tracker.check_new_trades()
        print(f"{len(fresh)} new trades")
        for asset in ("BTC", "ETH", "SOL", "XRP"):
            act = tracker.activity(asset, 15)
            if act.active:
                print(f"  {asset}: {act.trade_count} trades, ${act.total_usdc:,.0f}, "
                      f"imbalance {act.flow_imbalance:+.0%} -> {act.dominant_side}")
        return 0
    if action == "backfill":
        print(f"{tracker.backfill()} trades stored")
        return 0

    our_trades = ActiveTrades(StateStore(cfg.state_db_path)).all()
    report = tracker.analyze() + "\n\n" + tracker.cross_reference(our_trades)
    cfg.whale_report_path.parent.mkdir(parents=True, exist_ok=True)
    cfg.whale_report_path.write_text(report)
    print(report)
    print(f"\nSaved to {cfg.whale_report_path}")
    return 0


def _run(cfg: Config) -> int:
    from updown.main import TradingBot

    bot = TradingBot(cfg)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        pass
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="updown", description="Up/Down market decision engine")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Mode, kill switch and today's trading state")
    p = sub.add_parser("mode", help=f"Show or set trading mode ({'|'.join(TRADING_MODES)})")
    p.add_argument("value", nargs="?")
    p = sub.add_parser("kill", help="Activate the kill switch")
    p.add_argument("reason", nargs="*")
    sub.add_parser("unkill", help="Clear the kill switch")
    sub.add_parser("wallet", help="Wallet and API credential check")
    p = sub.add_parser("whale", help="Tracked wallet tools")
    p.add_argument("action", choices=["check", "backfill", "report"])
    sub.add_parser("run", help="Run the decision loop")
    return parser


def main(argv: list[str] | None = None, cfg: Config | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = cfg or Config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.command == "status":
        return _status(cfg)
    if args.command == "mode":
        return _mode(cfg, args.value)
    if args.command == "kill":
        return _kill(cfg, args.reason)
    if args.command == "unkill":
        return _unkill(cfg)
    if args.command == "wallet":
        return _wallet(cfg)
    if args.command == "whale":
        return _whale(cfg, args.action)
    return _run(cfg)


if __name__ == "__main__":
    raise SystemExit(main())
