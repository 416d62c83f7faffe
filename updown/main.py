from __future__ import annotations

import asyncio
import logging
import signal
import time
from datetime import datetime, timezone

from updown.active_trades import ActiveTrades
from updown.config import ASSETS, Config
from updown.execution import ExecutionResult, Executor, OrderRequest
from updown.gate import GateContext, NewsGuard, TradeDecision, check_window, decide, evaluate, macro_decisions
from updown.history import OddsHistory, PriceHistory, record_odds, record_prices
from updown.indicators import odds_indicators
from updown.kill_switch import KillSwitch, TradingModeFile
from updown.ledger import JsonlLedger, TradeLedger, ledger_record
from updown.liquidation_feed import LiquidationFeed
from updown.macro_events import MacroAnalysis, MacroCalendar
from updown.market_discovery import Market, MarketDiscovery
from updown.orderbook_feed import NEUTRAL, OrderBookFeed
from updown.price_feeds import PriceFeeds
from updown.resolver import ResultChecker
from updown.sentiment import AssetSentiment, SentimentSource
from updown.session_tracker import SessionTracker
from updown.signals import SignalInputs, generate_signal
from updown.status import price_alerts, raise_price_alert, write_bot_status
from updown.store import StateStore
from updown.trading_config import ConfigWatcher, TradingConfig
from updown.whale_tracker import WhaleTracker, WhaleTradeDB

log = logging.getLogger("updown")


class TradingBot:
    def __init__(self, cfg: Config, ledger: TradeLedger | None = None):
        self.cfg = cfg
        self._setup_logging()

        self.store = StateStore(cfg.state_db_path)
        self.kill_switch = KillSwitch(cfg.kill_switch_path)
        self.mode = TradingModeFile(cfg.trading_mode_path)
        self.config_watcher = ConfigWatcher(cfg.trading_config_path, cfg.config_watch_interval_s)

        self.price_feeds = PriceFeeds(cfg)
        self.orderbook = OrderBookFeed(cfg.coinbase_ws_url) if cfg.orderbook_enabled else None
        self.liquidations = LiquidationFeed(cfg.binance_futures_ws_url) if cfg.liquidations_enabled else None
        self.discovery = MarketDiscovery(cfg)
        self.calendar = MacroCalendar(cfg.calendar_url)
        self.sentiment = SentimentSource(cfg.sentiment_cmd, cfg.sentiment_file, cfg.sentiment_timeout_s)
        self.whales = WhaleTracker(cfg.whale_wallet, WhaleTradeDB(cfg.state_db_path), cfg.data_api_host)

        self.active_trades = ActiveTrades(self.store)
        self.news_guard = NewsGuard(self.store)
        self.executor = Executor(cfg, self.store, self.kill_switch, self.mode)
        self.results = ResultChecker(cfg, self.active_trades, self.executor)
        self.sessions = SessionTracker(self.store)
        self.ledger = ledger or JsonlLedger(cfg.ledger_path)

        self._shutdown_event = asyncio.Event()
        self._last_whale_poll = 0.0
        self._last_results_check = 0.0

    def _setup_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.cfg.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    async def run(self) -> None:
        """Main loop: refresh feeds, score every live window, trade the ones that qualify."""
        log.info("=" * 60)
        log.info("Up/Down decision engine | mode=%s | strategy=%s | tick=%ds",
                 self.mode.read(), self.cfg.order_strategy, self.cfg.tick_interval_s)
        log.info("Limits: $%.0f/trade, $%.0f daily loss, %d trades/day, %d open",
                 self.cfg.max_stake_per_trade, self.cfg.max_daily_loss,
                 self.cfg.max_daily_trades, self.cfg.max_concurrent_positions)
        log.info("=" * 60)

        await self.price_feeds.start()
        if self.orderbook:
            await self.orderbook.start()
        if self.liquidations:
            await self.liquidations.start()
        await self.config_watcher.start()
        await asyncio.sleep(self.cfg.feed_warmup_s)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_shutdown)

        try:
            while not self._shutdown_event.is_set():
                await self._tick()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.cfg.tick_interval_s,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._cleanup()

    def _handle_shutdown(self) -> None:
        log.info("Shutdown signal received")
        self._shutdown_event.set()

    async def _tick(self) -> None:
        log.info("--- Tick ---")
        tcfg = self.config_watcher.current
        try:
            placed = await self.run_cycle(tcfg)
        except Exception as exc:
            log.exception("Cycle failed")
            write_bot_status(self.cfg.bot_status_path, tcfg, self.cfg.base_stake,
                             status="error", error=str(exc)[:500])
            return
        write_bot_status(self.cfg.bot_status_path, tcfg, self.cfg.base_stake, trades_placed=placed)
        await self._periodic()

    async def _periodic(self) -> None:
        now = time.time()
        if now - self._last_whale_poll >= self.cfg.whale_poll_interval_s:
            self._last_whale_poll = now
            try:
                await asyncio.to_thread(self.whales.check_new_trades)
            except Exception:
                log.exception("Whale poll failed")
        if now - self._last_results_check >= self.cfg.results_interval_s:
            self._last_results_check = now
            try:
                await asyncio.to_thread(self.results.check)
            except Exception:
                log.exception("Result check failed")

    # ── Cycle ──

    async def run_cycle(self, tcfg: TradingConfig) -> int:
        """One pass over all live markets. Returns the number of bets recorded."""
        now = datetime.now(timezone.utc)
        kill = self.kill_switch.info()
        if kill is not None:
            log.warning("KILL SWITCH active (%s), evaluating without trading", kill.reason)

        macro: MacroAnalysis = await asyncio.to_thread(self.calendar.analyze, now)
        if macro.avoid_trading:
            log.warning("Macro window: %s. No trades this cycle", macro.reason)
            return 0

        markets = await asyncio.to_thread(self.discovery.fetch_markets, tcfg.excluded_assets)
        if not markets:
            log.info("No live markets found, waiting...")
            return 0
        log.info("Evaluating %d markets", len(markets))

        readings = await self.price_feeds.get_prices(ASSETS)
        prices = {asset: r.price for asset, r in readings.items()}
        history = record_prices(self.store, prices, now)
        alerts = price_alerts(prices, history, now.timestamp())
        if alerts:
            raise_price_alert(self.cfg.price_alert_path, alerts)
        try:
            self.sessions.record(history, now)
        except Exception:
            log.exception("Session tracking failed")

        first_by_asset: dict[str, Market] = {}
        for m in markets:
            first_by_asset.setdefault(m.asset, m)
        odds = record_odds(self.store, {a: m.up_odds for a, m in first_by_asset.items()}, now)

        sentiment = await asyncio.to_thread(self.sentiment.fetch)
        await self.price_feeds.refresh_funding()

        decisions: list[tuple[Market, TradeDecision]] = []
        for market in markets:
            try:
                decision = self._evaluate_market(market, tcfg, history, odds, sentiment, prices, kill, now)
            except Exception:
                log.exception("Evaluation failed for %s", market.slug)
                continue
            if decision is None:
                continue
            if decision.qualify:
                decisions.append((market, decision))
            else:
                self.ledger.log_attempt(ledger_record(decision, self.mode.read()))

        for decision in macro_decisions(macro, markets, tcfg, self.cfg.base_stake, kill is not None):
            market = next(m for m in markets if m.slug == decision.slug)
            if check_window(market, now, self.active_trades.has_bet(market.slug)) is None:
                decisions.append((market, decision))

        return await self._place(decisions, now)

    def _evaluate_market(self, market: Market, tcfg: TradingConfig, history: PriceHistory,
                         odds: OddsHistory, sentiment: dict[str, AssetSentiment],
                         prices: dict[str, float], kill, now: datetime) -> TradeDecision | None:
        skip = check_window(market, now, self.active_trades.has_bet(market.slug))
        if skip:
            log.info("[%s] %s", market.asset, skip)
            return None

        asset = market.asset
        now_ts = now.timestamp()
        change = history.last_change(asset)
        sent = sentiment.get(asset)
        inputs = SignalInputs(
            market=market,
            indicators=odds_indicators(odds.up_odds(asset)),
            sentiment=sent,
            correlation=history.btc_correlation(
                prices.get("BTC"), now_ts,
                tcfg.param("correlationThreshold"), tcfg.param("correlationWindowMin"),
            ),
            price_change=change,
            trend_30m=history.trend(asset, 30, now_ts),
            orderbook=self.orderbook.get_signal(asset) if self.orderbook else NEUTRAL,
            liquidation=self.liquidations.get_signal(asset) if self.liquidations else None,
            vwap=self.price_feeds.vwap(asset),
            funding_rate=self.price_feeds.funding_rate(asset),
            volatility_ratio=history.volatility_ratio(asset),
        )
        sig = generate_signal(inputs, tcfg)
        if sig is None:
            log.info("[%s] No signal (score below minimum)", asset)
            return None

        ctx = GateContext(
            kill_reason=kill.reason if kill else None,
            whale=self.whales.signal(market.slug),
            news_summary=sent.summary if sent else "",
            price_change=change,
            news_guard=self.news_guard,
            now_ts=now_ts,
        )
        verdict = evaluate(sig, tcfg, ctx)
        decision = decide(market, sig, verdict, tcfg, self.cfg.base_stake)
        log.info(
            "[%s] %s @ %.0f%% | fair %.0f%% | edge %.1f%% | conf %.0f%% | %d cats | %s: %s",
            asset, sig.direction, sig.market_odds * 100, sig.fair_odds * 100, sig.edge * 100,
            sig.confidence * 100, sig.category_count,
            "QUALIFY" if verdict.qualify else "reject", verdict.reason,
        )
        return decision

    async def _place(self, decisions: list[tuple[Market, TradeDecision]], now: datetime) -> int:
        mode = self.mode.read()
        to_execute: list[tuple[Market, TradeDecision]] = []
        for market, decision in decisions:
            entry = decision.record()
            entry["windowStart"] = market.start.isoformat() if market.start else None
            entry["windowEnd"] = market.end.isoformat() if market.end else None
            entry["tokenId"] = market.token_for(decision.direction)
            entry["mode"] = mode
            if not self.active_trades.record(market.slug, entry, now):
                log.info("[%s] Already bet on %s", market.asset, market.slug)
                continue
            log.info("BET %s %s $%.2f (%s) | %s", decision.asset, decision.direction,
                     decision.stake, mode, decision.reason)
            to_execute.append((market, decision))

        if mode != "real":
            for _market, decision in to_execute:
                self.ledger.log_attempt(ledger_record(decision, mode))
            return len(to_execute)

        results = await asyncio.gather(
            *(asyncio.to_thread(self.executor.execute, self._order_request(m, d)) for m, d in to_execute),
            return_exceptions=True,
        )
        for (market, decision), result in zip(to_execute, results):
            if isinstance(result, BaseException):
                log.error("Execution crashed for %s: %s", market.slug, result)
                result = ExecutionResult(success=False, reason=f"Execution error: {result}")
            self._apply_result(market.slug, result)
            self.ledger.log_attempt(ledger_record(decision, mode, result))
        return len(to_execute)

    def _order_request(self, market: Market, decision: TradeDecision) -> OrderRequest:
        return OrderRequest(
            asset=decision.asset,
            direction=decision.direction,
            slug=market.slug,
            token_id=market.token_for(decision.direction),
            price=decision.market_odds,
            stake=decision.stake,
            strategy=self.cfg.order_strategy,
        )

    def _apply_result(self, slug: str, result: ExecutionResult) -> None:
        def _apply(entry):
            entry["executed"] = result.success
            if result.success:
                entry["orderId"] = result.order_id
                entry["stake"] = result.stake
                entry["orderType"] = result.order_type
                if result.fill_price is not None:
                    entry["entryOdds"] = result.fill_price
            else:
                entry["executionError"] = result.reason

        self.active_trades.update(slug, _apply)
        if result.success:
            log.info("REAL TRADE PLACED: %s order=%s fill=%s", slug, result.order_id, result.fill_price)
        else:
            log.warning("REAL TRADE FAILED: %s | %s", slug, result.reason)

    async def _cleanup(self) -> None:
        log.info("Shutting down...")
        await self.config_watcher.stop()
        await self.price_feeds.stop()
        if self.orderbook:
            await self.orderbook.stop()
        if self.liquidations:
            await self.liquidations.stop()
        log.info("Shutdown complete")


def main() -> None:
    cfg = Config()
    bot = TradingBot(cfg)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
