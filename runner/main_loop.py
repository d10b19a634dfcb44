"""
steptrader Runner: Main Loop

Drives the trading engine on a fixed poll interval.

Flow per cycle, for each configured symbol:
1. Open a CycleDeadline (engine.cycle_timeout_seconds)
2. engine.step(symbol)
3. Log the StepResult, or the error that aborted the cycle

A failing symbol never stops the others; the next cycle decides again.

After each cycle the day's EOD summary is written once the market close
has passed, and again on shutdown.
"""

import logging
import signal
import time
from pathlib import Path
from typing import Dict, List, Optional

from ai.llm_client import create_decider
from ai.news_service import NewsSentimentService, load_fetcher
from core.audit_log import AuditLogger
from core.deadline import CycleDeadline
from core.engine import TradingEngine
from core.eod import EodSummarizer, parse_close_time
from core.exceptions import TradingError
from core.interfaces import Broker, Decider
from core.models import StepResult
from core.paper_broker import PaperBroker
from infra.metrics import MetricsRecorder
from tools.config_validator import load_config, validate_config_file

logger = logging.getLogger(__name__)


class TradingLoop:
    """
    Main loop orchestrator.

    Responsibilities:
    - Load and validate config
    - Wire broker, decider, news service, metrics and engine
    - Run periodic cycles over the symbol list
    - Shut down cleanly on SIGINT/SIGTERM
    """

    def __init__(self, config_path: str = "config/app.yaml",
                 broker: Optional[Broker] = None,
                 decider: Optional[Decider] = None,
                 install_signal_handlers: bool = True):
        errors = validate_config_file(config_path)
        if errors:
            raise ValueError("Invalid configuration:\n  " + "\n  ".join(errors))
        self.config = load_config(config_path)

        self._setup_logging()

        self.mode = self.config.app.mode
        self.symbols: List[str] = list(self.config.app.symbols)
        self.poll_seconds = float(self.config.app.poll_seconds)

        if broker is None:
            if self.mode == "LIVE":
                raise ValueError("LIVE mode requires a broker implementation")
            broker = PaperBroker(data_dir=self.config.app.data_dir)
        self.broker = broker

        self.decider = decider or create_decider(self.config.llm)

        self.news: Optional[NewsSentimentService] = None
        if self.config.news.enabled:
            self.news = NewsSentimentService(
                fetcher=load_fetcher(self.config.news.fetcher),
                enabled=True,
                cache_ttl=self.config.news.cache_ttl_seconds,
                sweep_interval=self.config.news.sweep_interval_seconds,
            )

        self.metrics = MetricsRecorder(
            enabled=self.config.metrics.enabled,
            port=self.config.metrics.port,
        )
        self.metrics.start()

        self.audit = AuditLogger(
            log_dir=self.config.audit.log_dir,
            tz_name=self.config.audit.timezone,
        )
        if self.config.audit.retention_days > 0:
            self.audit.compress_older(self.config.audit.retention_days)

        self.eod: Optional[EodSummarizer] = None
        if self.config.eod.enabled:
            self.eod = EodSummarizer(
                self.audit,
                close_time=parse_close_time(self.config.eod.close_time),
                output_dir=self.config.eod.output_dir,
            )

        self.engine = TradingEngine(
            config=self.config,
            broker=self.broker,
            decider=self.decider,
            audit=self.audit,
            news=self.news,
            metrics=self.metrics,
        )

        self._running = True
        self._closed = False
        self._current_deadline: Optional[CycleDeadline] = None
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_stop)
            signal.signal(signal.SIGTERM, self._handle_stop)

        logger.info(
            f"Initialized TradingLoop in {self.mode} mode: symbols={self.symbols}, "
            f"poll={self.poll_seconds:.0f}s"
        )

    def _setup_logging(self) -> None:
        log_cfg = self.config.logging
        log_path = Path(log_cfg.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            level=getattr(logging, log_cfg.level.upper()),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            handlers=[logging.FileHandler(log_path), logging.StreamHandler()],
        )

    def _handle_stop(self, *_):
        """Stop after the current cycle and cancel its in-flight deadline."""
        logger.warning("Shutdown signal received - stopping after current cycle")
        self._running = False
        if self._current_deadline is not None:
            self._current_deadline.cancel()

    def run_cycle(self) -> Dict[str, Optional[StepResult]]:
        """Step every symbol once. Returns symbol -> result (None when aborted)."""
        results: Dict[str, Optional[StepResult]] = {}
        for symbol in self.symbols:
            if not self._running:
                break
            deadline = CycleDeadline(self.config.engine.cycle_timeout_seconds)
            self._current_deadline = deadline
            try:
                result = self.engine.step(symbol, deadline=deadline)
            except TradingError as e:
                logger.error(f"Cycle aborted for {symbol}: {e}")
                results[symbol] = None
                continue
            except Exception as e:
                logger.exception(f"Unexpected error stepping {symbol}: {e}")
                results[symbol] = None
                continue
            finally:
                self._current_deadline = None

            action = result.decision.action if result.decision else "EXIT"
            logger.info(
                f"{symbol} @ {result.price:.4f}: {action} orders={len(result.orders)} "
                f"pnl={result.realized_pnl:+.2f} reason={result.reason!r}"
            )
            results[symbol] = result
        return results

    def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """Run cycles until stopped, sleeping the remainder of each interval."""
        interval = float(interval_seconds) if interval_seconds else self.poll_seconds
        interval = max(interval, 1.0)
        logger.info(f"Starting continuous loop (interval={interval}s)")

        try:
            while self._running:
                start = time.monotonic()
                self.run_cycle()
                self._maybe_write_eod()
                elapsed = time.monotonic() - start
                sleep_for = max(0.0, interval - elapsed)
                logger.debug(f"Cycle took {elapsed:.2f}s, sleeping {sleep_for:.2f}s")
                # Sleep in short slices so a stop signal is honored promptly
                deadline = time.monotonic() + sleep_for
                while self._running:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    time.sleep(min(0.5, remaining))
        finally:
            self.shutdown()

        logger.info("Trading loop stopped cleanly.")

    def _maybe_write_eod(self) -> None:
        """Write today's EOD summary once the close cutoff has passed."""
        if self.eod is None:
            return
        try:
            due, path = self.eod.should_run_now()
            if due:
                logger.info(f"Market close passed - writing EOD summary to {path}")
                self.eod.summarize_today()
        except OSError as e:
            logger.error(f"EOD summary failed: {e}")

    def shutdown(self) -> None:
        """Stop the loop, release background services and write a final EOD summary."""
        self._running = False
        if self._closed:
            return
        self._closed = True
        if self.news is not None:
            self.news.close()
        self.metrics.shutdown()
        if self.eod is not None:
            try:
                self.eod.summarize_today()
            except OSError as e:
                logger.error(f"Final EOD summary failed: {e}")


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="steptrader LLM trading bot")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--interval", type=float, default=None,
                        help="Seconds between cycles (default: app.poll_seconds)")
    parser.add_argument("--config", default="config/app.yaml", help="Config file")

    args = parser.parse_args()

    loop = TradingLoop(config_path=args.config)

    if args.once:
        try:
            loop.run_cycle()
        finally:
            loop.shutdown()
    else:
        loop.run_forever(interval_seconds=args.interval)


if __name__ == "__main__":
    main()
