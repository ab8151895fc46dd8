#!/usr/bin/env python3
# SPDX-License-Identifier: BUSL-1.1
"""
Stablecoin Depeg Monitor - per-coin risk monitoring loop

Each tracked stablecoin gets its own monitor task:

    fetch market data -> score risk -> append to risk log -> wait interval

FAILURE ISOLATION:
- Fetch failures (network, API, parse, timeout) are logged as WARNING and the
  cycle is skipped. No retry inside a cycle, the next interval is the retry.
- Scoring failures (malformed snapshot) are logged as ERROR and the cycle's
  logging step is skipped.
- Nothing raised inside one monitor reaches sibling monitors or the process.

SHUTDOWN:
Cancellation is cooperative. stop() is observed before the next fetch; a
fetch/score/log already in progress always completes. The wait between
cycles is cut short by stop().

Risk log line format: <YYYY-MM-DD HH:MM:SS> [<LEVEL>] <message>
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from engines.risk_scorer import calculate_risk_scores
from shared import metrics
from shared.config import (
    MonitorTarget,
    RiskScoringConfig,
    check_unique_targets,
    get_config,
    targets_from_coins,
)
from shared.env import load_env
from shared.errors import ConfigError, FetchError, ScoreError
from shared.log_sink import LogLevel, LogSink
from shared.logging_setup import setup_logging
from shared.market_data import DataSource, HttpDataSource, SimulatedDataSource
from shared.models import MarketSnapshot, RiskScore
from shared.paths import ROOT_DIR

logger = logging.getLogger(__name__)

MONITOR_VERSION = "1.0.0"


class MonitorState(Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    SCORING = "SCORING"
    LOGGING = "LOGGING"
    WAITING = "WAITING"
    CANCELLED = "CANCELLED"


class SupervisorState(Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


def _failure_reason(error: Exception) -> str:
    if isinstance(error, (FetchError, ScoreError)):
        return error.reason
    return f"{type(error).__name__}: {error}"


def format_score_line(score: RiskScore, snapshot: MarketSnapshot) -> str:
    return (
        f"{score.coin_name} risk score {score.score:.2f} [{score.level.value}] "
        f"dominant factor: {score.reason} "
        f"(price={snapshot.price:.4f}, peg deviation={snapshot.peg_deviation:+.2%})"
    )


async def fetch_coin_snapshots(
    data_source: DataSource, coin_name: str, api_url: str, timeout: float
) -> List[MarketSnapshot]:
    """Fetch with a deadline and keep only the snapshots named after coin_name"""
    try:
        snapshots = await asyncio.wait_for(data_source.fetch(api_url), timeout=timeout)
    except asyncio.TimeoutError:
        raise FetchError(f"no response within {timeout}s", coin_name) from None

    wanted = coin_name.upper()
    matching = [s for s in snapshots if s.name.upper() == wanted]
    if not matching:
        raise FetchError(f"no market data for {coin_name} in response", coin_name)
    return matching


class StablecoinMonitor:
    """
    Monitors one stablecoin until stopped

    Cycles are strictly sequential. The only state shared with other
    monitors is the sink.
    """

    def __init__(
        self,
        coin_name: str,
        api_url: str,
        sink: LogSink,
        data_source: DataSource,
        interval_seconds: float = 60,
        scoring_config: Optional[RiskScoringConfig] = None,
        fetch_timeout: float = 10.0,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.coin_name = coin_name
        self.api_url = api_url
        self.sink = sink
        self.data_source = data_source
        self.interval_seconds = interval_seconds
        self.scoring_config = scoring_config or RiskScoringConfig()
        self.fetch_timeout = fetch_timeout

        self.state = MonitorState.IDLE
        self.cycles_completed = 0
        self.consecutive_failures = 0
        self._stop_event = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Request cooperative cancellation; takes effect before the next fetch"""
        self._stop_event.set()

    async def run(self, max_cycles: Optional[int] = None):
        """
        Run cycles until stop() is called

        Args:
            max_cycles: Stop after this many cycles (None = run forever)
        """
        logger.info(
            f"Monitoring {self.coin_name} every {self.interval_seconds}s via {self.api_url}"
        )
        metrics.active_monitors.inc()
        try:
            while not self.stop_requested:
                try:
                    await self.run_cycle()
                except Exception as e:
                    # run_cycle handles fetch/score failures itself; this is a last resort
                    logger.error(f"Monitor loop error for {self.coin_name}: {e}", exc_info=True)
                    self.sink.append(
                        LogLevel.ERROR, f"{self.coin_name}: monitor cycle error - {_failure_reason(e)}"
                    )
                finally:
                    self.cycles_completed += 1
                    metrics.monitor_cycles_total.labels(coin=self.coin_name).inc()

                if max_cycles is not None and self.cycles_completed >= max_cycles:
                    break
                await self._wait()
        finally:
            self.state = MonitorState.CANCELLED
            metrics.active_monitors.dec()
            logger.info(
                f"Monitor for {self.coin_name} stopped after {self.cycles_completed} cycles"
            )

    async def _wait(self):
        self.state = MonitorState.WAITING
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            pass

    async def _fetch(self) -> List[MarketSnapshot]:
        with metrics.fetch_duration_seconds.labels(coin=self.coin_name).time():
            return await fetch_coin_snapshots(
                self.data_source, self.coin_name, self.api_url, self.fetch_timeout
            )

    async def run_cycle(self) -> List[RiskScore]:
        """One fetch -> score -> log pass. Returns the scores that were logged."""
        self.state = MonitorState.FETCHING
        try:
            snapshots = await self._fetch()
        except Exception as e:
            self.consecutive_failures += 1
            metrics.fetch_failures_total.labels(coin=self.coin_name).inc()
            self.sink.append(
                LogLevel.WARNING, f"{self.coin_name}: fetch failed - {_failure_reason(e)}"
            )
            logger.debug(f"Fetch failure #{self.consecutive_failures} for {self.coin_name}: {e!r}")
            return []

        if self.consecutive_failures:
            logger.info(
                f"✅ {self.coin_name} data feed recovered after "
                f"{self.consecutive_failures} failed cycles"
            )
            self.consecutive_failures = 0

        self.state = MonitorState.SCORING
        try:
            scores = calculate_risk_scores(snapshots, self.scoring_config)
        except Exception as e:
            metrics.score_errors_total.labels(coin=self.coin_name).inc()
            self.sink.append(
                LogLevel.ERROR, f"{self.coin_name}: scoring failed - {_failure_reason(e)}"
            )
            return []

        self.state = MonitorState.LOGGING
        for snapshot, score in zip(snapshots, scores):
            self.sink.append(LogLevel.INFO, format_score_line(score, snapshot))
            metrics.risk_score.labels(coin=self.coin_name).set(score.score)
            if score.score >= self.scoring_config.alert_threshold:
                self.sink.append(
                    LogLevel.WARNING,
                    f"ALERT {score.coin_name}: {score.level.value} risk score "
                    f"{score.score:.2f} - {score.reason}",
                )
        return scores


class MonitorSupervisor:
    """
    Runs one StablecoinMonitor task per target, all sharing one sink

    IDLE -> RUNNING -> STOPPING -> STOPPED
    """

    def __init__(
        self,
        targets: Sequence[MonitorTarget],
        sink: LogSink,
        data_source: DataSource,
        scoring_config: Optional[RiskScoringConfig] = None,
        fetch_timeout: float = 10.0,
    ):
        check_unique_targets(targets)

        self.sink = sink
        self.data_source = data_source
        self.monitors: Dict[str, StablecoinMonitor] = {
            target.coin_name: StablecoinMonitor(
                coin_name=target.coin_name,
                api_url=target.api_url,
                sink=sink,
                data_source=data_source,
                interval_seconds=target.interval_seconds,
                scoring_config=scoring_config,
                fetch_timeout=fetch_timeout,
            )
            for target in targets
        }
        self._tasks: Dict[str, asyncio.Task] = {}
        self.state = SupervisorState.IDLE

    def start(self, max_cycles: Optional[int] = None):
        """Schedule every monitor on the running event loop"""
        if self.state is not SupervisorState.IDLE:
            raise RuntimeError(f"Supervisor cannot start from state {self.state.value}")
        for name, monitor in self.monitors.items():
            self._tasks[name] = asyncio.create_task(
                monitor.run(max_cycles=max_cycles), name=f"monitor-{name}"
            )
        self.state = SupervisorState.RUNNING
        logger.info(f"🚀 Started {len(self._tasks)} stablecoin monitors")

    def request_stop(self):
        """Ask every monitor to stop before its next fetch"""
        if self.state is SupervisorState.RUNNING:
            self.state = SupervisorState.STOPPING
            logger.info("Stopping stablecoin monitors...")
        for monitor in self.monitors.values():
            monitor.stop()

    async def wait(self):
        """Wait until every monitor task has finished"""
        if self._tasks:
            results = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            for name, result in zip(self._tasks, results):
                if isinstance(result, BaseException):
                    logger.error(f"Monitor task for {name} ended with {result!r}")
        self.state = SupervisorState.STOPPED

    async def stop(self):
        """Cancel all monitors and wait for each to reach CANCELLED"""
        self.request_stop()
        await self.wait()
        logger.info("All stablecoin monitors stopped")

    async def run_until_signalled(self, max_cycles: Optional[int] = None):
        """Run until SIGINT/SIGTERM (or until max_cycles is reached)"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig!r} not supported on this platform")

        self.start(max_cycles=max_cycles)
        try:
            await self.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass


async def score_once(
    targets: Sequence[MonitorTarget],
    data_source: DataSource,
    scoring_config: Optional[RiskScoringConfig] = None,
    fetch_timeout: float = 10.0,
) -> List[Dict[str, Any]]:
    """Fetch and score every target once, without touching the risk log"""
    results = []
    for target in targets:
        try:
            snapshots = await fetch_coin_snapshots(
                data_source, target.coin_name, target.api_url, fetch_timeout
            )
            for score in calculate_risk_scores(snapshots, scoring_config):
                results.append(
                    {
                        "coin": score.coin_name,
                        "score": round(score.score, 2),
                        "level": score.level.value,
                        "reason": score.reason,
                        "signals": {k: round(v, 2) for k, v in score.signals.items()},
                    }
                )
        except Exception as e:
            # reported in place, later targets are still scored
            logger.debug(f"One-shot scoring failed for {target.coin_name}: {e!r}")
            results.append({"coin": target.coin_name, "error": _failure_reason(e)})
    return results


def build_data_source(kind: str, timeout: float, seed: Optional[int] = None) -> DataSource:
    if kind == "simulated":
        return SimulatedDataSource(seed=seed)
    return HttpDataSource(timeout=timeout)


async def run_monitors(args: argparse.Namespace):
    config = get_config()
    targets = config.targets
    if args.coins:
        interval = args.interval or (targets[0].interval_seconds if targets else 60)
        targets = targets_from_coins(args.coins.split(","), interval_seconds=interval)
    elif args.interval:
        targets = [
            MonitorTarget(t.coin_name, t.api_url, args.interval).validate() for t in targets
        ]
    if not targets:
        raise ConfigError("No stablecoins configured")
    check_unique_targets(targets)

    data_source = build_data_source(
        "simulated" if args.simulate else config.data_source, config.fetch_timeout, args.seed
    )
    try:
        if args.once:
            results = await score_once(
                targets, data_source, config.scoring, fetch_timeout=config.fetch_timeout
            )
            print(json.dumps(results, indent=2))
            return

        metrics.start_metrics_server(config.metrics_port)
        with LogSink(args.log_file or config.log_file) as sink:
            sink.info(
                f"Stablecoin depeg monitor v{MONITOR_VERSION} starting for "
                f"{', '.join(t.coin_name for t in targets)}"
            )
            supervisor = MonitorSupervisor(
                targets,
                sink,
                data_source,
                scoring_config=config.scoring,
                fetch_timeout=config.fetch_timeout,
            )
            await supervisor.run_until_signalled(max_cycles=args.cycles)
            sink.info("Stablecoin depeg monitor stopped")
    finally:
        await data_source.close()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=f"Stablecoin Depeg Monitor v{MONITOR_VERSION}"
    )
    parser.add_argument("--coins", help="Comma-separated symbols, e.g. USDT,USDC,DAI")
    parser.add_argument("--interval", type=int, help="Seconds between cycles per coin")
    parser.add_argument(
        "--simulate", action="store_true", help="Use simulated market data"
    )
    parser.add_argument("--seed", type=int, help="Random seed for --simulate")
    parser.add_argument(
        "--cycles", type=int, help="Stop each monitor after N cycles (default: forever)"
    )
    parser.add_argument("--log-file", help="Risk log path (default from config)")
    parser.add_argument(
        "--once", action="store_true", help="Score every coin once and print JSON"
    )
    args = parser.parse_args(argv)
    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be a positive integer")
    if args.cycles is not None and args.cycles <= 0:
        parser.error("--cycles must be a positive integer")
    return args


def main(argv: Optional[Sequence[str]] = None):
    """Entry point for standalone execution"""
    args = parse_args(argv)
    load_env(ROOT_DIR)
    try:
        log_level = get_config().log_level
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging("stablecoin_depeg_monitor", ROOT_DIR, log_level)
    try:
        asyncio.run(run_monitors(args))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
