"""
Tests for the stablecoin monitor loop and supervisor.

Monitors run on real asyncio tasks with sub-second intervals; data sources
are in-memory doubles.
"""

import asyncio
import math
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest

from conftest import make_snapshot, parse_levels, read_log_lines
from engines.stablecoin_depeg_monitor import (
    MonitorState,
    MonitorSupervisor,
    StablecoinMonitor,
    SupervisorState,
    score_once,
)
from shared.config import MonitorTarget, RiskScoringConfig
from shared.errors import ConfigError, FetchError
from shared.log_sink import LogSink
from shared.market_data import DataSource, SimulatedDataSource

FAST = 0.01


class StaticDataSource(DataSource):
    """Returns a healthy snapshot named after the last path segment of the URL"""

    def __init__(self, failing: tuple = ()):
        self.failing = set(failing)
        self.calls: Dict[str, int] = {}

    async def fetch(self, api_url: str):
        self.calls[api_url] = self.calls.get(api_url, 0) + 1
        await asyncio.sleep(0)
        coin = api_url.rsplit("/", 1)[-1]
        if coin in self.failing:
            raise FetchError(f"{coin} API is down")
        return [make_snapshot(name=coin)]


@pytest.fixture
def sink(log_path):
    sink = LogSink(log_path)
    yield sink
    sink.close()


def build_monitor(sink, data_source, coin="USDC", **kwargs) -> StablecoinMonitor:
    kwargs.setdefault("interval_seconds", FAST)
    return StablecoinMonitor(
        coin_name=coin,
        api_url=f"https://api.test/{coin}",
        sink=sink,
        data_source=data_source,
        **kwargs,
    )


class TestMonitorCycle:
    @pytest.mark.asyncio
    async def test_successful_cycle_logs_one_score_line(self, sink, log_path):
        monitor = build_monitor(sink, StaticDataSource())

        scores = await monitor.run_cycle()

        assert len(scores) == 1
        lines = read_log_lines(log_path)
        assert parse_levels(lines) == ["INFO"]
        assert "USDC risk score 0.00 [LOW] dominant factor: no significant risk" in lines[0]
        assert monitor.state is MonitorState.LOGGING

    @pytest.mark.asyncio
    async def test_fetch_failure_then_success(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.side_effect = [
            FetchError("connection refused"),
            [make_snapshot(name="USDC")],
        ]
        monitor = build_monitor(sink, data_source)

        await monitor.run(max_cycles=2)

        lines = read_log_lines(log_path)
        assert parse_levels(lines) == ["WARNING", "INFO"]
        assert lines[0].endswith("[WARNING] USDC: fetch failed - connection refused")
        assert "USDC risk score" in lines[1]
        assert data_source.fetch.await_count == 2
        assert monitor.cycles_completed == 2
        assert monitor.consecutive_failures == 0
        assert monitor.state is MonitorState.CANCELLED

    @pytest.mark.asyncio
    async def test_unexpected_fetch_exception_is_a_warning(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.side_effect = [RuntimeError("socket exploded"), [make_snapshot()]]
        monitor = build_monitor(sink, data_source)

        await monitor.run(max_cycles=2)

        lines = read_log_lines(log_path)
        assert parse_levels(lines) == ["WARNING", "INFO"]
        assert "RuntimeError: socket exploded" in lines[0]

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_a_warning(self, sink, log_path):
        async def slow_fetch(api_url):
            await asyncio.sleep(5)
            return [make_snapshot()]

        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.side_effect = slow_fetch
        monitor = build_monitor(sink, data_source, fetch_timeout=0.05)

        await monitor.run(max_cycles=1)

        (line,) = read_log_lines(log_path)
        assert "[WARNING] USDC: fetch failed - no response within 0.05s" in line

    @pytest.mark.asyncio
    async def test_response_without_the_coin_is_a_warning(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.return_value = [make_snapshot(name="USDT")]
        monitor = build_monitor(sink, data_source, coin="USDC")

        await monitor.run(max_cycles=1)

        (line,) = read_log_lines(log_path)
        assert "[WARNING] USDC: fetch failed - no market data for USDC" in line

    @pytest.mark.asyncio
    async def test_coin_match_is_case_insensitive(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.return_value = [make_snapshot(name="usdc"), make_snapshot(name="DAI")]
        monitor = build_monitor(sink, data_source, coin="USDC")

        scores = await monitor.run_cycle()

        assert [s.coin_name for s in scores] == ["usdc"]
        assert parse_levels(read_log_lines(log_path)) == ["INFO"]

    @pytest.mark.asyncio
    async def test_malformed_snapshot_logs_error_and_loop_continues(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.return_value = [make_snapshot(price=math.nan)]
        monitor = build_monitor(sink, data_source)

        await monitor.run(max_cycles=3)

        lines = read_log_lines(log_path)
        assert parse_levels(lines) == ["ERROR", "ERROR", "ERROR"]
        assert "USDC: scoring failed - price is not finite" in lines[0]
        assert monitor.cycles_completed == 3

    @pytest.mark.asyncio
    async def test_high_score_adds_alert_line(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.return_value = [
            make_snapshot(name="USDC", price=0.88, market_cap=0, volume_24h=0)
        ]
        monitor = build_monitor(sink, data_source)

        await monitor.run_cycle()

        lines = read_log_lines(log_path)
        assert parse_levels(lines) == ["INFO", "WARNING"]
        assert "[CRITICAL]" in lines[0]
        assert "ALERT USDC: CRITICAL risk score" in lines[1]

    @pytest.mark.asyncio
    async def test_alert_threshold_is_configurable(self, sink, log_path):
        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.return_value = [make_snapshot(name="USDC", price=0.97)]
        config = RiskScoringConfig(alert_threshold=10.0)
        monitor = build_monitor(sink, data_source, scoring_config=config)

        await monitor.run_cycle()

        assert parse_levels(read_log_lines(log_path)) == ["INFO", "WARNING"]

    def test_rejects_non_positive_interval(self, sink):
        with pytest.raises(ValueError):
            build_monitor(sink, StaticDataSource(), interval_seconds=0)


class TestMonitorCancellation:
    @pytest.mark.asyncio
    async def test_stop_before_start_performs_no_fetch(self, sink, log_path):
        data_source = StaticDataSource()
        monitor = build_monitor(sink, data_source)
        monitor.stop()

        await monitor.run()

        assert data_source.calls == {}
        assert read_log_lines(log_path) == []
        assert monitor.state is MonitorState.CANCELLED

    @pytest.mark.asyncio
    async def test_stop_cuts_the_wait_short(self, sink, log_path):
        monitor = build_monitor(sink, StaticDataSource(), interval_seconds=60)
        task = asyncio.create_task(monitor.run())

        while monitor.cycles_completed < 1:
            await asyncio.sleep(FAST)
        monitor.stop()
        await asyncio.wait_for(task, timeout=2)

        assert monitor.state is MonitorState.CANCELLED
        assert len(read_log_lines(log_path)) == 1

    @pytest.mark.asyncio
    async def test_in_flight_cycle_finishes_before_stopping(self, sink, log_path):
        fetch_started = asyncio.Event()
        release_fetch = asyncio.Event()

        async def gated_fetch(api_url):
            fetch_started.set()
            await release_fetch.wait()
            return [make_snapshot()]

        data_source = AsyncMock(spec=DataSource)
        data_source.fetch.side_effect = gated_fetch
        monitor = build_monitor(sink, data_source)
        task = asyncio.create_task(monitor.run())

        await fetch_started.wait()
        monitor.stop()
        assert monitor.state is MonitorState.FETCHING
        release_fetch.set()
        await asyncio.wait_for(task, timeout=2)

        assert parse_levels(read_log_lines(log_path)) == ["INFO"]
        assert data_source.fetch.await_count == 1
        assert monitor.cycles_completed == 1
        assert monitor.state is MonitorState.CANCELLED


class TestSupervisor:
    @staticmethod
    def targets(coins, interval=FAST) -> List[MonitorTarget]:
        return [MonitorTarget(c, f"https://api.test/{c}", interval) for c in coins]

    @pytest.mark.asyncio
    async def test_n_monitors_five_cycles_each(self, sink, log_path):
        coins = ["USDT", "USDC", "DAI", "FRAX", "TUSD", "USDP"]
        supervisor = MonitorSupervisor(self.targets(coins), sink, StaticDataSource())

        supervisor.start(max_cycles=5)
        assert supervisor.state is SupervisorState.RUNNING
        await asyncio.wait_for(supervisor.wait(), timeout=10)

        lines = read_log_lines(log_path)
        assert len(lines) == len(coins) * 5
        assert set(parse_levels(lines)) == {"INFO"}
        for coin in coins:
            assert sum(1 for line in lines if f"] {coin} risk score" in line) == 5
        assert supervisor.state is SupervisorState.STOPPED
        assert all(m.state is MonitorState.CANCELLED for m in supervisor.monitors.values())

    @pytest.mark.asyncio
    async def test_one_failing_coin_does_not_affect_siblings(self, sink, log_path):
        data_source = StaticDataSource(failing=("DAI",))
        supervisor = MonitorSupervisor(self.targets(["USDT", "DAI", "USDC"]), sink, data_source)

        supervisor.start(max_cycles=4)
        await asyncio.wait_for(supervisor.wait(), timeout=10)

        lines = read_log_lines(log_path)
        dai_lines = [line for line in lines if "DAI" in line]
        assert len(dai_lines) == 4
        assert all("[WARNING] DAI: fetch failed - DAI API is down" in line for line in dai_lines)
        for coin in ("USDT", "USDC"):
            assert sum(1 for line in lines if f"[INFO] {coin} risk score" in line) == 4

    @pytest.mark.asyncio
    async def test_stop_waits_for_every_monitor(self, sink, log_path):
        coins = ["USDT", "USDC", "DAI"]
        supervisor = MonitorSupervisor(self.targets(coins, interval=60), sink, StaticDataSource())

        supervisor.start()
        while any(m.cycles_completed < 1 for m in supervisor.monitors.values()):
            await asyncio.sleep(FAST)
        await asyncio.wait_for(supervisor.stop(), timeout=2)

        assert supervisor.state is SupervisorState.STOPPED
        assert all(m.state is MonitorState.CANCELLED for m in supervisor.monitors.values())
        assert len(read_log_lines(log_path)) == len(coins)

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, sink):
        supervisor = MonitorSupervisor(self.targets(["USDT"]), sink, StaticDataSource())
        supervisor.start(max_cycles=1)
        try:
            with pytest.raises(RuntimeError):
                supervisor.start()
        finally:
            await supervisor.stop()

    def test_duplicate_targets_rejected(self, sink):
        with pytest.raises(ConfigError):
            MonitorSupervisor(self.targets(["USDT", "usdt"]), sink, StaticDataSource())

    @pytest.mark.asyncio
    async def test_stop_without_start(self, sink):
        supervisor = MonitorSupervisor(self.targets(["USDT"]), sink, StaticDataSource())

        await supervisor.stop()

        assert supervisor.state is SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_simulated_feed_end_to_end(self, sink, log_path):
        targets = [
            MonitorTarget("USDT", "https://api.test/markets?vs_currency=usd&ids=tether", FAST),
            MonitorTarget("DAI", "https://api.test/markets?vs_currency=usd&ids=dai", FAST),
        ]
        supervisor = MonitorSupervisor(targets, sink, SimulatedDataSource(seed=7))

        supervisor.start(max_cycles=3)
        await asyncio.wait_for(supervisor.wait(), timeout=10)

        lines = read_log_lines(log_path)
        assert sum(1 for line in lines if "[INFO] USDT risk score" in line) == 3
        assert sum(1 for line in lines if "[INFO] DAI risk score" in line) == 3


class TestScoreOnce:
    @pytest.mark.asyncio
    async def test_reports_scores_and_errors(self):
        targets = [
            MonitorTarget("USDT", "https://api.test/USDT"),
            MonitorTarget("DAI", "https://api.test/DAI"),
        ]

        results = await score_once(targets, StaticDataSource(failing=("DAI",)))

        assert results[0]["coin"] == "USDT"
        assert results[0]["score"] == 0.0
        assert results[0]["level"] == "LOW"
        assert results[1] == {"coin": "DAI", "error": "DAI API is down"}

    @pytest.mark.asyncio
    async def test_slow_target_times_out_and_rest_are_scored(self):
        class SlowFirstSource(StaticDataSource):
            async def fetch(self, api_url: str):
                if api_url.endswith("/USDT"):
                    await asyncio.sleep(5)
                return await super().fetch(api_url)

        targets = [
            MonitorTarget("USDT", "https://api.test/USDT"),
            MonitorTarget("DAI", "https://api.test/DAI"),
        ]

        results = await score_once(targets, SlowFirstSource(), fetch_timeout=FAST)

        assert results[0] == {"coin": "USDT", "error": f"no response within {FAST}s"}
        assert results[1]["coin"] == "DAI"
        assert results[1]["level"] == "LOW"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_per_target(self):
        source = StaticDataSource()
        source.fetch = AsyncMock(
            side_effect=[RuntimeError("decoder crashed"), [make_snapshot(name="DAI")]]
        )
        targets = [
            MonitorTarget("USDT", "https://api.test/USDT"),
            MonitorTarget("DAI", "https://api.test/DAI"),
        ]

        results = await score_once(targets, source)

        assert results[0] == {"coin": "USDT", "error": "RuntimeError: decoder crashed"}
        assert results[1]["coin"] == "DAI"

    @pytest.mark.asyncio
    async def test_oversized_field_is_reported_as_score_error(self):
        source = StaticDataSource()
        source.fetch = AsyncMock(
            return_value=[make_snapshot(name="USDT", supply=10**400, market_cap=1.0)]
        )

        (result,) = await score_once([MonitorTarget("USDT", "https://api.test/USDT")], source)

        assert result["coin"] == "USDT"
        assert "supply is out of range" in result["error"]
