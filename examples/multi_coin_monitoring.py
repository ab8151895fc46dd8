"""
Example: Multi-Coin Monitoring
Run one monitor per stablecoin against the simulated feed for a few cycles
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from engines.stablecoin_depeg_monitor import MonitorSupervisor
from shared.config import targets_from_coins
from shared.log_sink import LogSink
from shared.market_data import SimulatedDataSource
from shared.paths import LOGS_DIR


async def monitor_all_coins(cycles: int = 3):
    """Monitor USDT/USDC/DAI/FRAX every 2 seconds, then print the risk log."""
    log_file = LOGS_DIR / "example_risk.log"
    targets = targets_from_coins(["USDT", "USDC", "DAI", "FRAX"], interval_seconds=2)

    with LogSink(log_file) as sink:
        supervisor = MonitorSupervisor(targets, sink, SimulatedDataSource(seed=2024))
        supervisor.start(max_cycles=cycles)
        await supervisor.wait()

    print(f"Risk log: {log_file}")
    print("-" * 50)
    print(log_file.read_text(encoding="utf-8"))


if __name__ == "__main__":
    asyncio.run(monitor_all_coins())
