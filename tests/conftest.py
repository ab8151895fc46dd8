"""
Shared fixtures for pegwatch tests.
"""

import re
import sys
from pathlib import Path
from typing import List

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.models import MarketSnapshot  # noqa: E402

LINE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[(INFO|WARNING|ERROR)\] (.+)$"
)


def make_snapshot(
    name: str = "USDC",
    price: float = 1.0,
    supply: float = 1_000_000_000,
    market_cap: float = None,
    volume_24h: float = 100_000_000,
    peg_deviation: float = None,
) -> MarketSnapshot:
    """Healthy stablecoin snapshot unless overridden"""
    if market_cap is None:
        market_cap = price * supply
    if peg_deviation is None:
        peg_deviation = price - 1.0
    return MarketSnapshot(
        name=name,
        price=price,
        supply=supply,
        market_cap=market_cap,
        volume_24h=volume_24h,
        peg_deviation=peg_deviation,
    )


def read_log_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


def parse_levels(lines: List[str]) -> List[str]:
    levels = []
    for line in lines:
        match = LINE_PATTERN.match(line)
        assert match, f"Malformed log line: {line!r}"
        levels.append(match.group(1))
    return levels


@pytest.fixture
def log_path(tmp_path) -> Path:
    return tmp_path / "logs" / "stablecoin_risk.log"
