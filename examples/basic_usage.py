#!/usr/bin/env python3
"""
Pegwatch Basic Usage Example

This example shows how to score a handful of stablecoin snapshots.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from engines.risk_scorer import calculate_risk_scores
from shared.models import MarketSnapshot


def main():
    """Score a healthy coin, a depegged coin and a thinly traded coin."""

    snapshots = [
        MarketSnapshot.from_price("USDC", 0.9998, 33_000_000_000, 32_993_400_000, 4_000_000_000),
        MarketSnapshot.from_price("USDX", 0.94, 1_000_000, 940_000, 10_000),
        MarketSnapshot.from_price("FRAX", 0.997, 650_000_000, 648_050_000, 3_000_000),
    ]

    print(f"{'Coin':6} | {'Score':>6} | {'Level':8} | Dominant factor")
    print("-" * 50)

    for score in calculate_risk_scores(snapshots):
        print(f"{score.coin_name:6} | {score.score:6.2f} | {score.level.value:8} | {score.reason}")


if __name__ == "__main__":
    main()
