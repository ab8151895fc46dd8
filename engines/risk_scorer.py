#!/usr/bin/env python3
# SPDX-License-Identifier: BUSL-1.1
"""
Stablecoin Risk Scorer - composite depeg risk per market snapshot

SIGNALS (each normalized to [0, 1]):
1. Peg deviation - |deviation| saturating at peg_cap (5% = severe depeg)
2. Low liquidity - 24h turnover (volume / market cap) below min_turnover
3. Supply/market-cap inconsistency - market cap disagrees with price * supply

Score = max_score * weighted sum of signals, clamped to [0, max_score].
The reason is the signal with the largest weighted contribution, ties
resolved peg deviation > low liquidity > supply/market-cap inconsistency.

Pure functions only: no I/O, no state, same input gives same output.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

from shared.config import RiskScoringConfig
from shared.errors import ScoreError
from shared.models import MarketSnapshot, RiskLevel, RiskScore

PEG_SIGNAL = "peg deviation"
LIQUIDITY_SIGNAL = "low liquidity"
CONSISTENCY_SIGNAL = "supply/market-cap inconsistency"
NO_RISK_REASON = "no significant risk"

# Declared priority, used to break ties between equal contributions
SIGNAL_PRIORITY = (PEG_SIGNAL, LIQUIDITY_SIGNAL, CONSISTENCY_SIGNAL)

_NUMERIC_FIELDS = ("price", "supply", "market_cap", "volume_24h", "peg_deviation")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def peg_signal(peg_deviation: float, peg_cap: float) -> float:
    """Distance from peg, saturating at peg_cap"""
    return _clamp(abs(peg_deviation), 0.0, peg_cap) / peg_cap


def liquidity_signal(volume_24h: float, market_cap: float, min_turnover: float) -> float:
    """
    Shortfall of 24h turnover below min_turnover

    A zero (or negative) market cap leaves turnover undefined and is treated
    as maximally illiquid.
    """
    if market_cap <= 0:
        return 1.0
    turnover = volume_24h / market_cap
    if turnover >= min_turnover:
        return 0.0
    return _clamp((min_turnover - turnover) / min_turnover, 0.0, 1.0)


def consistency_signal(
    price: float, supply: float, market_cap: float, tolerance: float
) -> float:
    """Fixed penalty when market cap diverges from price * supply beyond tolerance"""
    implied_cap = price * supply
    scale = max(abs(market_cap), abs(implied_cap))
    if scale == 0:
        return 0.0
    divergence = abs(market_cap - implied_cap) / scale
    return 1.0 if divergence > tolerance else 0.0


def classify_risk_level(
    score: float, config: Optional[RiskScoringConfig] = None
) -> RiskLevel:
    config = config or RiskScoringConfig()
    if score >= config.critical_threshold:
        return RiskLevel.CRITICAL
    if score >= config.high_threshold:
        return RiskLevel.HIGH
    if score >= config.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _validate(snapshot: MarketSnapshot) -> None:
    if not isinstance(snapshot, MarketSnapshot):
        raise ScoreError(f"expected MarketSnapshot, got {type(snapshot).__name__}")
    for name in _NUMERIC_FIELDS:
        value = getattr(snapshot, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ScoreError(f"{name} is not numeric: {value!r}", snapshot.name)
        try:
            finite = math.isfinite(value)
        except OverflowError:
            raise ScoreError(
                f"{name} is out of range: {value.bit_length()}-bit integer", snapshot.name
            ) from None
        if not finite:
            raise ScoreError(f"{name} is not finite: {value!r}", snapshot.name)


def _dominant_signal(contributions: Dict[str, float]) -> str:
    best_name, best_value = NO_RISK_REASON, 0.0
    # strict '>' keeps the earlier (higher priority) signal on ties
    for name in SIGNAL_PRIORITY:
        if contributions[name] > best_value:
            best_name, best_value = name, contributions[name]
    return best_name


def score_snapshot(
    snapshot: MarketSnapshot, config: Optional[RiskScoringConfig] = None
) -> RiskScore:
    """Score a single snapshot"""
    config = config or RiskScoringConfig()
    _validate(snapshot)

    weighted: Tuple[Tuple[str, float], ...] = (
        (
            PEG_SIGNAL,
            config.peg_weight * peg_signal(snapshot.peg_deviation, config.peg_cap),
        ),
        (
            LIQUIDITY_SIGNAL,
            config.liquidity_weight
            * liquidity_signal(snapshot.volume_24h, snapshot.market_cap, config.min_turnover),
        ),
        (
            CONSISTENCY_SIGNAL,
            config.consistency_weight
            * consistency_signal(
                snapshot.price,
                snapshot.supply,
                snapshot.market_cap,
                config.consistency_tolerance,
            ),
        ),
    )
    contributions = {name: value * config.max_score for name, value in weighted}

    score = _clamp(sum(contributions.values()), 0.0, config.max_score)
    return RiskScore(
        coin_name=snapshot.name,
        score=score,
        reason=_dominant_signal(contributions),
        level=classify_risk_level(score, config),
        signals=contributions,
    )


def calculate_risk_scores(
    snapshots: Sequence[MarketSnapshot], config: Optional[RiskScoringConfig] = None
) -> List[RiskScore]:
    """
    Score a batch of snapshots

    Returns one RiskScore per snapshot, in input order. Empty input gives an
    empty list.

    Raises:
        ScoreError: a snapshot is malformed (non-numeric or non-finite field)
    """
    config = config or RiskScoringConfig()
    return [score_snapshot(snapshot, config) for snapshot in snapshots]
