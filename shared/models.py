"""
Stablecoin market data and risk score models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

USD_PEG = 1.0


class RiskLevel(Enum):
    """Risk classification derived from a score"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class MarketSnapshot:
    """One observation of a stablecoin at a point in time"""

    name: str
    price: float
    supply: float
    market_cap: float
    volume_24h: float
    peg_deviation: float  # signed fraction, (price - peg) / peg

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("MarketSnapshot.name must be a non-empty string")

    @classmethod
    def from_price(
        cls,
        name: str,
        price: float,
        supply: float,
        market_cap: float,
        volume_24h: float,
        peg: float = USD_PEG,
    ) -> "MarketSnapshot":
        """Build a snapshot, deriving the peg deviation from the price"""
        return cls(
            name=name,
            price=price,
            supply=supply,
            market_cap=market_cap,
            volume_24h=volume_24h,
            peg_deviation=(price - peg) / peg,
        )


@dataclass(frozen=True)
class RiskScore:
    """Risk score for one snapshot; higher is riskier"""

    coin_name: str
    score: float
    reason: str
    level: RiskLevel = RiskLevel.LOW
    # weighted contribution of each signal, in score units
    signals: Dict[str, float] = field(default_factory=dict, compare=False)
