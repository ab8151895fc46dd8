"""
Pegwatch Configuration Manager
Handles environment-specific configuration loading and management
"""

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from shared.errors import ConfigError
from shared.paths import MONITOR_TARGETS_FILE, RISK_LOG_FILE, ROOT_DIR

DEFAULT_COINS = ["USDT", "USDC", "DAI", "FRAX"]
DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_API_URL_TEMPLATE = (
    "https://api.coingecko.com/api/v3/coins/markets?vs_currency=usd&ids={coin_id}"
)

# Symbol -> CoinGecko id
COINGECKO_IDS = {
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
    "FRAX": "frax",
    "TUSD": "true-usd",
    "USDP": "paxos-standard",
}


@dataclass
class RiskScoringConfig:
    """Risk scoring weights, normalization constants and level thresholds"""

    peg_weight: float = 0.5
    liquidity_weight: float = 0.3
    consistency_weight: float = 0.2
    peg_cap: float = 0.05  # deviation at which the peg signal saturates
    min_turnover: float = 0.05  # volume_24h / market_cap below this is illiquid
    consistency_tolerance: float = 0.10
    max_score: float = 100.0
    medium_threshold: float = 25.0
    high_threshold: float = 50.0
    critical_threshold: float = 75.0
    alert_threshold: float = 75.0

    def validate(self) -> "RiskScoringConfig":
        weights = (self.peg_weight, self.liquidity_weight, self.consistency_weight)
        if any(not math.isfinite(w) or w < 0 for w in weights):
            raise ConfigError(f"Risk weights must be finite and >= 0, got {weights}")
        if sum(weights) == 0:
            raise ConfigError("At least one risk weight must be positive")
        for name in ("peg_cap", "min_turnover", "consistency_tolerance", "max_score"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        thresholds = (
            self.medium_threshold,
            self.high_threshold,
            self.critical_threshold,
        )
        if not 0 <= thresholds[0] <= thresholds[1] <= thresholds[2] <= self.max_score:
            raise ConfigError(
                f"Risk level thresholds must ascend within [0, {self.max_score}], got {thresholds}"
            )
        return self


@dataclass
class MonitorTarget:
    """One monitored coin"""

    coin_name: str
    api_url: str
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS

    def validate(self) -> "MonitorTarget":
        if not self.coin_name or not str(self.coin_name).strip():
            raise ConfigError("coin_name is required")
        if not self.api_url or not str(self.api_url).strip():
            raise ConfigError(f"api_url is required for {self.coin_name}")
        if (
            isinstance(self.interval_seconds, bool)
            or not isinstance(self.interval_seconds, int)
            or self.interval_seconds <= 0
        ):
            raise ConfigError(
                f"interval_seconds must be a positive integer for {self.coin_name}, "
                f"got {self.interval_seconds!r}"
            )
        return self


@dataclass
class AppConfig:
    """Main application configuration"""

    environment: str  # 'production', 'staging', 'development'
    log_level: str
    log_file: Path
    data_source: str  # 'http' or 'simulated'
    fetch_timeout: float
    metrics_port: int  # 0 disables the metrics endpoint
    scoring: RiskScoringConfig = field(default_factory=RiskScoringConfig)
    targets: List[MonitorTarget] = field(default_factory=list)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def build_api_url(coin_name: str, template: str = DEFAULT_API_URL_TEMPLATE) -> str:
    """Fill the API URL template for a coin symbol"""
    coin_id = COINGECKO_IDS.get(coin_name.upper(), coin_name.lower())
    return template.format(coin_id=coin_id, coin=coin_name.upper())


def load_targets_file(path: Path) -> List[MonitorTarget]:
    """
    Load monitor targets from a JSON file

    Expected shape:
        [{"coin_name": "USDT", "api_url": "...", "interval_seconds": 60}, ...]
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read monitor targets from {path}: {e}") from e

    if not isinstance(raw, list):
        raise ConfigError(f"{path} must contain a JSON list of targets")

    targets = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ConfigError(f"Invalid target entry in {path}: {entry!r}")
        targets.append(
            MonitorTarget(
                coin_name=entry.get("coin_name", ""),
                api_url=entry.get("api_url", ""),
                interval_seconds=entry.get("interval_seconds", DEFAULT_INTERVAL_SECONDS),
            ).validate()
        )
    return targets


def targets_from_coins(
    coins: List[str],
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
    template: str = DEFAULT_API_URL_TEMPLATE,
) -> List[MonitorTarget]:
    """Build targets from symbols; surrounding whitespace and blank items are ignored"""
    symbols = [coin.strip() for coin in coins if coin.strip()]
    return [
        MonitorTarget(
            coin_name=symbol.upper(),
            api_url=build_api_url(symbol, template),
            interval_seconds=interval_seconds,
        ).validate()
        for symbol in symbols
    ]


def check_unique_targets(targets: List[MonitorTarget]) -> List[MonitorTarget]:
    """Coin names are compared case-insensitively"""
    seen = set()
    for target in targets:
        key = target.coin_name.upper()
        if key in seen:
            raise ConfigError(f"Duplicate monitor target: {target.coin_name}")
        seen.add(key)
    return targets


class ConfigManager:
    """Configuration manager for loading environment-specific settings"""

    def __init__(self):
        self._config: Optional[AppConfig] = None
        self._load_environment_config()

    def _load_environment_config(self):
        """Load configuration based on environment"""
        env = os.getenv("ENVIRONMENT", "development")

        if env == "production":
            env_file = ROOT_DIR / "config" / "production.env"
        elif env == "staging":
            env_file = ROOT_DIR / "config" / "staging.env"
        else:  # development
            env_file = ROOT_DIR / ".env"

        if env_file.exists():
            load_dotenv(env_file, override=False)

        scoring = RiskScoringConfig(
            peg_weight=_env_float("RISK_PEG_WEIGHT", 0.5),
            liquidity_weight=_env_float("RISK_LIQUIDITY_WEIGHT", 0.3),
            consistency_weight=_env_float("RISK_CONSISTENCY_WEIGHT", 0.2),
            peg_cap=_env_float("RISK_PEG_CAP", 0.05),
            min_turnover=_env_float("RISK_MIN_TURNOVER", 0.05),
            consistency_tolerance=_env_float("RISK_CONSISTENCY_TOLERANCE", 0.10),
            max_score=_env_float("RISK_MAX_SCORE", 100.0),
            medium_threshold=_env_float("RISK_MEDIUM_THRESHOLD", 25.0),
            high_threshold=_env_float("RISK_HIGH_THRESHOLD", 50.0),
            critical_threshold=_env_float("RISK_CRITICAL_THRESHOLD", 75.0),
            alert_threshold=_env_float("RISK_ALERT_THRESHOLD", 75.0),
        ).validate()

        self._config = AppConfig(
            environment=env,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=Path(os.getenv("PEGWATCH_LOG_FILE", str(RISK_LOG_FILE))),
            data_source=os.getenv("PEGWATCH_DATA_SOURCE", "http").lower(),
            fetch_timeout=_env_float("PEGWATCH_FETCH_TIMEOUT", 10.0),
            metrics_port=_env_int("PEGWATCH_METRICS_PORT", 0),
            scoring=scoring,
            targets=self._load_targets(),
        )

        if self._config.data_source not in ("http", "simulated"):
            raise ConfigError(
                f"PEGWATCH_DATA_SOURCE must be 'http' or 'simulated', got {self._config.data_source!r}"
            )
        if self._config.fetch_timeout <= 0:
            raise ConfigError("PEGWATCH_FETCH_TIMEOUT must be positive")

    def _load_targets(self) -> List[MonitorTarget]:
        """Targets file wins over the PEGWATCH_COINS list"""
        targets_file = Path(os.getenv("PEGWATCH_TARGETS_FILE", str(MONITOR_TARGETS_FILE)))
        if targets_file.exists():
            return check_unique_targets(load_targets_file(targets_file))

        coins_env = os.getenv("PEGWATCH_COINS", "")
        coins = [c.strip() for c in coins_env.split(",") if c.strip()] or DEFAULT_COINS
        return check_unique_targets(
            targets_from_coins(
                coins,
                interval_seconds=_env_int("PEGWATCH_INTERVAL_SECONDS", DEFAULT_INTERVAL_SECONDS),
                template=os.getenv("PEGWATCH_API_URL_TEMPLATE", DEFAULT_API_URL_TEMPLATE),
            )
        )

    def get_config(self) -> AppConfig:
        """Get the current application configuration"""
        if self._config is None:
            self._load_environment_config()
        return self._config

    def get_scoring_config(self) -> RiskScoringConfig:
        return self.get_config().scoring

    def get_targets(self) -> List[MonitorTarget]:
        return self.get_config().targets

    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.get_config().environment == "production"


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> AppConfig:
    """Get the current application configuration"""
    return get_config_manager().get_config()


def reset_config():
    """Drop the cached configuration so the next get_config() reloads it"""
    global _config_manager
    _config_manager = None
