"""
Pegwatch error taxonomy

FetchError  - market data unavailable (network/API/parse). Transient, the
              monitor logs a WARNING and skips the cycle.
ScoreError  - malformed snapshot handed to the scorer. The monitor logs an
              ERROR and skips the logging step for that cycle.
SinkError   - log destination unavailable. Reported on stderr by the sink,
              never surfaced to a monitor.
ConfigError - invalid configuration detected at start-up.
"""

from typing import Optional


class PegwatchError(Exception):
    """Base class for all pegwatch errors"""


class FetchError(PegwatchError):
    """Market data could not be fetched or parsed"""

    def __init__(self, reason: str, coin_name: Optional[str] = None):
        self.reason = reason
        self.coin_name = coin_name
        super().__init__(reason)


class ScoreError(PegwatchError):
    """A snapshot could not be scored"""

    def __init__(self, reason: str, coin_name: Optional[str] = None):
        self.reason = reason
        self.coin_name = coin_name
        super().__init__(reason)


class SinkError(PegwatchError):
    """The risk log could not be opened or written"""


class ConfigError(PegwatchError):
    """Configuration is missing or invalid"""
