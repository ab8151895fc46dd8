from .env import load_env
from .errors import ConfigError, FetchError, PegwatchError, ScoreError, SinkError
from .log_sink import LogLevel, LogSink
from .logging_setup import setup_logging
from .models import MarketSnapshot, RiskLevel, RiskScore
from .paths import ROOT_DIR as project_root
