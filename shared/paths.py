import os
from pathlib import Path

# The root directory of the project
ROOT_DIR = Path(os.path.dirname(os.path.abspath(__file__))).parent

# Key directories
CONFIG_DIR = ROOT_DIR / "config"
LOGS_DIR = ROOT_DIR / "logs"
SHARED_DIR = ROOT_DIR / "shared"

# Common file paths
RISK_LOG_FILE = LOGS_DIR / "stablecoin_risk.log"
MONITOR_TARGETS_FILE = CONFIG_DIR / "monitor_targets.json"
