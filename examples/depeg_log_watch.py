"""
Example: Risk Log Watch
Follow the risk log and print WARNING/ERROR entries as they arrive
"""

import re
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.paths import RISK_LOG_FILE

LINE = re.compile(r"^(\S+ \S+) \[(INFO|WARNING|ERROR)\] (.*)$")


def follow_risk_log(path: Path = RISK_LOG_FILE, levels=("WARNING", "ERROR")):
    """
    Tail the risk log written by the depeg monitor.

    Every entry is one line, so a plain line reader is enough.
    """
    print(f"Following {path} (Ctrl+C to exit)\n")

    with open(path, encoding="utf-8") as f:
        f.seek(0, 2)
        while True:
            line = f.readline()
            if not line:
                time.sleep(1)
                continue

            match = LINE.match(line.rstrip("\n"))
            if match and match.group(2) in levels:
                timestamp, level, message = match.groups()
                print(f"[{level}] {timestamp} {message}")


if __name__ == "__main__":
    follow_risk_log()
