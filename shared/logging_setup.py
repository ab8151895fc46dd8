import logging
import sys
from pathlib import Path


def setup_logging(app_name: str, root_dir: Path, log_level: str = "INFO"):
    """
    Setup diagnostic logging with file and console output

    This is the process log (start-up, shutdown, debug traces). Risk
    observations go to the risk log written by shared.log_sink.

    Args:
        app_name: Name of the application/component
        root_dir: Root directory for log file storage
        log_level: Logging level name (default: INFO)
    """
    log_file = root_dir / "logs" / f"{app_name}.log"

    # Define log format
    fmt = "%(asctime)s %(levelname)s %(name)s - %(message)s"

    # Setup handlers
    handlers = [logging.StreamHandler(sys.stdout)]

    try:
        (root_dir / "logs").mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    except OSError as e:
        print(f"Warning: Could not create log file {log_file}: {e}")

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    # Configure logging
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
