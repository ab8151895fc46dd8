"""
Pegwatch Metrics Collection
Prometheus metrics for the stablecoin monitors
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# === MONITOR LOOP METRICS ===
monitor_cycles_total = Counter(
    "pegwatch_monitor_cycles_total",
    "Completed monitor cycles",
    ["coin"],
)

fetch_failures_total = Counter(
    "pegwatch_fetch_failures_total",
    "Market data fetch failures",
    ["coin"],
)

score_errors_total = Counter(
    "pegwatch_score_errors_total",
    "Snapshots that could not be scored",
    ["coin"],
)

fetch_duration_seconds = Histogram(
    "pegwatch_fetch_duration_seconds",
    "Market data fetch duration",
    ["coin"],
)

active_monitors = Gauge(
    "pegwatch_active_monitors",
    "Monitors currently running",
)

# === RISK METRICS ===
risk_score = Gauge(
    "pegwatch_risk_score",
    "Latest risk score per coin",
    ["coin"],
)


def start_metrics_server(port: int) -> bool:
    """Expose /metrics on the given port; 0 disables it"""
    if port <= 0:
        return False
    start_http_server(port)
    logger.info(f"📈 Metrics endpoint listening on :{port}")
    return True
