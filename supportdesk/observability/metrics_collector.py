"""
Metrics collection module for system observability.
Tracks support desk business metrics (tickets, messages, RMA workflow) and
HTTP behaviour, both in-memory for the JSON dashboard API and through
prometheus_client for scraping.
"""

import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional

from prometheus_client import Counter, Histogram

# =============================
# Prometheus metrics
# =============================

HTTP_REQUESTS = Counter(
    "supportdesk_http_requests_total",
    "HTTP requests handled",
    ["endpoint", "method", "status"],
)
HTTP_REQUEST_DURATION = Histogram(
    "supportdesk_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["endpoint"],
)
RMA_STEP_UPDATES = Counter(
    "supportdesk_rma_step_updates_total",
    "RMA step completion toggles",
    ["step_order", "completed"],
)
RMA_DELETIONS = Counter(
    "supportdesk_rma_deletions_total",
    "RMA requests deleted",
    ["outcome"],
)
MESSAGES_SENT = Counter(
    "supportdesk_messages_sent_total",
    "Ticket messages posted",
    ["sender_type"],
)


class MetricsCollector:
    """
    Collects and aggregates system metrics in-memory.
    Provides counters, gauges, and histograms for various metrics.
    """

    def __init__(self):
        self.lock = Lock()

        # Counters (cumulative)
        self.counters = defaultdict(int)

        # Gauges (point-in-time values)
        self.gauges = defaultdict(float)

        # Histograms (time-series data with retention)
        self.histograms = defaultdict(lambda: deque(maxlen=1000))

        # Time-windowed metrics (for rate calculations)
        self.time_windowed = defaultdict(lambda: deque(maxlen=10000))

        self.start_time = time.time()

    def increment_counter(self, name: str, value: int = 1, labels: Optional[Dict] = None):
        with self.lock:
            key = self._make_key(name, labels)
            self.counters[key] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict] = None):
        with self.lock:
            key = self._make_key(name, labels)
            self.gauges[key] = value

    def observe(self, name: str, value: float, labels: Optional[Dict] = None):
        """Record an observation for a histogram metric."""
        with self.lock:
            key = self._make_key(name, labels)
            self.histograms[key].append({
                "value": value,
                "timestamp": time.time(),
            })

    def record_event(self, name: str, labels: Optional[Dict] = None):
        """Record a timestamped event for rate calculations."""
        with self.lock:
            key = self._make_key(name, labels)
            self.time_windowed[key].append(time.time())

    def _make_key(self, name: str, labels: Optional[Dict] = None) -> str:
        if labels:
            label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
            return f"{name}{{{label_str}}}"
        return name

    def get_counter(self, name: str, labels: Optional[Dict] = None) -> int:
        key = self._make_key(name, labels)
        return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict] = None) -> float:
        key = self._make_key(name, labels)
        return self.gauges.get(key, 0.0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict] = None) -> Dict:
        """Count, sum, min/max/avg and rough percentiles for one series."""
        key = self._make_key(name, labels)
        observations = self.histograms.get(key, deque())

        if not observations:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}

        values = sorted(obs["value"] for obs in observations)
        count = len(values)
        return {
            "count": count,
            "sum": sum(values),
            "min": values[0],
            "max": values[-1],
            "avg": sum(values) / count,
            "p50": values[int(count * 0.50)],
            "p95": values[min(int(count * 0.95), count - 1)],
            "p99": values[min(int(count * 0.99), count - 1)],
        }

    def get_rate(self, name: str, window_seconds: int = 60, labels: Optional[Dict] = None) -> float:
        """Events per second over the trailing window."""
        key = self._make_key(name, labels)
        events = self.time_windowed.get(key, deque())
        if not events or window_seconds <= 0:
            return 0.0

        cutoff = time.time() - window_seconds
        recent_events = sum(1 for timestamp in events if timestamp >= cutoff)
        return recent_events / window_seconds

    def get_all_metrics(self) -> Dict:
        with self.lock:
            names = list(self.histograms.keys())
            counters = dict(self.counters)
            gauges = dict(self.gauges)
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": time.time() - self.start_time,
            "counters": counters,
            "gauges": gauges,
            "histograms": {name: self._stats_for_key(name) for name in names},
        }

    def _stats_for_key(self, key: str) -> Dict:
        observations = self.histograms.get(key, deque())
        values = sorted(obs["value"] for obs in observations)
        if not values:
            return {"count": 0}
        return {"count": len(values), "avg": sum(values) / len(values), "max": values[-1]}

    def get_business_metrics(self) -> Dict:
        """Get business-specific metrics for dashboard."""
        duration = self.get_histogram_stats("http_request_duration_seconds")
        return {
            "tickets": {
                "created": self.get_counter("tickets_created_total"),
                "status_changes": self.get_counter("ticket_status_changes_total"),
            },
            "messages": {
                "total": self.get_counter("messages_sent_total"),
                "from_agents": self.get_counter("messages_sent_total", {"sender_type": "agent"}),
                "from_requesters": self.get_counter("messages_sent_total", {"sender_type": "requester"}),
                "rate_per_minute": self.get_rate("messages_sent_total", window_seconds=60) * 60,
            },
            "rma": {
                "requested": self.get_counter("rma_requested_total"),
                "step_updates": self.get_counter("rma_step_updates_total"),
                "completed": self.get_counter("rma_completed_total"),
                "deleted": self.get_counter("rma_deleted_total"),
            },
            "directory": {
                "companies_created": self.get_counter("companies_created_total"),
                "contacts_created": self.get_counter("contacts_created_total"),
                "equipment_models_created": self.get_counter("equipment_models_created_total"),
            },
            "errors": {
                "total": self.get_counter("errors_total"),
                "rate_per_minute": self.get_rate("errors_total", window_seconds=60) * 60,
                "by_type": {
                    "4xx": self.get_counter("http_errors", {"type": "4xx"}),
                    "5xx": self.get_counter("http_errors", {"type": "5xx"}),
                },
            },
            "performance": {
                "avg_response_time_ms": duration["avg"] * 1000,
                "p95_response_time_ms": duration["p95"] * 1000,
                "p99_response_time_ms": duration["p99"] * 1000,
            },
        }


# Global metrics collector instance
metrics_collector = MetricsCollector()


def record_http_error(status_code: int):
    """Count a 4xx/5xx response for the dashboard totals and rates."""
    metrics_collector.increment_counter("errors_total")
    metrics_collector.record_event("errors_total")
    bucket = "5xx" if status_code >= 500 else "4xx"
    metrics_collector.increment_counter("http_errors", labels={"type": bucket})
