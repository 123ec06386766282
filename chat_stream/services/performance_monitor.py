"""Performance monitoring for chat turns."""

import statistics
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chat_stream.core.logging import get_logger

logger = get_logger(__name__)

LATENCY_METRICS = (
    "first_token_latency_ms",
    "memory_latency_ms",
    "upstream_latency_ms",
    "total_turn_latency_ms",
)


class PerformanceMetric:
    """Single performance metric with history."""

    def __init__(self, name: str, window_size: int = 1000):
        self.name = name
        self.window_size = window_size
        self.values = deque(maxlen=window_size)
        self.timestamps = deque(maxlen=window_size)
        self.total_count = 0
        self.total_sum = 0.0

    def record(self, value: float, timestamp: Optional[datetime] = None):
        """Record a new value."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.values.append(value)
        self.timestamps.append(timestamp)
        self.total_count += 1
        self.total_sum += value

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for this metric."""
        if not self.values:
            return {
                "count": 0,
                "mean": 0,
                "min": 0,
                "max": 0,
                "p50": 0,
                "p95": 0,
                "p99": 0,
                "rate_per_minute": 0,
            }

        sorted_values = sorted(self.values)

        def percentile(ratio: float) -> float:
            index = min(int(len(sorted_values) * ratio), len(sorted_values) - 1)
            return sorted_values[index]

        if len(self.timestamps) > 1:
            time_span = (self.timestamps[-1] - self.timestamps[0]).total_seconds()
            rate_per_minute = (len(self.values) / time_span) * 60 if time_span > 0 else 0
        else:
            rate_per_minute = 0

        return {
            "count": self.total_count,
            "mean": statistics.mean(self.values),
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "p50": percentile(0.5),
            "p95": percentile(0.95),
            "p99": percentile(0.99),
            "rate_per_minute": rate_per_minute,
        }

    def get_recent_samples(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Return the most recent samples with timestamps."""
        limit = max(0, min(limit, len(self.values)))
        start_index = len(self.values) - limit
        return [
            {"value": float(self.values[idx]), "timestamp": self.timestamps[idx].isoformat()}
            for idx in range(start_index, len(self.values))
        ]


class PerformanceMonitor:
    """In-process latency, counter and token metrics for the chat service."""

    def __init__(self):
        self.metrics: Dict[str, PerformanceMetric] = {}
        self.counters: Dict[str, int] = defaultdict(int)
        self.tokens_per_model: Dict[str, PerformanceMetric] = {}
        self.start_time = datetime.now(timezone.utc)
        self._init_metrics()

    def _init_metrics(self):
        for name in LATENCY_METRICS:
            self.metrics[name] = PerformanceMetric(name)
        self.metrics["tokens_per_turn"] = PerformanceMetric("tokens_per_turn")
        self.metrics["cost_per_turn_usd"] = PerformanceMetric("cost_per_turn_usd")

    def record_latency(self, metric_name: str, latency_ms: float):
        """Record a latency measurement."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = PerformanceMetric(metric_name)
        self.metrics[metric_name].record(latency_ms)

    def increment_counter(self, counter_name: str, value: int = 1):
        """Increment a counter."""
        self.counters[counter_name] += value

    def record_token_usage(self, model: str, tokens: int, cost_usd: float = 0.0):
        """Record token usage and cost for one turn."""
        self.increment_counter(f"tokens_{model}", tokens)
        self.metrics["tokens_per_turn"].record(tokens)
        self.metrics["cost_per_turn_usd"].record(cost_usd)

        if model not in self.tokens_per_model:
            self.tokens_per_model[model] = PerformanceMetric(f"tokens_{model}")
        self.tokens_per_model[model].record(tokens)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics."""
        uptime_seconds = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return {
            "uptime_seconds": uptime_seconds,
            "start_time": self.start_time.isoformat(),
            "latencies": {
                name: metric.get_stats() for name, metric in self.metrics.items() if "latency" in name
            },
            "counters": dict(self.counters),
            "token_usage": self._get_token_usage(),
            "error_rates": self._get_error_rates(),
        }

    def get_dashboard_metrics(self, recent_points: int = 24) -> Dict[str, Any]:
        """Structured metrics for dashboards, with recent samples per latency."""
        def with_recent(metric_name: str) -> Dict[str, Any]:
            metric = self.metrics.get(metric_name) or PerformanceMetric(metric_name)
            stats = metric.get_stats()
            stats["recent"] = metric.get_recent_samples(recent_points)
            return stats

        now = datetime.now(timezone.utc)
        total_latency = with_recent("total_turn_latency_ms")

        return {
            "latency": {
                "firstToken": with_recent("first_token_latency_ms"),
                "memory": with_recent("memory_latency_ms"),
                "upstream": with_recent("upstream_latency_ms"),
                "total": total_latency,
            },
            "throughput": {
                "turnsPerMinute": total_latency.get("rate_per_minute", 0),
                "totalTurns": self.counters.get("chat_turns_total", 0),
                "completedTurns": self.counters.get("chat_turns_completed", 0),
                "failedTurns": self.counters.get("chat_turns_failed", 0),
                "cancelledTurns": self.counters.get("chat_turns_cancelled", 0),
            },
            "tokenUsage": self._get_token_usage(),
            "errors": self._get_error_rates(),
            "meta": {
                "updatedAt": now.isoformat(),
                "uptimeSeconds": (now - self.start_time).total_seconds(),
            },
        }

    def _get_token_usage(self) -> Dict[str, Any]:
        return {
            "total_tokens": sum(self.counters.get(f"tokens_{m}", 0) for m in self.tokens_per_model),
            "total_cost_usd": round(self.metrics["cost_per_turn_usd"].total_sum, 6),
            "by_model": {
                model: {
                    "total": self.counters.get(f"tokens_{model}", 0),
                    "stats": metric.get_stats(),
                }
                for model, metric in self.tokens_per_model.items()
            },
        }

    def _get_error_rates(self) -> Dict[str, Any]:
        total = self.counters.get("chat_turns_total", 0)
        failed = self.counters.get("chat_turns_failed", 0)

        return {
            "total_turns": total,
            "failed_turns": failed,
            "error_rate": failed / total if total > 0 else 0,
            "errors_by_type": {
                name[len("provider_errors_"):]: value
                for name, value in self.counters.items()
                if name.startswith("provider_errors_")
            },
            "memory_errors": self.counters.get("memory_errors", 0),
        }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        self.metrics.clear()
        self.counters.clear()
        self.tokens_per_model.clear()
        self._init_metrics()
        self.start_time = datetime.now(timezone.utc)


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def get_performance_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance."""
    return performance_monitor
