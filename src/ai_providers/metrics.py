"""Метрики Prometheus (локальный registry, экспорт оставляем приложению)."""

from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

requests_total = Counter(
    "llm_requests_total",
    "Total number of provider calls",
    ["provider", "operation", "status"],
    registry=registry,
)

request_latency_seconds = Histogram(
    "llm_request_latency_seconds",
    "Provider call latency in seconds",
    ["provider", "operation"],
    registry=registry,
)

tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens reported by providers",
    ["provider", "model"],
    registry=registry,
)

stream_frames_skipped_total = Counter(
    "llm_stream_frames_skipped_total",
    "Stream frames that could not be decoded and were skipped",
    ["provider"],
    registry=registry,
)
