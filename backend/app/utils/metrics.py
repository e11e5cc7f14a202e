"""Prometheus metrics for ingestion, retrieval and generation."""

from prometheus_client import Counter, Histogram

# Ingestion metrics
ingestion_runs_total = Counter(
    "ingestion_runs_total",
    "Total ingestion runs by final state",
    ["state"],
)

ingestion_duration_seconds = Histogram(
    "ingestion_duration_seconds",
    "Ingestion run duration in seconds",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
)

ingestion_chunks_total = Counter(
    "ingestion_chunks_total",
    "Chunks processed during ingestion",
    ["outcome"],
)

# Retry metrics
retry_attempts_total = Counter(
    "retry_attempts_total",
    "Failed collaborator attempts by operation",
    ["operation", "outcome"],
)

# Retrieval metrics
retrieval_results_total = Counter(
    "retrieval_results_total",
    "Retrieval results returned by scope and source",
    ["scope", "source"],
)

retrieval_fallbacks_total = Counter(
    "retrieval_fallbacks_total",
    "Retrieval fallbacks taken",
    ["scope", "reason"],
)

# Generation metrics
generation_latency_ms = Histogram(
    "generation_latency_ms",
    "Generation latency in milliseconds",
    ["mode", "outcome"],
    buckets=[100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000],
)


class PrometheusIngestionMetrics:
    """Prometheus-based ingestion metrics implementation."""

    def record_run(self, state: str, duration_s: float) -> None:
        """Record a finished ingestion run."""
        ingestion_runs_total.labels(state=state).inc()
        ingestion_duration_seconds.observe(duration_s)

    def inc_chunks(self, outcome: str, count: int = 1) -> None:
        """Count stored or skipped chunks."""
        if count:
            ingestion_chunks_total.labels(outcome=outcome).inc(count)
