from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

completion_requests_total = Counter(
    "docinsight_completion_requests_total",
    "Completion calls by deployment and final outcome",
    labelnames=["deployment", "status"],
)

completion_retries_total = Counter(
    "docinsight_completion_retries_total",
    "Completion attempts that were retried",
    labelnames=["reason"],
)

completion_latency_seconds = Histogram(
    "docinsight_completion_latency_seconds",
    "Latency of one logical completion call, retries included",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
    labelnames=["deployment"],
)

completion_tokens_total = Counter(
    "docinsight_completion_tokens_total",
    "Tokens reported by the completion endpoint",
    labelnames=["deployment", "kind"],
)

facet_results_total = Counter(
    "docinsight_facet_results_total",
    "Facet outcomes (success, degraded, failure)",
    labelnames=["facet", "outcome"],
)

analyses_total = Counter(
    "docinsight_analyses_total",
    "Document analyses by outcome",
    labelnames=["outcome"],
)

documents_processed_total = Counter(
    "docinsight_documents_processed_total",
    "Custom-prompt document processing by output format and outcome",
    labelnames=["output_format", "outcome"],
)

server_requests_total = Counter(
    "docinsight_server_requests_total",
    "HTTP requests handled by the server",
    labelnames=["path", "status"],
)

server_errors_total = Counter(
    "docinsight_server_errors_total",
    "Error responses returned by the server",
    labelnames=["type"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
