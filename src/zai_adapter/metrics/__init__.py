"""Prometheus metrics exposition."""

from prometheus_client import Counter, Histogram, Info, generate_latest, CONTENT_TYPE_LATEST

from zai_adapter import __version__

# Application info
APP_INFO = Info("zai_adapter", "Application information")
APP_INFO.info({"version": __version__})

# Request counters
REQUESTS_TOTAL = Counter(
    "zai_adapter_requests_total",
    "Total chat completions served",
    ["model", "stream", "finish_reason"]
)

TOOL_CALLS_TOTAL = Counter(
    "zai_adapter_tool_calls_total",
    "Tool calls extracted from generated text",
    ["model"]
)

UPSTREAM_RETRIES_TOTAL = Counter(
    "zai_adapter_upstream_retries_total",
    "Retried upstream calls",
    ["operation"]
)

UPSTREAM_ERRORS_TOTAL = Counter(
    "zai_adapter_upstream_errors_total",
    "Requests failed by the upstream",
    ["model"]
)

# Token estimates (using histogram for distribution)
PROMPT_TOKENS = Histogram(
    "zai_adapter_prompt_tokens",
    "Estimated prompt tokens",
    ["model"],
    buckets=[100, 500, 1000, 2000, 4000, 8000, 16000, 32000]
)

COMPLETION_TOKENS = Histogram(
    "zai_adapter_completion_tokens",
    "Estimated completion tokens",
    ["model"],
    buckets=[50, 100, 500, 1000, 2000, 4000, 8000, 16000]
)

# Response time
RESPONSE_TIME = Histogram(
    "zai_adapter_response_time_seconds",
    "Response time in seconds",
    ["model", "stream"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)


class MetricsExporter:
    """Exports metrics in Prometheus format."""

    @staticmethod
    def get_prometheus_format() -> tuple[str, bytes]:
        """Get metrics in Prometheus exposition format.

        Returns:
            Tuple of (content_type, metrics_body)
        """
        return CONTENT_TYPE_LATEST, generate_latest()

    @staticmethod
    def record_completion(
        model: str,
        stream: bool,
        finish_reason: str,
        prompt_tokens: int,
        completion_tokens: int,
        tool_calls: int,
        response_time: float,
    ) -> None:
        """Record metrics of one finished completion.

        Args:
            model: Requested model name
            stream: Whether the response was streamed
            finish_reason: Finish reason sent to the client
            prompt_tokens: Estimated prompt tokens
            completion_tokens: Estimated completion tokens
            tool_calls: Number of extracted tool calls
            response_time: Seconds from request start to the last byte
        """
        stream_label = "true" if stream else "false"

        REQUESTS_TOTAL.labels(
            model=model,
            stream=stream_label,
            finish_reason=finish_reason
        ).inc()

        if tool_calls:
            TOOL_CALLS_TOTAL.labels(model=model).inc(tool_calls)

        PROMPT_TOKENS.labels(model=model).observe(prompt_tokens)
        COMPLETION_TOKENS.labels(model=model).observe(completion_tokens)
        RESPONSE_TIME.labels(model=model, stream=stream_label).observe(response_time)

    @staticmethod
    def record_retry(operation: str) -> None:
        UPSTREAM_RETRIES_TOTAL.labels(operation=operation).inc()

    @staticmethod
    def record_upstream_error(model: str) -> None:
        UPSTREAM_ERRORS_TOTAL.labels(model=model).inc()
