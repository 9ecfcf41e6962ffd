from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["path", "method", "status"])
REQUEST_LATENCY = Histogram("http_request_latency_seconds", "HTTP request latency", ["path", "method"])

TRANSFER_OUTCOMES = Counter("transfer_outcomes_total", "Transfer gateway outcomes", ["outcome"])
RECONCILIATION_RESULTS = Counter(
    "reconciliation_results_total", "Reconciliation sweep per-item results", ["result"]
)
TOOL_CALLS = Counter("agent_tool_calls_total", "Agent tool invocations", ["tool", "status"])
TOOL_LATENCY = Histogram("agent_tool_latency_seconds", "Agent tool latency", ["tool"])


def metrics_response() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
