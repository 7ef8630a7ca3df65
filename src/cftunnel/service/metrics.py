"""Counters scraped from the agent's Prometheus endpoint."""

import httpx
from pydantic import BaseModel, Field

from ..common.exceptions import MetricsUnavailableError
from ..common.logging import get_logger

logger = get_logger(__name__)

DEFAULT_METRICS_URL = "http://127.0.0.1:20241/metrics"

_TOTALS = {
    "cloudflared_tunnel_total_requests": "total_requests",
    "cloudflared_tunnel_active_streams": "active_streams",
    "cloudflared_tunnel_request_errors": "request_errors",
}
_RESPONSE_BY_CODE = "cloudflared_tunnel_response_by_code"


class ResponseCount(BaseModel):
    labels: str
    value: float


class TunnelMetrics(BaseModel):
    """Totals summed over every label set of a series; None when absent."""

    total_requests: float | None = None
    active_streams: float | None = None
    request_errors: float | None = None
    responses: list[ResponseCount] = Field(default_factory=list)


def _split_sample(line: str) -> tuple[str, str, float] | None:
    """Split ``name{labels} value [timestamp]`` into its parts."""
    if "{" in line:
        name, _, rest = line.partition("{")
        labels, _, rest = rest.partition("}")
    else:
        name, _, rest = line.partition(" ")
        labels = ""
    fields = rest.split()
    if not fields:
        return None
    try:
        value = float(fields[0])
    except ValueError:
        return None
    return name.strip(), labels, value


def parse_metrics(text: str) -> TunnelMetrics:
    totals: dict[str, float] = {}
    responses: list[ResponseCount] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        sample = _split_sample(line)
        if sample is None:
            continue
        name, labels, value = sample
        if name in _TOTALS:
            field = _TOTALS[name]
            totals[field] = totals.get(field, 0.0) + value
        elif name == _RESPONSE_BY_CODE:
            responses.append(ResponseCount(labels=labels, value=value))
    return TunnelMetrics(**totals, responses=responses)


def fetch_metrics(
    url: str = DEFAULT_METRICS_URL, timeout: float = 5.0, client: httpx.Client | None = None
) -> TunnelMetrics:
    """Scrape and parse the agent's metrics.

    Raises:
        MetricsUnavailableError: If the endpoint is unreachable or answers non-200
    """
    owned = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        response = http.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.debug("Metrics scrape failed", url=url, error=str(e))
        raise MetricsUnavailableError(
            f"Cannot reach metrics endpoint {url}. Is cloudflared running?"
        ) from e
    finally:
        if owned:
            http.close()
    return parse_metrics(response.text)


def format_count(value: float | None) -> str:
    if value is None:
        return "-"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.0f}"
