"""
Dynatrace metrics for the file set loader.

Metrics are buffered as Dynatrace line protocol and pushed once at the
end of a run:

    fileset_loader.jobs.triggered,env=prd,dataset=raw,table=events count=1
    fileset_loader.files.cleaned,env=prd,dataset=raw,table=events gauge=2
"""

from pathlib import Path
from typing import Any

import httpx
import structlog

from fileset_loader.config import Config

log = structlog.get_logger()

PREFIX = "fileset_loader"

# Dynatrace rejects ingest requests over 1000 lines
MAX_LINES_PER_REQUEST = 1000


def _dimension_value(value: Any) -> str:
    text = str(value)
    if any(c in text for c in ' ,="'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


class MetricsClient:
    """Buffers load metrics and pushes them to the Dynatrace ingest API."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._lines: list[str] = []
        self._token: str | None = None

    @property
    def pending(self) -> list[str]:
        """Metric lines recorded but not yet flushed."""
        return list(self._lines)

    def load_event(self, event: str, dataset: str, table: str) -> None:
        """Count a load job lifecycle event (triggered, retried, ...)."""
        self.increment(f"{PREFIX}.jobs.{event}", dimensions={"dataset": dataset, "table": table})

    def files_cleaned(self, count: int, dataset: str, table: str) -> None:
        self.gauge(f"{PREFIX}.files.cleaned", count, dimensions={"dataset": dataset, "table": table})

    def increment(self, metric: str, value: int = 1, dimensions: dict[str, Any] | None = None) -> None:
        self._add(metric, "count", value, dimensions)

    def gauge(self, metric: str, value: float, dimensions: dict[str, Any] | None = None) -> None:
        self._add(metric, "gauge", value, dimensions)

    def _add(self, metric: str, kind: str, value: float, dimensions: dict[str, Any] | None) -> None:
        dims = {"env": self.config.env, **(dimensions or {})}
        dim_str = ",".join(f"{k}={_dimension_value(v)}" for k, v in dims.items())
        self._lines.append(f"{metric},{dim_str} {kind}={value}")

    def _read_token(self) -> str | None:
        if self._token is None:
            token_path = Path(self.config.dynatrace_token_path)
            if not token_path.exists():
                log.debug("dynatrace_token_not_found", path=str(token_path))
                return None
            self._token = token_path.read_text().strip()
        return self._token

    def flush(self) -> None:
        """
        Push buffered lines to Dynatrace and clear the buffer.

        Metrics are best effort: without an endpoint or token the lines
        are dropped, and HTTP failures are logged rather than raised.
        """
        if not self._lines:
            return

        lines, self._lines = self._lines, []

        token = self._read_token()
        if not token or not self.config.dynatrace_endpoint:
            log.debug("metrics_flush_skipped", reason="no endpoint or token configured", dropped=len(lines))
            return

        url = f"{self.config.dynatrace_endpoint}/api/v2/metrics/ingest"
        headers = {"Authorization": f"Api-Token {token}", "Content-Type": "text/plain"}

        for start in range(0, len(lines), MAX_LINES_PER_REQUEST):
            batch = lines[start:start + MAX_LINES_PER_REQUEST]
            try:
                response = httpx.post(url, headers=headers, content="\n".join(batch), timeout=10)
            except httpx.HTTPError as e:
                log.warning("metrics_flush_error", error=str(e), lines=len(batch))
                continue

            if response.status_code == 202:
                log.info("metrics_flushed", count=len(batch))
            else:
                log.error("metrics_flush_failed", status=response.status_code, body=response.text[:500])
