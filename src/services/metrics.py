"""CloudWatch custom metrics emitter with background batching.

Publishes call counts, latency and errors for every Google Calendar request
and for every tool dispatched on behalf of the voice agent.

Design
------
* Data points are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS``.
* Unless ``METRICS_ENABLED=true``, nothing is pushed; data points are only
  logged at DEBUG level and dropped on flush.
* One ``put_metric_data`` call carries at most ``MAX_BATCH_SIZE`` points.

Usage
-----
>>> from src.services.metrics import metrics
>>> metrics.record_success("google_calendar", "POST /freeBusy", latency_ms=123.4)
>>> metrics.record_failure("tool", "propose_slot", error_type="not_found")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "WoodlandHVAC"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Count one successful call and its latency."""
        now = datetime.now(UTC)
        self._append("RequestCount", 1, "Count", now, Service=service, Status="success")
        self._append(
            "Latency", latency_ms, "Milliseconds", now, Service=service, Operation=operation,
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count one failed call; latency is only recorded when known."""
        now = datetime.now(UTC)
        self._append("RequestCount", 1, "Count", now, Service=service, Status="failure")
        self._append("ErrorCount", 1, "Count", now, Service=service, ErrorType=error_type)
        if latency_ms > 0:
            self._append(
                "Latency", latency_ms, "Milliseconds", now, Service=service, Operation=operation,
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered data points to CloudWatch.  Returns count sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(
        self,
        name: str,
        value: float,
        unit: str,
        timestamp: datetime,
        **dimensions: str,
    ) -> None:
        point = {
            "MetricName": name,
            "Dimensions": _dims(**dimensions),
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(point)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                self.flush()

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
