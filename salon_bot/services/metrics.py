"""CloudWatch custom metrics for external calls (LLM, WhatsApp).

Metrics are buffered in memory and pushed in batches by a daemon thread
when ``METRICS_ENABLED=true``.  Otherwise they are only logged at DEBUG
and dropped on flush, which keeps local runs and tests offline.

Usage
-----
>>> from salon_bot.services.metrics import metrics
>>> with metrics.track("whatsapp", "POST /messages"):
...     client.post(...)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "SalonBot"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch limit per PutMetricData call


def _datum(name: str, dimensions: dict[str, str], value: float, unit: str) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


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

    def record(
        self,
        service: str,
        operation: str,
        *,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Record one external call.  ``error_type=None`` means success."""
        status = "failure" if error_type else "success"
        with self._lock:
            self._buffer.append(
                _datum("ExternalAPI/RequestCount", {"Service": service, "Status": status}, 1, "Count"),
            )
            self._buffer.append(
                _datum(
                    "ExternalAPI/Latency",
                    {"Service": service, "Operation": operation},
                    latency_ms,
                    "Milliseconds",
                ),
            )
            if error_type:
                self._buffer.append(
                    _datum(
                        "ExternalAPI/ErrorCount",
                        {"Service": service, "ErrorType": error_type},
                        1,
                        "Count",
                    ),
                )
        logger.debug(
            "Metric: %s %s %s latency=%.1fms%s",
            service, operation, status, latency_ms,
            f" error={error_type}" if error_type else "",
        )

    @contextmanager
    def track(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block and record success, or failure by exception type.

        Exceptions are re-raised untouched.
        """
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record(
                service, operation,
                latency_ms=(time.perf_counter() - t0) * 1000,
                error_type=type(exc).__name__,
            )
            raise
        self.record(service, operation, latency_ms=(time.perf_counter() - t0) * 1000)

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

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

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
