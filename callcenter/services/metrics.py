"""Call-center metrics, batched and published to CloudWatch.

What is recorded
----------------
* ``Routing/DecisionCount``    one per classification, by agent and parse tier
* ``Handler/CannedReplyCount`` a handler answered without LLM text
* ``Turn/Count`` / ``Turn/Latency``  per completed turn, by agent and status
* ``Upstream/*``               per LLM call: request count, errors, latency

Data points are buffered in memory under a lock.  With
``METRICS_ENABLED=true`` a daemon thread pushes the buffer every
``METRICS_FLUSH_SECONDS`` in chunks of at most ``MAX_BATCH_SIZE`` (the
PutMetricData limit); otherwise points are logged at DEBUG and dropped on
flush.

>>> from callcenter.services.metrics import metrics
>>> metrics.record_route("appointment", tier="parsed")
>>> metrics.record_turn("appointment", 812.0)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "CityGeneralCallCenter"
MAX_BATCH_SIZE = 1_000
DEFAULT_FLUSH_SECONDS = 60.0


def _datum(name: str, dimensions: dict[str, str], value: float, unit: str) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


def _count(name: str, **dimensions: str) -> dict[str, Any]:
    return _datum(name, dimensions, 1, "Count")


def _latency(name: str, latency_ms: float, **dimensions: str) -> dict[str, Any]:
    return _datum(name, dimensions, latency_ms, "Milliseconds")


class MetricsClient:
    """Thread-safe metric buffer with optional periodic CloudWatch flush."""

    def __init__(self, flush_seconds: float | None = None) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._flush_seconds = flush_seconds or float(
            os.getenv("METRICS_FLUSH_SECONDS") or DEFAULT_FLUSH_SECONDS
        )
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Upstream calls ───────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """An LLM call that returned usable text."""
        self._append(
            _count("Upstream/RequestCount", Service=service, Status="success"),
            _latency("Upstream/Latency", latency_ms, Service=service, Operation=operation),
        )
        logger.debug("Metric: %s %s ok in %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """An LLM call that failed; latency is only kept when measured."""
        points = [
            _count("Upstream/RequestCount", Service=service, Status="failure"),
            _count("Upstream/ErrorCount", Service=service, ErrorType=error_type),
        ]
        if latency_ms > 0:
            points.append(_latency("Upstream/Latency", latency_ms, Service=service, Operation=operation))
        self._append(*points)
        logger.debug("Metric: %s %s failed (%s)", service, operation, error_type)

    # ── Routing & turns ──────────────────────────────────────────────

    def record_route(self, agent: str, tier: str) -> None:
        self._append(_count("Routing/DecisionCount", Agent=agent, Tier=tier))
        logger.debug("Metric: route agent=%s tier=%s", agent, tier)

    def record_canned_reply(self, agent: str) -> None:
        self._append(_count("Handler/CannedReplyCount", Agent=agent))

    def record_turn(self, agent: str, latency_ms: float, *, error: bool = False) -> None:
        status = "error" if error else "ok"
        self._append(
            _count("Turn/Count", Agent=agent, Status=status),
            _latency("Turn/Latency", latency_ms, Agent=agent),
        )
        logger.debug("Metric: turn agent=%s status=%s latency=%.1fms", agent, status, latency_ms)

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Drain the buffer; returns how many points reached CloudWatch."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Dropping %d metrics (publishing disabled)", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("Publishing metrics to CloudWatch failed after %d points", sent)
        else:
            logger.info("Published %d metrics to %s", sent, NAMESPACE)
        return sent

    def close(self) -> int:
        """Stop the flush thread and publish whatever is left."""
        self._stop.set()
        return self.flush()

    def _append(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop() -> None:
            while not self._stop.wait(self._flush_seconds):
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.close)
        logger.info("Metrics publishing every %.0fs to %s", self._flush_seconds, NAMESPACE)


metrics = MetricsClient()
