"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from callcenter.services.metrics import MAX_BATCH_SIZE, MetricsClient


def _dimensions(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that each record_* call buffers the right data."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_record_success_appends_two_data_points(self):
        client = self._make_client()
        client.record_success("anthropic", "classify", latency_ms=123.4)
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Upstream/RequestCount", "Upstream/Latency"}

    def test_record_failure_without_latency(self):
        client = self._make_client()
        client.record_failure("anthropic", "greeting", error_type="APITimeoutError")
        # RequestCount + ErrorCount, no latency since default 0
        assert len(client._buffer) == 2
        error_metric = next(m for m in client._buffer if m["MetricName"] == "Upstream/ErrorCount")
        assert _dimensions(error_metric)["ErrorType"] == "APITimeoutError"

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = self._make_client()
        client.record_failure("anthropic", "hr", error_type="APIStatusError", latency_ms=500.0)
        assert {m["MetricName"] for m in client._buffer} == {
            "Upstream/RequestCount",
            "Upstream/ErrorCount",
            "Upstream/Latency",
        }

    def test_record_route_dimensions(self):
        client = self._make_client()
        client.record_route("appointment", tier="recovered")
        (metric,) = client._buffer
        assert metric["MetricName"] == "Routing/DecisionCount"
        assert _dimensions(metric) == {"Agent": "appointment", "Tier": "recovered"}

    def test_record_canned_reply(self):
        client = self._make_client()
        client.record_canned_reply("hr")
        (metric,) = client._buffer
        assert metric["MetricName"] == "Handler/CannedReplyCount"
        assert _dimensions(metric) == {"Agent": "hr"}

    def test_record_turn_status(self):
        client = self._make_client()
        client.record_turn("fallback", 42.0, error=True)
        count_metric = next(m for m in client._buffer if m["MetricName"] == "Turn/Count")
        assert _dimensions(count_metric)["Status"] == "error"
        latency = next(m for m in client._buffer if m["MetricName"] == "Turn/Latency")
        assert latency["Value"] == 42.0
        assert latency["Unit"] == "Milliseconds"


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_does_not_call_boto3(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            client = MetricsClient()
        client.record_turn("greeting", 10.0)
        with patch("boto3.client") as boto_client:
            assert client.flush() == 0
        boto_client.assert_not_called()
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()

        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_turn("greeting", 10.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "CityGeneralCallCenter"
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_splits_large_batches(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()
        client._cw_client = MagicMock()

        for _ in range(MAX_BATCH_SIZE + 1):
            client.record_canned_reply("closing")

        assert client.flush() == MAX_BATCH_SIZE + 1
        assert client._cw_client.put_metric_data.call_count == 2

    def test_flush_failure_is_logged_not_raised(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_route("hr", tier="rules")
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()
        assert client.flush() == 0

    def test_close_publishes_remaining_points(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true", "METRICS_FLUSH_SECONDS": "3600"}):
            client = MetricsClient()
        client._cw_client = MagicMock()
        client.record_route("closing", tier="parsed")
        assert client.close() == 1
        assert client._stop.is_set()
