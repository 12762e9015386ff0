"""
Tests for CloudWatch metrics utilities (functions/shared/metrics.py).

The autouse `cloudwatch` fixture replaces the client with a mock; the moto
test routes through a real (mocked) CloudWatch API instead.
"""

from unittest.mock import patch

import boto3
from moto import mock_aws

from shared.metrics import NAMESPACE, emit_batch_metrics, emit_error_metric, emit_metric


class TestEmitMetric:
    """Tests for emit_metric."""

    def test_puts_metric_with_dimensions(self, cloudwatch):
        emit_metric("Redemptions", dimensions={"Campaign": "camp1"})

        kwargs = cloudwatch.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == NAMESPACE
        metric = kwargs["MetricData"][0]
        assert metric["MetricName"] == "Redemptions"
        assert metric["Value"] == 1.0
        assert metric["Unit"] == "Count"
        assert metric["Dimensions"] == [{"Name": "Campaign", "Value": "camp1"}]

    def test_failures_are_swallowed(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = RuntimeError("CloudWatch down")

        emit_metric("Redemptions")

    @mock_aws
    def test_against_cloudwatch_api(self):
        client = boto3.client("cloudwatch", region_name="us-east-1")

        with patch("shared.metrics.get_cloudwatch", return_value=client):
            emit_metric("RedemptionStoreDegraded", dimensions={"Backend": "file"})

        metrics = client.list_metrics(Namespace=NAMESPACE)["Metrics"]
        assert [m["MetricName"] for m in metrics] == ["RedemptionStoreDegraded"]


class TestEmitBatchMetrics:
    """Tests for emit_batch_metrics."""

    def test_splits_into_batches_of_twenty(self, cloudwatch):
        emit_batch_metrics([{"metric_name": f"M{i}", "value": i} for i in range(25)])

        calls = cloudwatch.put_metric_data.call_args_list
        assert [len(c.kwargs["MetricData"]) for c in calls] == [20, 5]

    def test_failures_are_swallowed(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = RuntimeError("CloudWatch down")

        emit_batch_metrics([{"metric_name": "RedemptionsTotal", "value": 3}])


class TestEmitErrorMetric:
    """Tests for emit_error_metric."""

    def test_standard_dimensions(self, cloudwatch):
        emit_error_metric("rejected", service="klaviyo", handler="golden_ticket")

        metric = cloudwatch.put_metric_data.call_args.kwargs["MetricData"][0]
        assert metric["MetricName"] == "Errors"
        assert metric["Dimensions"] == [
            {"Name": "ErrorType", "Value": "rejected"},
            {"Name": "Service", "Value": "klaviyo"},
            {"Name": "Handler", "Value": "golden_ticket"},
        ]

    def test_optional_dimensions_omitted(self, cloudwatch):
        emit_error_metric("persistence")

        metric = cloudwatch.put_metric_data.call_args.kwargs["MetricData"][0]
        assert metric["Dimensions"] == [{"Name": "ErrorType", "Value": "persistence"}]
