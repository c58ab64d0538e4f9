"""
Tests for outbound sinks: webhook notifier, external forwarder, warehouse.

All network and cloud calls are mocked.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from google.api_core import exceptions as gcp_exceptions

from ip_run_gate.core.decision import GateDecision, GateReason
from ip_run_gate.sinks.warehouse import WarehouseSink, record_to_row
from ip_run_gate.sinks.webhooks import (
    COLOR_ALLOWED,
    COLOR_BLOCKED,
    DecisionNotifier,
    ExternalSinkForwarder,
)
from ip_run_gate.storage.models import UsageRecord


@pytest.fixture
def record():
    return UsageRecord(
        address="1.2.3.4",
        timestamp=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
        run_id="run-1",
        account="acme",
        repo="acme/app",
        job="build",
    )


class TestDecisionNotifier:
    """Test webhook notifications."""

    def test_payload_for_admitted_run(self):
        notifier = DecisionNotifier("https://discord.example/hook")
        decision = GateDecision(admit=True, uses_today=2, last_use_utc="")

        embed = notifier.build_payload(decision, "1.2.3.4", unique_addresses=5)["embeds"][0]
        assert embed["color"] == COLOR_ALLOWED
        assert "Allowed" in embed["title"]
        values = {f["name"]: f["value"] for f in embed["fields"]}
        assert values == {
            "IP Address": "1.2.3.4",
            "Reason": "Policy Check Passed",
            "Runs for this IP": "2",
            "Total Unique IPs Today": "5",
        }

    def test_payload_for_denied_run(self):
        notifier = DecisionNotifier("https://discord.example/hook")
        decision = GateDecision(admit=False, uses_today=4, last_use_utc="", reason=GateReason.MAX_RUNS_REACHED)

        embed = notifier.build_payload(decision, "1.2.3.4")["embeds"][0]
        assert embed["color"] == COLOR_BLOCKED
        assert "Blocked" in embed["title"]
        assert {"name": "Reason", "value": "max_runs_reached", "inline": True} in embed["fields"]
        assert all(f["name"] != "Total Unique IPs Today" for f in embed["fields"])

    @patch("ip_run_gate.sinks.webhooks.httpx.post")
    def test_notify_posts_payload(self, mock_post):
        notifier = DecisionNotifier("https://discord.example/hook", timeout=2.0)
        assert notifier.notify(GateDecision(admit=True, uses_today=1, last_use_utc=""), "1.2.3.4") is True

        args, kwargs = mock_post.call_args
        assert args[0] == "https://discord.example/hook"
        assert kwargs["timeout"] == 2.0
        assert "embeds" in kwargs["json"]

    @patch("ip_run_gate.sinks.webhooks.httpx.post")
    def test_notify_swallows_errors(self, mock_post):
        mock_post.side_effect = httpx.ConnectError("refused")
        notifier = DecisionNotifier("https://discord.example/hook")
        assert notifier.notify(GateDecision.fail_open(), "1.2.3.4") is False


class TestExternalSinkForwarder:
    """Test the ingest forwarder."""

    @patch("ip_run_gate.sinks.webhooks.httpx.post")
    def test_forwards_with_bearer_token(self, mock_post):
        forwarder = ExternalSinkForwarder("https://sink.example/ingest", token="sink-token")
        payload = {"ip": "1.2.3.4", "run_id": "1", "custom": True}

        assert forwarder.forward(payload) is True
        args, kwargs = mock_post.call_args
        assert args[0] == "https://sink.example/ingest"
        assert kwargs["json"] == payload
        assert kwargs["headers"]["Authorization"] == "Bearer sink-token"

    @patch("ip_run_gate.sinks.webhooks.httpx.post")
    def test_http_error_reported(self, mock_post):
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "boom", request=MagicMock(), response=MagicMock()
        )
        mock_post.return_value = response

        forwarder = ExternalSinkForwarder("https://sink.example/ingest")
        assert forwarder.forward({"ip": "1.2.3.4"}) is False


class TestWarehouseSink:
    """Test BigQuery streaming inserts."""

    def test_row_mapping(self, record):
        assert record_to_row(record) == {
            "account": "acme",
            "repo": "acme/app",
            "run_id": "run-1",
            "job": "build",
            "ip": "1.2.3.4",
            "ts": "2024-03-01T09:30:00",
            "country": None,
            "asn": None,
        }

    def test_insert_success(self, record):
        client = MagicMock()
        client.project = "proj"
        client.insert_rows_json.return_value = []
        sink = WarehouseSink("ip_data", "ip_observations", client=client)

        assert sink.insert(record) is True
        table, rows = client.insert_rows_json.call_args[0]
        assert table == "proj.ip_data.ip_observations"
        assert rows[0]["run_id"] == "run-1"

    def test_missing_table_ignored(self, record):
        client = MagicMock()
        client.insert_rows_json.side_effect = gcp_exceptions.NotFound("no table")
        sink = WarehouseSink("ip_data", "ip_observations", client=client)
        assert sink.insert(record) is False

    def test_row_errors_reported(self, record):
        client = MagicMock()
        client.insert_rows_json.return_value = [{"index": 0, "errors": ["bad"]}]
        sink = WarehouseSink("ip_data", "ip_observations", client=client)
        assert sink.insert(record) is False
