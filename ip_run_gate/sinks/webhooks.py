"""
Outbound webhooks: decision notifications and the external ingest sink.

Both are best effort. Failures are logged and never reach the caller of
ingest or gate.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import httpx

from ip_run_gate.core.decision import GateDecision

logger = logging.getLogger(__name__)

COLOR_ALLOWED = 5763719  # green
COLOR_BLOCKED = 15548997  # red
FOOTER_TEXT = "IP Run Gate"


class DecisionNotifier:
    """Posts gate decisions to a Discord-compatible webhook."""

    def __init__(self, webhook_url: str, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def build_payload(
        self,
        decision: GateDecision,
        address: str,
        unique_addresses: Optional[int] = None
    ) -> Dict[str, Any]:
        """Render a decision as a webhook embed."""
        fields = [
            {"name": "IP Address", "value": address, "inline": True},
            {"name": "Reason", "value": decision.reason.value or "Policy Check Passed", "inline": True},
            {"name": "Runs for this IP", "value": str(decision.uses_today), "inline": True},
        ]
        if unique_addresses is not None:
            fields.append({"name": "Total Unique IPs Today", "value": str(unique_addresses), "inline": True})

        return {
            "embeds": [{
                "title": "🚀 Job Allowed" if decision.admit else "🛑 Job Blocked",
                "color": COLOR_ALLOWED if decision.admit else COLOR_BLOCKED,
                "fields": fields,
                "footer": {"text": FOOTER_TEXT},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }]
        }

    def notify(
        self,
        decision: GateDecision,
        address: str,
        unique_addresses: Optional[int] = None
    ) -> bool:
        """Send a notification, returning whether it was delivered."""
        try:
            response = httpx.post(
                self.webhook_url,
                json=self.build_payload(decision, address, unique_addresses),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True
        except Exception as e:
            # Kept quiet so a broken webhook does not flood the logs
            logger.debug("Decision notification failed: %s", e)
            return False


class ExternalSinkForwarder:
    """Forwards ingest payloads unchanged to an external collector."""

    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 5.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def forward(self, payload: Mapping[str, Any]) -> bool:
        """POST the payload with the sink's own bearer token."""
        headers = {
            "Authorization": f"Bearer {self.token or ''}",
            "Content-Type": "application/json",
        }
        try:
            response = httpx.post(self.url, json=dict(payload), headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return True
        except Exception as e:
            logger.error("External sink error: %s", e)
            return False
