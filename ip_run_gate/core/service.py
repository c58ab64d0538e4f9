"""
Request orchestration for ingest, gate, cleanup and summary.

The service owns no locks and no mutable state beyond the immutable
configuration it was built with; concurrent requests only meet in the
event log.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional

from ip_run_gate.config.loader import GateConfig
from ip_run_gate.sinks.warehouse import WarehouseSink
from ip_run_gate.sinks.webhooks import DecisionNotifier, ExternalSinkForwarder
from ip_run_gate.storage.factory import get_event_store
from ip_run_gate.storage.models import Scope, UsageRecord, normalize_address, parse_timestamp
from ip_run_gate.storage.repository import EventLogStore, StorageError

from .decision import GateDecision, decide
from .retention import sweep_expired

logger = logging.getLogger(__name__)


class GateService:
    """Coordinates the event log, the decision engine and the sinks."""

    def __init__(
        self,
        config: GateConfig,
        store: EventLogStore,
        notifier: Optional[DecisionNotifier] = None,
        forwarder: Optional[ExternalSinkForwarder] = None,
        warehouse: Optional[WarehouseSink] = None
    ):
        self.config = config
        self.store = store
        self.notifier = notifier
        self.forwarder = forwarder
        self.warehouse = warehouse

    def ingest(self, payload: Mapping[str, Any], received_at: Optional[datetime] = None) -> UsageRecord:
        """Validate and append one observation. Never evaluates policy.

        A failed append is logged but not raised: the caller's run must
        not be held up by the event log.

        Raises:
            ValueError: If ``ip``/``run_id`` are missing or ``ts`` is invalid
        """
        record = UsageRecord.from_dict(payload, received_at=received_at)
        try:
            self.store.append(record)
        except StorageError as e:
            logger.error("Event log append failed for run %s: %s", record.run_id, e)
        return record

    def dispatch_ingest_sinks(self, payload: Mapping[str, Any], record: UsageRecord) -> None:
        """Send an ingested observation to the secondary sinks."""
        if self.warehouse is not None:
            try:
                self.warehouse.insert(record)
            except Exception as e:
                logger.error("Warehouse sink error: %s", e)
        if self.forwarder is not None:
            try:
                self.forwarder.forward(payload)
            except Exception as e:
                logger.error("External sink error: %s", e)

    def gate(self, address: Optional[str], run_id: Optional[str], ts: Optional[str] = None) -> GateDecision:
        """Decide whether a run may start.

        Always returns a usable verdict; anything unexpected fails open.
        """
        try:
            if not address:
                raise ValueError("No IP provided")
            if not run_id:
                raise ValueError("No run_id provided")
            when = parse_timestamp(ts) if ts else datetime.now(timezone.utc)
            scope = Scope(normalize_address(address), when.date())
            records = self.store.list_records(scope)
            return decide(records, str(run_id), self.config.policy)
        except StorageError as e:
            logger.error("Error reading event log for gate, failing open: %s", e)
            return GateDecision.fail_open()
        except Exception as e:
            logger.error("Gate error, failing open: %s", e)
            return GateDecision.fail_open()

    def notify_decision(self, decision: GateDecision, address: str, day: Optional[date] = None) -> None:
        """Best-effort notification about a decision."""
        if self.notifier is None:
            return
        try:
            unique = self.store.count_addresses(day or datetime.now(timezone.utc).date())
            self.notifier.notify(decision, normalize_address(address), unique)
        except Exception as e:
            logger.debug("Notification dropped: %s", e)

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Run one retention sweep and return the deletion count."""
        return sweep_expired(self.store, self.config.retention, now)

    def summary(self, day: Optional[date] = None) -> Dict[str, Any]:
        """Unique addresses seen on a day (today by default)."""
        day = day or datetime.now(timezone.utc).date()
        return {"day": day.isoformat(), "unique_addresses": self.store.count_addresses(day)}


def build_service(config: GateConfig, store: Optional[EventLogStore] = None) -> GateService:
    """Wire a GateService from configuration.

    Args:
        config: Loaded gate configuration
        store: Optional pre-built event log (defaults to the configured backend)
    """
    sinks = config.sinks
    notifier = None
    if sinks.discord_webhook_url:
        notifier = DecisionNotifier(sinks.discord_webhook_url, timeout=sinks.timeout_seconds)

    forwarder = None
    if sinks.external_sink_url:
        forwarder = ExternalSinkForwarder(
            sinks.external_sink_url,
            token=sinks.external_sink_token,
            timeout=sinks.timeout_seconds
        )

    warehouse = None
    if config.warehouse.enabled:
        warehouse = WarehouseSink(
            config.warehouse.dataset_id,
            config.warehouse.table_id,
            project=config.warehouse.project_id
        )

    return GateService(
        config=config,
        store=store if store is not None else get_event_store(config.storage),
        notifier=notifier,
        forwarder=forwarder,
        warehouse=warehouse
    )
