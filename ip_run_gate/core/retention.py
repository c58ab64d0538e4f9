"""
Retention sweeper.

Removes records older than the retention horizon. Runs only when asked
(HTTP cleanup or the CLI); sweeps are idempotent and safe to repeat.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ip_run_gate.config.loader import RetentionConfig
from ip_run_gate.storage.repository import EventLogStore

logger = logging.getLogger(__name__)


def retention_cutoff(retention: RetentionConfig, now: Optional[datetime] = None) -> datetime:
    """Instant before which records are expired."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(hours=retention.retention_hours)


def sweep_expired(
    store: EventLogStore,
    retention: RetentionConfig,
    now: Optional[datetime] = None
) -> int:
    """Run one retention pass over the store.

    Args:
        store: Event log backend to sweep
        retention: Retention horizon
        now: Reference time (defaults to current UTC time)

    Returns:
        Number of records deleted
    """
    cutoff = retention_cutoff(retention, now)
    logger.info("Starting retention sweep, cutoff %s", cutoff.isoformat())
    deleted = store.sweep(cutoff)
    logger.info("Retention sweep deleted %d records", deleted)
    return deleted
