"""
Repository contract for the event log.

Every backend stores one object per usage record under a key that
encodes its scope, so concurrent appends never touch the same object.
"""

import random
import re
import time
from datetime import date, datetime
from typing import List, Optional, Protocol

from .models import Scope, UsageRecord

ROOT_PREFIX = "ips"
RECORD_SUFFIX = ".json"
APPEND_ATTEMPTS = 3

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9.:-]")


class StorageError(Exception):
    """Raised when a backend cannot persist a record."""


def safe_key_part(value: str) -> str:
    """Replace characters that are not safe in an object key."""
    return _UNSAFE_KEY_CHARS.sub("_", value)


def scope_prefix(scope: Scope) -> str:
    """Key prefix holding every record of a scope, with trailing slash."""
    return f"{ROOT_PREFIX}/{scope.day_string}/{safe_key_part(scope.address)}/"


def day_prefix(day: date) -> str:
    return f"{ROOT_PREFIX}/{day.isoformat()}/"


def record_key(record: UsageRecord, written_at: Optional[float] = None) -> str:
    """Build a unique object key for a record.

    The file name only has to be unique: write time in milliseconds,
    the run id and a random jitter. It is never parsed back.
    """
    if written_at is None:
        written_at = time.time()
    millis = int(written_at * 1000)
    jitter = random.randrange(1000)
    name = f"{millis}-{safe_key_part(record.run_id)}-{jitter}{RECORD_SUFFIX}"
    return scope_prefix(record.scope) + name


class EventLogStore(Protocol):
    """Append-only persistence of usage records partitioned by scope."""

    def append(self, record: UsageRecord) -> str:
        """Persist one record as its own object.

        Returns:
            The storage key the record was written to

        Raises:
            StorageError: If the backend rejected the write
        """
        ...

    def list_records(self, scope: Scope) -> List[UsageRecord]:
        """Return every record currently visible for a scope, unordered.

        Unreadable or vanished objects are skipped. Raises StorageError when
        the scope itself cannot be listed.
        """
        ...

    def count_addresses(self, day: date) -> int:
        """Count distinct addresses holding at least one record on a day."""
        ...

    def sweep(self, cutoff: datetime) -> int:
        """Delete records written before ``cutoff``.

        Returns:
            Number of records deleted
        """
        ...
