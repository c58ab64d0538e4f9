"""
Data models for storage layer.

Defines the usage record persisted by every backend and the scope key
that partitions it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

METADATA_FIELDS = ("account", "repo", "job", "country", "asn")


def normalize_address(address: str) -> str:
    """Normalize a network address into its scope key form."""
    return address.strip().lower()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted and naive values are read as UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a UTC datetime the way records are persisted."""
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


@dataclass(frozen=True)
class Scope:
    """Quota accounting unit: one address on one UTC day."""
    address: str
    day: date

    @property
    def day_string(self) -> str:
        return self.day.isoformat()


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one observed run from an address.

    Records are only ever appended or removed by retention; nothing
    updates them in place.
    """
    address: str
    timestamp: datetime
    run_id: str
    account: Optional[str] = None
    repo: Optional[str] = None
    job: Optional[str] = None
    country: Optional[str] = None
    asn: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        """Normalize the address and freeze the timestamp to UTC."""
        if not self.address or not str(self.address).strip():
            raise ValueError("address is required and cannot be empty")
        if not self.run_id or not str(self.run_id).strip():
            raise ValueError("run_id is required and cannot be empty")
        object.__setattr__(self, "address", normalize_address(str(self.address)))
        object.__setattr__(self, "run_id", str(self.run_id))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, "timestamp", self.timestamp.astimezone(timezone.utc))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def day(self) -> date:
        """UTC calendar day the record counts against."""
        return self.timestamp.date()

    @property
    def scope(self) -> Scope:
        return Scope(self.address, self.day)

    @property
    def sort_key(self):
        """Canonical ordering identity: timestamp, then run id."""
        return (self.timestamp, self.run_id)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted JSON object."""
        data: Dict[str, Any] = dict(self.extra)
        data["ip"] = self.address
        data["run_id"] = self.run_id
        data["ts"] = format_timestamp(self.timestamp)
        for name in METADATA_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        received_at: Optional[datetime] = None
    ) -> "UsageRecord":
        """Build a record from a persisted object or an ingest payload.

        Args:
            data: Mapping with ``ip``, ``run_id`` and optional ``ts``
            received_at: Timestamp used when ``ts`` is absent

        Raises:
            ValueError: If required fields are missing or ``ts`` is invalid
        """
        address = data.get("ip")
        run_id = data.get("run_id")
        if not address or not run_id:
            raise ValueError("Missing required fields: ip, run_id")

        ts = data.get("ts")
        if ts:
            timestamp = parse_timestamp(ts)
        else:
            timestamp = received_at or datetime.now(timezone.utc)

        metadata = {}
        for name in METADATA_FIELDS:
            value = data.get(name)
            metadata[name] = None if value is None else str(value)

        known = {"ip", "run_id", "ts", *METADATA_FIELDS}
        extra = {key: value for key, value in data.items() if key not in known}

        return cls(
            address=str(address),
            timestamp=timestamp,
            run_id=str(run_id),
            extra=extra,
            **metadata
        )
