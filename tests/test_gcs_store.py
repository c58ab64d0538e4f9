"""
Tests for the Google Cloud Storage backend.

The GCS client is mocked; no network access is needed.
"""
import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcs_exceptions

from ip_run_gate.storage.gcs import GCSEventStore
from ip_run_gate.storage.models import Scope, UsageRecord
from ip_run_gate.storage.repository import StorageError

DAY = date(2024, 3, 1)
NOW = datetime(2024, 3, 3, 12, tzinfo=timezone.utc)


def create_blob(name, payload=None, created=None):
    """Create a mock blob."""
    blob = MagicMock()
    blob.name = name
    blob.time_created = created
    if payload is not None:
        blob.download_as_bytes.return_value = json.dumps(payload).encode("utf-8")
    return blob


def record_payload(run_id, hour=9):
    return {"ip": "10.0.0.1", "run_id": run_id, "ts": f"2024-03-01T{hour:02d}:00:00Z"}


@pytest.fixture
def bucket():
    """Mock bucket handed out by a mock client."""
    return MagicMock()


@pytest.fixture
def store(bucket):
    client = MagicMock()
    client.bucket.return_value = bucket
    return GCSEventStore("test-bucket", client=client, max_workers=4)


class TestGCSAppend:
    """Test writes."""

    def test_append_uploads_create_only_blob(self, store, bucket):
        record = UsageRecord(
            address="10.0.0.1",
            timestamp=datetime(2024, 3, 1, 9, tzinfo=timezone.utc),
            run_id="run-1"
        )
        key = store.append(record)

        assert key.startswith("ips/2024-03-01/10.0.0.1/")
        bucket.blob.assert_called_once_with(key)
        blob = bucket.blob.return_value
        args, kwargs = blob.upload_from_string.call_args
        assert json.loads(args[0])["run_id"] == "run-1"
        assert kwargs["if_generation_match"] == 0

    def test_append_retries_on_key_collision(self, store, bucket):
        blob = bucket.blob.return_value
        blob.upload_from_string.side_effect = [gcs_exceptions.PreconditionFailed("exists"), None]
        record = UsageRecord.from_dict(record_payload("run-1"))

        store.append(record)
        assert blob.upload_from_string.call_count == 2

    def test_append_failure_raises_storage_error(self, store, bucket):
        bucket.blob.return_value.upload_from_string.side_effect = RuntimeError("unreachable")
        with pytest.raises(StorageError):
            store.append(UsageRecord.from_dict(record_payload("run-1")))


class TestGCSList:
    """Test scope reads."""

    def test_lists_scope_prefix(self, store, bucket):
        bucket.list_blobs.return_value = [
            create_blob("ips/2024-03-01/10.0.0.1/1-a-1.json", record_payload("a")),
            create_blob("ips/2024-03-01/10.0.0.1/2-b-2.json", record_payload("b", 17)),
        ]
        records = store.list_records(Scope("10.0.0.1", DAY))

        bucket.list_blobs.assert_called_once_with(prefix="ips/2024-03-01/10.0.0.1/")
        assert sorted(r.run_id for r in records) == ["a", "b"]

    def test_unreachable_backend_raises_storage_error(self, store, bucket):
        bucket.list_blobs.side_effect = RuntimeError("network down")
        with pytest.raises(StorageError, match="network down"):
            store.list_records(Scope("10.0.0.1", DAY))

    def test_unreadable_and_vanished_blobs_skipped(self, store, bucket):
        broken = create_blob("ips/2024-03-01/10.0.0.1/2-b-2.json")
        broken.download_as_bytes.return_value = b"not json"
        vanished = create_blob("ips/2024-03-01/10.0.0.1/3-c-3.json")
        vanished.download_as_bytes.side_effect = gcs_exceptions.NotFound("gone")
        bucket.list_blobs.return_value = [
            create_blob("ips/2024-03-01/10.0.0.1/1-a-1.json", record_payload("a")),
            broken,
            vanished,
        ]
        records = store.list_records(Scope("10.0.0.1", DAY))
        assert [r.run_id for r in records] == ["a"]

    def test_count_addresses_uses_prefixes(self, store, bucket):
        iterator = MagicMock()
        iterator.__iter__.return_value = iter([])
        iterator.prefixes = {"ips/2024-03-01/10.0.0.1/", "ips/2024-03-01/10.0.0.2/"}
        bucket.list_blobs.return_value = iterator

        assert store.count_addresses(DAY) == 2
        bucket.list_blobs.assert_called_once_with(prefix="ips/2024-03-01/", delimiter="/")


class TestGCSSweep:
    """Test retention sweeps."""

    def test_deletes_only_expired_blobs(self, store, bucket):
        cutoff = NOW - timedelta(hours=24)
        old = create_blob("ips/2024-03-01/10.0.0.1/1-a-1.json", created=NOW - timedelta(hours=30))
        young = create_blob("ips/2024-03-03/10.0.0.1/2-b-2.json", created=NOW - timedelta(hours=2))
        bucket.list_blobs.return_value = [old, young]

        assert store.sweep(cutoff) == 1
        old.delete.assert_called_once()
        young.delete.assert_not_called()
        bucket.list_blobs.assert_called_once_with(prefix="ips/")

    def test_failed_deletes_are_skipped(self, store, bucket):
        cutoff = NOW - timedelta(hours=24)
        created = NOW - timedelta(hours=48)
        failing = create_blob("ips/a.json", created=created)
        failing.delete.side_effect = RuntimeError("permission denied")
        gone = create_blob("ips/b.json", created=created)
        gone.delete.side_effect = gcs_exceptions.NotFound("gone")
        ok = create_blob("ips/c.json", created=created)
        bucket.list_blobs.return_value = [failing, gone, ok]

        assert store.sweep(cutoff) == 1
        ok.delete.assert_called_once()

    def test_nothing_expired(self, store, bucket):
        bucket.list_blobs.return_value = []
        assert store.sweep(NOW) == 0


class TestGCSConfig:
    """Test construction."""

    def test_bucket_required(self):
        with pytest.raises(ValueError, match="bucket_name"):
            GCSEventStore("")
