"""
Google Cloud Storage backend for the event log.

Uses Application Default Credentials. Each record is a separate blob, so
writers never contend; reads list a scope prefix and download the blobs
in parallel with a fixed fan-out.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import List, Optional

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from .models import Scope, UsageRecord
from .repository import (
    APPEND_ATTEMPTS,
    RECORD_SUFFIX,
    ROOT_PREFIX,
    StorageError,
    day_prefix,
    record_key,
    scope_prefix,
)

logger = logging.getLogger(__name__)

READ_CONCURRENCY = 50


class GCSEventStore:
    """Event log stored as one blob per record in a GCS bucket."""

    def __init__(
        self,
        bucket_name: str,
        project: Optional[str] = None,
        client: Optional[storage.Client] = None,
        max_workers: int = READ_CONCURRENCY
    ):
        """Initialize the store.

        Args:
            bucket_name: Bucket holding the ``ips/`` tree
            project: Optional GCP project ID (usually auto-detected)
            client: Pre-built client; created lazily when omitted
            max_workers: Parallel download/delete limit
        """
        if not bucket_name:
            raise ValueError("bucket_name is required for the gcs backend")
        self.bucket_name = bucket_name
        self.project = project
        self.max_workers = max_workers
        self._client = client
        self._bucket = None

    def _get_bucket(self):
        """Lazy-load client and bucket handle."""
        if self._bucket is None:
            if self._client is None:
                self._client = storage.Client(project=self.project)
            self._bucket = self._client.bucket(self.bucket_name)
        return self._bucket

    def append(self, record: UsageRecord) -> str:
        content = json.dumps(record.to_dict())
        for _ in range(APPEND_ATTEMPTS):
            key = record_key(record)
            try:
                blob = self._get_bucket().blob(key)
                # Generation 0 means create-only
                blob.upload_from_string(
                    content,
                    content_type="application/json",
                    if_generation_match=0,
                )
                return key
            except gcs_exceptions.PreconditionFailed:
                continue
            except Exception as e:
                raise StorageError(f"Failed to write record to gs://{self.bucket_name}/{key}: {e}") from e
        raise StorageError(f"Could not find a free key for run {record.run_id}")

    def _download(self, blob) -> Optional[UsageRecord]:
        try:
            return UsageRecord.from_dict(json.loads(blob.download_as_bytes()))
        except gcs_exceptions.NotFound:
            return None
        except Exception as e:
            logger.warning("Skipping unreadable record gs://%s/%s: %s", self.bucket_name, blob.name, e)
            return None

    def list_records(self, scope: Scope) -> List[UsageRecord]:
        try:
            bucket = self._get_bucket()
            blobs = [
                blob for blob in bucket.list_blobs(prefix=scope_prefix(scope))
                if blob.name.endswith(RECORD_SUFFIX)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list gs://{self.bucket_name}/{scope_prefix(scope)}: {e}") from e

        if not blobs:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(blobs))) as pool:
            results = list(pool.map(self._download, blobs))
        return [record for record in results if record is not None]

    def count_addresses(self, day: date) -> int:
        try:
            iterator = self._get_bucket().list_blobs(prefix=day_prefix(day), delimiter="/")
            # Prefixes are only populated once the pages are consumed
            for _ in iterator:
                pass
            return len(iterator.prefixes)
        except Exception as e:
            logger.error("Error counting addresses in GCS: %s", e)
            return 0

    def _delete(self, blob) -> bool:
        try:
            blob.delete()
            return True
        except gcs_exceptions.NotFound:
            return False
        except Exception as e:
            logger.warning("Failed to delete gs://%s/%s: %s", self.bucket_name, blob.name, e)
            return False

    def sweep(self, cutoff: datetime) -> int:
        """Delete every blob under ``ips/`` created before ``cutoff``.

        GCS has no real directories, so nothing else needs pruning.
        """
        bucket = self._get_bucket()
        expired = [
            blob for blob in bucket.list_blobs(prefix=f"{ROOT_PREFIX}/")
            if blob.time_created is not None and blob.time_created < cutoff
        ]
        if not expired:
            return 0

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(expired))) as pool:
            deleted = sum(pool.map(self._delete, expired))
        logger.info("Deleted %d expired records from gs://%s", deleted, self.bucket_name)
        return deleted
