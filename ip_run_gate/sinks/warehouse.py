"""
BigQuery sink for ingested observations.

Streaming inserts only; the warehouse is an analytical copy and never
feeds back into gate decisions.
"""

import logging
from typing import Any, Dict, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import bigquery

from ip_run_gate.storage.models import UsageRecord

logger = logging.getLogger(__name__)


def record_to_row(record: UsageRecord) -> Dict[str, Any]:
    """Map a usage record onto the observation table columns."""
    return {
        "account": record.account,
        "repo": record.repo,
        "run_id": record.run_id,
        "job": record.job,
        "ip": record.address,
        # DATETIME column: naive UTC wall clock
        "ts": record.timestamp.replace(tzinfo=None).isoformat(),
        "country": record.country,
        "asn": record.asn,
    }


class WarehouseSink:
    """Streams usage records into a BigQuery table."""

    def __init__(
        self,
        dataset_id: str,
        table_id: str,
        project: Optional[str] = None,
        client: Optional[bigquery.Client] = None
    ):
        self.dataset_id = dataset_id
        self.table_id = table_id
        self.project = project
        self._client = client

    def _get_client(self) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=self.project)
        return self._client

    @property
    def table_ref(self) -> str:
        client = self._get_client()
        return f"{client.project}.{self.dataset_id}.{self.table_id}"

    def insert(self, record: UsageRecord) -> bool:
        """Insert one row, returning whether BigQuery accepted it.

        A missing table is treated as "warehouse not provisioned" and
        skipped without logging.
        """
        try:
            errors = self._get_client().insert_rows_json(self.table_ref, [record_to_row(record)])
        except gcp_exceptions.NotFound:
            return False
        except Exception as e:
            logger.error("BigQuery insert error: %s", e)
            return False

        if errors:
            logger.error("BigQuery insert error: %s", errors)
            return False
        return True
