"""
Local filesystem backend for the event log.

Used on single-VM deployments and in tests. Each record lands in its own
JSON file under ``<data_dir>/ips/<day>/<address>/``.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Union

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


class LocalEventStore:
    """Event log stored as one JSON file per record on local disk."""

    def __init__(self, data_dir: Union[str, Path] = "./data"):
        """Initialize the store.

        Args:
            data_dir: Root directory; records live under ``ips/`` inside it
        """
        self.data_dir = Path(data_dir)

    @property
    def root(self) -> Path:
        return self.data_dir / ROOT_PREFIX

    def _resolve(self, key: str) -> Path:
        return self.data_dir.joinpath(*key.strip("/").split("/"))

    def append(self, record: UsageRecord) -> str:
        for _ in range(APPEND_ATTEMPTS):
            key = record_key(record)
            path = self._resolve(key)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                # Exclusive create: never overwrite another record
                with open(path, "x", encoding="utf-8") as f:
                    json.dump(record.to_dict(), f)
                return key
            except FileExistsError:
                continue
            except FileNotFoundError:
                # Directory pruned by a concurrent sweep; recreate it
                continue
            except OSError as e:
                raise StorageError(f"Failed to write record to {path}: {e}") from e
        raise StorageError(f"Could not find a free key for run {record.run_id}")

    def list_records(self, scope: Scope) -> List[UsageRecord]:
        directory = self._resolve(scope_prefix(scope))
        if not directory.is_dir():
            return []

        try:
            paths = [p for p in directory.iterdir() if p.name.endswith(RECORD_SUFFIX)]
        except OSError as e:
            raise StorageError(f"Failed to list {directory}: {e}") from e

        records = []
        for path in paths:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    records.append(UsageRecord.from_dict(json.load(f)))
            except FileNotFoundError:
                # Removed by a concurrent sweep
                continue
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable record %s: %s", path, e)
        return records

    def count_addresses(self, day: date) -> int:
        directory = self._resolve(day_prefix(day))
        if not directory.is_dir():
            return 0
        try:
            return sum(
                1 for child in directory.iterdir()
                if child.is_dir() and any(child.glob(f"*{RECORD_SUFFIX}"))
            )
        except OSError as e:
            logger.error("Error counting addresses in %s: %s", directory, e)
            return 0

    def sweep(self, cutoff: datetime) -> int:
        """Delete expired files, then prune directories left empty.

        Age comes from the file modification time. The ``ips`` root
        itself is never removed.
        """
        if not self.root.is_dir():
            return 0
        cutoff_ts = cutoff.astimezone(timezone.utc).timestamp()
        return self._sweep_dir(self.root, cutoff_ts)

    def _sweep_dir(self, directory: Path, cutoff_ts: float) -> int:
        deleted = 0
        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            logger.warning("Cannot list %s during cleanup: %s", directory, e)
            return 0

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    deleted += self._sweep_dir(path, cutoff_ts)
                    if not any(path.iterdir()):
                        path.rmdir()
                        logger.debug("Removed empty directory %s", path)
                elif entry.stat(follow_symlinks=False).st_mtime < cutoff_ts:
                    path.unlink()
                    deleted += 1
                    logger.info("Deleted expired local file: %s", path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to clean up %s: %s", path, e)
        return deleted
