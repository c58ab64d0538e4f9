"""
Backend selection for the event log.
"""

from ip_run_gate.config.loader import StorageBackend, StorageConfig

from .repository import EventLogStore


def get_event_store(config: StorageConfig) -> EventLogStore:
    """Build the event log backend named by the storage configuration.

    Args:
        config: Storage section of the gate configuration

    Returns:
        A local or GCS backed store
    """
    if config.backend == StorageBackend.LOCAL:
        from .local import LocalEventStore
        return LocalEventStore(config.local_data_dir)

    from .gcs import GCSEventStore
    return GCSEventStore(config.bucket_name, project=config.project_id)
