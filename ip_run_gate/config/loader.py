"""
Configuration management and loading.

Builds one immutable GateConfig at process start, either from a YAML
file or from environment variables.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


class StorageBackend(Enum):
    """Where the event log lives."""
    GCS = "gcs"
    LOCAL = "local"


@dataclass(frozen=True)
class PolicyConfig:
    """Per-address launch policy."""
    max_runs_per_day: int = 3
    min_gap_hours: int = 7

    def __post_init__(self):
        """Validate policy thresholds."""
        if isinstance(self.max_runs_per_day, bool) or not isinstance(self.max_runs_per_day, int):
            raise ValueError("max_runs_per_day must be an integer")
        if isinstance(self.min_gap_hours, bool) or not isinstance(self.min_gap_hours, int):
            raise ValueError("min_gap_hours must be an integer")
        if self.max_runs_per_day < 1:
            raise ValueError("max_runs_per_day must be >= 1")
        if self.min_gap_hours < 0:
            raise ValueError("min_gap_hours must be >= 0")


@dataclass(frozen=True)
class StorageConfig:
    """Event log backend selection."""
    backend: StorageBackend = StorageBackend.LOCAL
    local_data_dir: str = "./data"
    bucket_name: Optional[str] = None
    project_id: Optional[str] = None

    def __post_init__(self):
        if self.backend == StorageBackend.GCS and not self.bucket_name:
            raise ValueError("bucket_name is required when backend is 'gcs'")


@dataclass(frozen=True)
class AuthConfig:
    """Shared secrets for request authentication."""
    token: str
    hmac_secret: Optional[str] = None
    require_signature: bool = False

    def __post_init__(self):
        if not self.token:
            raise ValueError("auth token is required")
        if self.require_signature and not self.hmac_secret:
            raise ValueError("require_signature needs an hmac_secret")


@dataclass(frozen=True)
class RetentionConfig:
    """How long records are kept before a sweep removes them."""
    retention_hours: int = 24

    def __post_init__(self):
        if isinstance(self.retention_hours, bool) or not isinstance(self.retention_hours, int):
            raise ValueError("retention_hours must be an integer")
        if self.retention_hours < 1:
            raise ValueError("retention_hours must be >= 1")


@dataclass(frozen=True)
class SinkConfig:
    """Best-effort outbound destinations."""
    external_sink_url: Optional[str] = None
    external_sink_token: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    timeout_seconds: float = 5.0


@dataclass(frozen=True)
class WarehouseConfig:
    """BigQuery streaming sink."""
    enabled: bool = False
    project_id: Optional[str] = None
    dataset_id: str = "ip_data"
    table_id: str = "ip_observations"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class GateConfig:
    """Complete service configuration."""
    auth: AuthConfig
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    sinks: SinkConfig = field(default_factory=SinkConfig)
    warehouse: WarehouseConfig = field(default_factory=WarehouseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


_SECTION_KEYS = {
    'policy': {'max_runs_per_day', 'min_gap_hours'},
    'storage': {'backend', 'local_data_dir', 'bucket_name', 'project_id'},
    'auth': {'token', 'hmac_secret', 'require_signature'},
    'retention': {'retention_hours'},
    'sinks': {'external_sink_url', 'external_sink_token', 'discord_webhook_url', 'timeout_seconds'},
    'warehouse': {'enabled', 'project_id', 'dataset_id', 'table_id'},
    'server': {'host', 'port'},
}


def load_gate_config(path: str) -> GateConfig:
    """Load and validate gate configuration from a YAML file.

    Strict validation: unknown sections or keys are rejected rather than
    silently ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GateConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gate config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'auth' not in raw_config:
        raise ValueError("Missing required 'auth' section")

    sections = {}
    for name, allowed in _SECTION_KEYS.items():
        section = raw_config.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        unknown = set(section.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown {name} keys: {unknown}")
        sections[name] = section

    return _build_config(sections)


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> GateConfig:
    """Build gate configuration from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Raises:
        ValueError: If a value is missing or malformed
    """
    env = os.environ if environ is None else environ

    def get(name: str) -> Optional[str]:
        value = env.get(name)
        return value if value not in (None, "") else None

    backend = get('STORAGE_TYPE') or StorageBackend.LOCAL.value
    sections: Dict[str, Dict[str, Any]] = {
        'policy': {
            'max_runs_per_day': _parse_int(get('MAX_RUNS_PER_IP_PER_DAY'), 'MAX_RUNS_PER_IP_PER_DAY', 3),
            'min_gap_hours': _parse_int(get('MIN_GAP_HOURS_PER_IP'), 'MIN_GAP_HOURS_PER_IP', 7),
        },
        'storage': {
            'backend': backend,
            'local_data_dir': get('LOCAL_DATA_DIR') or './data',
            'bucket_name': get('BUCKET_NAME'),
            'project_id': get('PROJECT_ID'),
        },
        'auth': {
            'token': get('COLLECTOR_TOKEN'),
            'hmac_secret': get('HMAC_SECRET'),
            'require_signature': _parse_bool(get('REQUIRE_SIGNATURE'), False),
        },
        'retention': {
            'retention_hours': _parse_int(get('RETENTION_HOURS'), 'RETENTION_HOURS', 24),
        },
        'sinks': {
            'external_sink_url': get('EXTERNAL_SINK_URL'),
            'external_sink_token': get('EXTERNAL_SINK_TOKEN'),
            'discord_webhook_url': get('DISCORD_WEBHOOK_URL'),
        },
        'warehouse': {
            # BigQuery rides along with the cloud backend unless told otherwise
            'enabled': _parse_bool(get('WAREHOUSE_ENABLED'), backend == StorageBackend.GCS.value),
            'project_id': get('PROJECT_ID'),
            'dataset_id': get('DATASET_ID') or 'ip_data',
            'table_id': get('TABLE_ID') or 'ip_observations',
        },
        'server': {
            'port': _parse_int(get('PORT'), 'PORT', 8080),
        },
    }
    return _build_config(sections)


def _build_config(sections: Dict[str, Dict[str, Any]]) -> GateConfig:
    auth = sections['auth']
    if not auth.get('token'):
        raise ValueError("Missing required auth token")

    storage = dict(sections.get('storage', {}))
    backend_name = storage.pop('backend', StorageBackend.LOCAL.value)
    try:
        backend = StorageBackend(str(backend_name).lower())
    except ValueError:
        valid = [b.value for b in StorageBackend]
        raise ValueError(f"storage backend must be one of: {valid}")

    return GateConfig(
        auth=AuthConfig(**_drop_none(auth)),
        policy=PolicyConfig(**_drop_none(sections.get('policy', {}))),
        storage=StorageConfig(backend=backend, **_drop_none(storage)),
        retention=RetentionConfig(**_drop_none(sections.get('retention', {}))),
        sinks=SinkConfig(**_drop_none(sections.get('sinks', {}))),
        warehouse=WarehouseConfig(**_drop_none(sections.get('warehouse', {}))),
        server=ServerConfig(**_drop_none(sections.get('server', {}))),
    )


def _drop_none(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _parse_int(value: Optional[str], name: str, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
