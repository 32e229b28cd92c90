"""
Configuration loaders.

App config:    reads config.yaml, resolves env vars for broker secrets.
Recon config:  reads recon.default.json (or override), validates against JSON Schema.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    BrokerCredentials,
    ConnectionConfig,
    JournalConfig,
    ReplicationConfig,
    SchedulerConfig,
    StoreConfig,
    load_config,
)
from config.recon_config import (
    FillsConfig,
    PnlConfig,
    ReconConfig,
    ReconConfigError,
    RiskConfig,
    SyncWindowConfig,
    TimestampConfig,
    load_recon_config,
)

__all__ = [
    # App config (YAML)
    "AlertingConfig",
    "AppConfig",
    "BrokerCredentials",
    "ConnectionConfig",
    "JournalConfig",
    "ReplicationConfig",
    "SchedulerConfig",
    "StoreConfig",
    "load_config",
    # Recon config (JSON + schema)
    "FillsConfig",
    "PnlConfig",
    "ReconConfig",
    "ReconConfigError",
    "RiskConfig",
    "SyncWindowConfig",
    "TimestampConfig",
    "load_recon_config",
]
