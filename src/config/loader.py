"""
Config loader: YAML file -> frozen dataclass tree.

Broker secrets resolved from environment variables (PROJECTX_USERNAME,
PROJECTX_API_KEY, APCA_API_KEY_ID, APCA_API_SECRET_KEY).
Config file holds only non-secret values.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

SUPPORTED_BROKERS = ("projectx", "alpaca")


@dataclass(frozen=True)
class BrokerCredentials:
    username: str = ""
    api_key: str = ""
    api_secret: str = ""


@dataclass(frozen=True)
class ConnectionConfig:
    """One brokerage account to keep in sync."""
    id: str
    broker: str
    account_id: str
    fixed_risk_pct: float = 1.0
    auto_sync: bool = True
    base_url: str = ""
    service: str = ""
    paper: bool = True
    credentials: BrokerCredentials = BrokerCredentials()


@dataclass(frozen=True)
class StoreConfig:
    path: str = "data/trades.db"


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class ReplicationConfig:
    enabled: bool = False
    webhook_url: str = ""
    timeout_seconds: float = 5.0


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: int = 300


@dataclass(frozen=True)
class AppConfig:
    store: StoreConfig
    journal: JournalConfig
    alerting: AlertingConfig = AlertingConfig()
    replication: ReplicationConfig = ReplicationConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    connections: tuple[ConnectionConfig, ...] = field(default_factory=tuple)
    recon_config_path: str = ""

    def connection(self, connection_id: str) -> ConnectionConfig:
        for conn in self.connections:
            if conn.id == connection_id:
                return conn
        raise KeyError(f"Unknown connection: {connection_id}")

    @property
    def auto_sync_connections(self) -> tuple[ConnectionConfig, ...]:
        return tuple(c for c in self.connections if c.auto_sync)


def _credentials_for(broker: str) -> BrokerCredentials:
    if broker == "projectx":
        return BrokerCredentials(
            username=os.environ.get("PROJECTX_USERNAME", ""),
            api_key=os.environ.get("PROJECTX_API_KEY", ""),
        )
    return BrokerCredentials(
        api_key=os.environ.get("APCA_API_KEY_ID", ""),
        api_secret=os.environ.get("APCA_API_SECRET_KEY", ""),
    )


def _parse_connection(raw: object, index: int) -> ConnectionConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"connections[{index}] must be a mapping, got {type(raw).__name__}")
    for required in ("id", "broker", "account_id"):
        if not raw.get(required):
            raise ValueError(f"connections[{index}] is missing '{required}'")
    broker = str(raw["broker"]).lower()
    if broker not in SUPPORTED_BROKERS:
        raise ValueError(
            f"connections[{index}] has unsupported broker '{broker}' (expected one of {', '.join(SUPPORTED_BROKERS)})"
        )
    fixed_risk_pct = float(raw.get("fixed_risk_pct", 1.0))
    if fixed_risk_pct <= 0:
        raise ValueError(f"connections[{index}] fixed_risk_pct must be positive")
    return ConnectionConfig(
        id=str(raw["id"]),
        broker=broker,
        account_id=str(raw["account_id"]),
        fixed_risk_pct=fixed_risk_pct,
        auto_sync=bool(raw.get("auto_sync", True)),
        base_url=str(raw.get("base_url", "")),
        service=str(raw.get("service", "")),
        paper=bool(raw.get("paper", True)),
        credentials=_credentials_for(broker),
    )


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    Broker secrets are resolved from environment variables:
      - PROJECTX_USERNAME / PROJECTX_API_KEY for projectx connections
      - APCA_API_KEY_ID / APCA_API_SECRET_KEY for alpaca connections
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    s_raw = raw.get("store", {})
    store_cfg = StoreConfig(path=s_raw.get("path", "data/trades.db"))

    j_raw = raw.get("journal", {})
    j_cfg = JournalConfig(
        path=j_raw.get("path", "data/journal.jsonl"),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    a_raw = raw.get("alerting", {})
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=str(a_raw.get("webhook_url", "")),
    )

    r_raw = raw.get("replication", {})
    r_cfg = ReplicationConfig(
        enabled=bool(r_raw.get("enabled", False)),
        webhook_url=str(r_raw.get("webhook_url", "")),
        timeout_seconds=float(r_raw.get("timeout_seconds", 5.0)),
    )

    sch_raw = raw.get("scheduler", {})
    sch_cfg = SchedulerConfig(interval_seconds=int(sch_raw.get("interval_seconds", 300)))

    conns_raw = raw.get("connections", [])
    if not isinstance(conns_raw, list):
        raise ValueError("connections must be a list")
    connections = tuple(_parse_connection(c, i) for i, c in enumerate(conns_raw))
    ids = [c.id for c in connections]
    if len(ids) != len(set(ids)):
        raise ValueError("connection ids must be unique")

    return AppConfig(
        store=store_cfg,
        journal=j_cfg,
        alerting=a_cfg,
        replication=r_cfg,
        scheduler=sch_cfg,
        connections=connections,
        recon_config_path=str(raw.get("recon_config", "")),
    )
