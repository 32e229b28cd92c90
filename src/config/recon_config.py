"""
Reconciliation config loader: JSON file -> frozen dataclass tree, validated against JSON Schema.

Default values: docs/config/recon.default.json
Schema:         docs/config/recon_config.schema.json

Per-broker overrides: place a partial JSON file named ``recon.{BROKER}.json``
next to the default config (e.g. ``docs/config/recon.PROJECTX.json``). Only
the keys you want to override need to be present; they are deep-merged on
top of the base config before schema validation.

Usage:
    from config.recon_config import load_recon_config
    cfg = load_recon_config()                      # loads default
    cfg = load_recon_config(broker="projectx")     # merges recon.PROJECTX.json if present
    cfg.sync.overlap_days  # -> 7
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import jsonschema

from recon_core.contracts import DEFAULT_VOID_STATUSES

logger = logging.getLogger("recon.config")

# ---------------------------------------------------------------------------
# Project root detection (walk up from this file to find pyproject.toml)
# ---------------------------------------------------------------------------


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml; fall back to CWD when installed."""
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_CONFIG_PATH = _PROJECT_ROOT / "docs" / "config" / "recon.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "recon_config.schema.json"


# ---------------------------------------------------------------------------
# Frozen dataclass tree (mirrors recon.default.json)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncWindowConfig:
    first_sync_days: int = 30
    overlap_days: int = 7
    lock_timeout_seconds: float = 0.0
    max_workers: int = 4

    @property
    def first_sync_lookback(self) -> timedelta:
        return timedelta(days=self.first_sync_days)

    @property
    def overlap(self) -> timedelta:
        return timedelta(days=self.overlap_days)


@dataclass(frozen=True)
class TimestampConfig:
    max_future_skew_seconds: int = 86_400

    @property
    def max_future_skew(self) -> timedelta:
        return timedelta(seconds=self.max_future_skew_seconds)


@dataclass(frozen=True)
class PnlConfig:
    divergence_threshold: float = 1.0
    infer_prices: bool = True
    price_decimals: int = 2


@dataclass(frozen=True)
class FillsConfig:
    void_statuses: frozenset[str] = DEFAULT_VOID_STATUSES


@dataclass(frozen=True)
class RiskConfig:
    default_fixed_risk_pct: float = 1.0


@dataclass(frozen=True)
class ReconConfig:
    """Top-level reconciliation configuration."""
    version: str
    sync: SyncWindowConfig = SyncWindowConfig()
    timestamps: TimestampConfig = TimestampConfig()
    pnl: PnlConfig = PnlConfig()
    fills: FillsConfig = FillsConfig()
    risk: RiskConfig = RiskConfig()


# ---------------------------------------------------------------------------
# Deep merge for per-broker overrides
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overrides* into a copy of *base*; override keys win."""
    merged = dict(base)
    for key, val in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class ReconConfigError(Exception):
    """Raised when reconciliation config loading or validation fails."""


def _read_json(path: Path, label: str) -> dict[str, Any]:
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise ReconConfigError(f"{label} {path.name} is not valid JSON: {exc}") from exc


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    if not schema_path.exists():
        raise ReconConfigError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ReconConfigError(f"Recon config validation failed: {exc.message}") from exc


def _build_config(data: dict[str, Any]) -> ReconConfig:
    """Convert a validated dict into the frozen dataclass tree."""
    sync_raw = data.get("sync", {})
    ts_raw = data.get("timestamps", {})
    pnl_raw = data.get("pnl", {})
    fills_raw = data.get("fills", {})
    risk_raw = data.get("risk", {})

    statuses = fills_raw.get("void_statuses")
    void_statuses = (
        frozenset(s.strip().upper() for s in statuses) if statuses is not None else DEFAULT_VOID_STATUSES
    )

    return ReconConfig(
        version=data["version"],
        sync=SyncWindowConfig(
            first_sync_days=sync_raw.get("first_sync_days", 30),
            overlap_days=sync_raw.get("overlap_days", 7),
            lock_timeout_seconds=float(sync_raw.get("lock_timeout_seconds", 0.0)),
            max_workers=sync_raw.get("max_workers", 4),
        ),
        timestamps=TimestampConfig(
            max_future_skew_seconds=ts_raw.get("max_future_skew_seconds", 86_400),
        ),
        pnl=PnlConfig(
            divergence_threshold=float(pnl_raw.get("divergence_threshold", 1.0)),
            infer_prices=pnl_raw.get("infer_prices", True),
            price_decimals=pnl_raw.get("price_decimals", 2),
        ),
        fills=FillsConfig(void_statuses=void_statuses),
        risk=RiskConfig(
            default_fixed_risk_pct=float(risk_raw.get("default_fixed_risk_pct", 1.0)),
        ),
    )


def load_recon_config(
    config_path: str | Path | None = None,
    schema_path: str | Path | None = None,
    broker: str | None = None,
) -> ReconConfig:
    """Load and validate reconciliation configuration.

    Parameters
    ----------
    config_path:
        Path to a JSON config file.  Defaults to ``docs/config/recon.default.json``.
    schema_path:
        Path to the JSON Schema file.  Defaults to ``docs/config/recon_config.schema.json``.
    broker:
        Optional broker type.  When provided, ``recon.{BROKER}.json`` in the
        same directory as the base config is deep-merged on top of it before
        validation.  A missing override file is not an error.

    Raises
    ------
    ReconConfigError
        If the file is missing, unparseable, or fails schema validation.
    """
    cfg_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    if not cfg_path.exists():
        raise ReconConfigError(f"Recon config file not found: {cfg_path}")

    data = _read_json(cfg_path, "Recon config")

    if broker:
        override_path = cfg_path.parent / f"recon.{broker.upper()}.json"
        if override_path.exists():
            data = _deep_merge(data, _read_json(override_path, "Per-broker config"))
            logger.info("Loaded per-broker config: %s", override_path.name)
        else:
            logger.debug("No per-broker config at %s, using defaults", override_path)

    _validate_schema(data, sch_path)

    return _build_config(data)
