"""Pytest fixtures: fill builders, temp stores and configs for deterministic tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from config.loader import BrokerCredentials, ConnectionConfig
from config.recon_config import ReconConfig, load_recon_config
from data.trade_store import SQLiteTradeStore
from recon_core.contracts import Fill, Side

BASE_TS = datetime(2024, 3, 4, 14, 30, 0, tzinfo=timezone.utc)


def _ts(minutes: int = 0) -> datetime:
    return BASE_TS + timedelta(minutes=minutes)


@pytest.fixture
def ts() -> Callable[[int], datetime]:
    """ts(n) -> BASE_TS + n minutes."""
    return _ts


@pytest.fixture
def make_fill() -> Callable[..., Fill]:
    """Build a Fill with sensible defaults: make_fill("1", "BUY", 10, 100.0, minute=0)."""

    def _make(
        fill_id: str,
        side: str,
        quantity: float,
        price: float,
        minute: int = 0,
        *,
        symbol: str = "MNQ",
        account_id: str = "ACC-1",
        realized_pnl: float | None = None,
        commission: float = 0.0,
        status: str = "FILLED",
    ) -> Fill:
        return Fill(
            id=fill_id,
            account_id=account_id,
            symbol=symbol,
            side=Side(side),
            quantity=quantity,
            price=price,
            timestamp=_ts(minute),
            realized_pnl=realized_pnl,
            commission=commission,
            status=status,
        )

    return _make


@pytest.fixture
def recon_cfg() -> ReconConfig:
    return load_recon_config()


@pytest.fixture
def store(tmp_path: Path) -> SQLiteTradeStore:
    return SQLiteTradeStore(tmp_path / "trades.db")


@pytest.fixture
def connection() -> ConnectionConfig:
    return ConnectionConfig(
        id="px-main",
        broker="projectx",
        account_id="ACC-1",
        fixed_risk_pct=1.0,
        credentials=BrokerCredentials(username="trader", api_key="key"),
    )
