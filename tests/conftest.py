"""Shared fixtures for risk controller tests.

Builders (make_position, make_metrics, FakeGateway, etc.) are in tests/helpers.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from src.connectors.paper_broker import PaperBroker
from src.market.snapshot import InstrumentMetrics
from src.risk.models import ExposureSnapshot, RiskConfig
from tests.helpers import make_exposure, make_metrics


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    """Temporary database path; each test gets an isolated SQLite file."""
    return tmp_path / "test.db"


@pytest.fixture()
def config() -> RiskConfig:
    """Default config: 1% risk, 200pt stop, trailing 150/200, break-even 100."""
    return RiskConfig()


@pytest.fixture()
def metrics() -> InstrumentMetrics:
    return make_metrics()


@pytest.fixture()
def exposure() -> ExposureSnapshot:
    """Balance 10,000, no drawdown."""
    return make_exposure()


@pytest.fixture()
def broker() -> PaperBroker:
    """Paper broker quoting 2000.00 / 2000.20 with a 10,000 balance."""
    b = PaperBroker(symbol="XAUUSD", balance=10_000.0)
    b.update_price(2000.00, 2000.20)
    return b
