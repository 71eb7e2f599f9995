"""Test configuration and fixtures."""

from datetime import datetime, timedelta

import pytest
import pytz
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from costbasis.config import EngineConfig
from costbasis.db.models import Wallet, WalletSetting, Transaction, PriceQuote  # noqa: F401  (registers tables)


@pytest.fixture(name="session")
def session_fixture():
    """Create in-memory SQLite test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="config")
def config_fixture():
    """Default engine config, independent of the environment."""
    return EngineConfig()


@pytest.fixture(name="make_event")
def make_event_fixture():
    """
    Build raw event dicts on a minute clock.

    Each call advances one minute unless `at` (minutes offset) is given.
    """
    start = datetime(2025, 1, 2, 12, 0, 0, tzinfo=pytz.UTC)
    counter = {"n": 0}

    def _make(action, ticker, quantity, price=None, at=None, **extra):
        offset = at if at is not None else counter["n"]
        counter["n"] += 1
        raw = {
            "id": extra.pop("id", f"E{counter['n']}"),
            "date": start + timedelta(minutes=offset),
            "action": action,
            "ticker": ticker,
            "quantity": quantity,
        }
        if price is not None:
            raw["price"] = price
        raw.update(extra)
        return raw

    return _make


@pytest.fixture(name="btc_lifo_events")
def btc_lifo_events_fixture(make_event):
    """BUY 1 BTC @ 50,000 (fee 10), then SELL 0.4 @ 60,000 (fee 5)."""
    return [
        make_event("BUY", "BTC", 1.0, 50_000, fees=10, fees_currency="USDT"),
        make_event("SELL", "BTC", 0.4, 60_000, fees=5, fees_currency="USDT"),
    ]
