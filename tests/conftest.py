"""
Pytest configuration and shared fixtures.
"""
import os

# Must be set before any tradesync import reads configuration.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("METAAPI_TOKEN", None)

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradesync.config.config import Config, DataConfig, GatewayConfig, MonitoringConfig, reset_config
from tradesync.storage.db import close_db, init_db

TEST_TOKEN = "test-token"


@pytest.fixture(autouse=True)
def _fresh_database():
    """Every test gets its own empty in-memory SQLite database."""
    reset_config()
    db = init_db("sqlite://")
    yield db
    close_db()
    reset_config()


@pytest.fixture
def config() -> Config:
    return Config(
        gateway=GatewayConfig(api_token=TEST_TOKEN),
        data=DataConfig(database_url="sqlite://"),
        monitoring=MonitoringConfig(log_file=None),
        environment="test",
    )


def account_state(lifecycle="DEPLOYED", connectivity="CONNECTED", region="london", account_id="acc-1"):
    return {"_id": account_id, "state": lifecycle, "connectionStatus": connectivity, "region": region}


def position(position_id="1001", symbol="EURUSD", type_="POSITION_TYPE_BUY", volume=1.0,
             open_price=1.1, profit=25.5, time="2024-05-01T08:00:00.000Z"):
    return {
        "id": position_id,
        "symbol": symbol,
        "type": type_,
        "volume": volume,
        "openPrice": open_price,
        "profit": profit,
        "time": time,
    }


def deal(deal_id="2001", symbol="GBPUSD", type_="DEAL_TYPE_SELL", entry_type="DEAL_ENTRY_OUT",
         volume=0.5, price=1.25, profit=-10.0, time="2024-05-02T10:30:00.000Z"):
    return {
        "id": deal_id,
        "symbol": symbol,
        "type": type_,
        "entryType": entry_type,
        "volume": volume,
        "price": price,
        "profit": profit,
        "time": time,
        "positionId": "9" + deal_id,
    }


@pytest.fixture
def make_gateway():
    """
    Factory for a fake GatewayClient.

    Each endpoint is an AsyncMock returning raw JSON-like payloads, so the real
    decoders run on them.
    """

    def _make(
        state=None,
        account_information=None,
        positions=None,
        deals=None,
        created=None,
        configured=True,
    ):
        client = MagicMock()
        client.config = GatewayConfig(api_token=TEST_TOKEN if configured else None)
        client.is_configured = configured
        client.create_account = AsyncMock(return_value=created if created is not None else {"id": "acc-1"})
        client.deploy_account = AsyncMock(return_value=None)
        client.get_account_state = AsyncMock(return_value=state if state is not None else account_state())
        client.get_account_information = AsyncMock(
            return_value=account_information
            if account_information is not None
            else {"equity": 10250.0, "balance": 10000.0, "currency": "USD"}
        )
        client.get_positions = AsyncMock(return_value=positions if positions is not None else [])
        client.get_history_deals = AsyncMock(return_value=deals if deals is not None else [])
        return client

    return _make


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def payloads():
    """Builders for raw gateway payloads."""
    return SimpleNamespace(account_state=account_state, position=position, deal=deal)
