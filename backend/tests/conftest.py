"""Shared fixtures for Lighter dashboard tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

import models.database as database
from models.analysis import CSVTrade
from models.lighter import Trade
from services.ws_feeds import FeedStats


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory(tmp_path, monkeypatch):
    """Session factory bound to a fresh SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_engine", engine)
    monkeypatch.setattr(database, "AsyncSessionLocal", factory)
    await database.init_database(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Raw feed payload fixtures (mimicking Lighter WebSocket frames)
# ---------------------------------------------------------------------------


WALLET = "0x1234567890abcdef1234567890abcdef12345678"


@pytest.fixture
def wallet():
    return WALLET


@pytest.fixture
def raw_user_stats():
    return {
        "type": "update/user_stats",
        "channel": "user_stats:42",
        "stats": {
            "collateral": "1000.0",
            "portfolio_value": "1250.5",
            "leverage": "3.2",
            "available_balance": "400",
            "margin_usage": "0.65",
            "buying_power": "2000",
        },
    }


@pytest.fixture
def raw_positions():
    return {
        "type": "update/account_all_positions",
        "channel": "account_all_positions:42",
        "positions": {
            "0": {
                "market_id": 0,
                "symbol": "ETH",
                "sign": 1,
                "position": "2.0",
                "avg_entry_price": "3800",
                "position_value": "7800",
                "unrealized_pnl": "200",
                "realized_pnl": "0",
                "liquidation_price": "3100",
                "initial_margin_fraction": "10",
                "allocated_margin": "0",
                "margin_mode": 0,
            },
            "1": {
                "market_id": 1,
                "symbol": "BTC",
                "sign": -1,
                "position": "0",
                "avg_entry_price": "0",
                "position_value": "0",
                "unrealized_pnl": "0",
                "realized_pnl": "0",
                "liquidation_price": "0",
                "initial_margin_fraction": "0",
                "allocated_margin": "0",
                "margin_mode": 0,
            },
        },
    }


def make_trade(trade_id, timestamp, price="100", size="1", usd_amount="100", **extra):
    data = {
        "trade_id": trade_id,
        "market_id": 0,
        "type": "trade",
        "size": size,
        "price": price,
        "usd_amount": usd_amount,
        "timestamp": timestamp,
    }
    data.update(extra)
    return Trade.model_validate(data)


def make_csv_trade(date, pnl, market="ETH-USD", side="Long", role="Taker", type_="Market", fee=0.0):
    return CSVTrade(
        date=date if isinstance(date, datetime) else datetime.fromisoformat(date),
        market=market,
        side=side,
        size=1.0,
        price=100.0,
        closed_pnl=pnl,
        fee=fee,
        role=role,
        type=type_,
    )


class FakeFeed:
    """Stands in for ``LighterFeed``; frames are pushed by the test."""

    def __init__(self, account_index, on_message=None, on_status_change=None):
        self.account_index = account_index
        self.on_message = on_message
        self.on_status_change = on_status_change
        self.stats = FeedStats()
        self.started = False
        self.stopped = False
        self.reconnects = 0
        self.channels = []

    async def subscribe_market(self, market_id):
        self.channels.append(f"trade/{market_id}")

    async def subscribe_order_book(self, market_id):
        self.channels.append(f"order_book/{market_id}")

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def reconnect(self):
        self.reconnects += 1
