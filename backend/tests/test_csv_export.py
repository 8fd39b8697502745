import csv
import io
import sys
from datetime import date
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from conftest import WALLET, make_trade
from models.lighter import Position, UserStats
from services.csv_export import (
    ACCOUNT_STATS_COLUMNS,
    POSITION_COLUMNS,
    SUMMARY_COLUMNS,
    TRADE_COLUMNS,
    build_export,
    export_filename,
    rows_to_csv,
)


def _parse(text):
    return list(csv.DictReader(io.StringIO(text)))


@pytest.fixture
def account():
    positions = [
        Position(
            market_id=0,
            symbol="ETH-USD",
            sign=-1,
            position=2,
            avg_entry_price=3800,
            position_value=7600,
            unrealized_pnl=-25.5,
            liquidation_price=4100,
            initial_margin_fraction=10,
        )
    ]
    trades = [make_trade("t1", 1736035200, price="3800", size="2", usd_amount="7600", taker_fee="1.5")]
    stats = UserStats(collateral=1000, portfolio_value=1250.5, leverage=3.2)
    return positions, trades, stats


def test_rows_to_csv_blanks_missing_values():
    text = rows_to_csv(["a", "b"], [{"a": 1, "b": None}, {"a": 2}])
    assert text == "a,b\n1,\n2,\n"


def test_export_filename():
    assert export_filename("trades", date(2025, 1, 5)) == "trades_2025-01-05.csv"


def test_positions_export(account):
    filename, text = build_export("positions", WALLET, *account)

    assert filename.startswith("positions_")
    assert text.splitlines()[0] == ",".join(POSITION_COLUMNS)
    row = _parse(text)[0]
    assert row["side"] == "SHORT"
    assert row["size"] == "2.0"
    assert row["entry_price"] == "3800.0"


def test_trades_export_uses_iso_timestamps(account):
    _, text = build_export("trades", WALLET, *account)

    assert text.splitlines()[0] == ",".join(TRADE_COLUMNS)
    row = _parse(text)[0]
    assert row["trade_id"] == "t1"
    assert row["timestamp"] == "2025-01-05T00:00:00.000Z"
    assert row["taker_fee"] == "1.5"


def test_account_stats_export(account):
    positions, trades, stats = account

    _, text = build_export("account_stats", WALLET, positions, trades, stats)
    assert text.splitlines()[0] == ",".join(ACCOUNT_STATS_COLUMNS)
    assert _parse(text)[0]["portfolio_value"] == "1250.5"

    _, empty = build_export("account_stats", WALLET, positions, trades, None)
    assert _parse(empty) == []


def test_trading_summary_export(account):
    positions, trades, _ = account

    _, text = build_export("trading_summary", WALLET, positions, trades, None)

    assert text.splitlines()[0] == ",".join(SUMMARY_COLUMNS)
    row = _parse(text)[0]
    assert row["wallet_address"] == WALLET
    assert row["total_positions"] == "1"
    assert row["total_trades"] == "1"
    assert row["portfolio_value"] == "0"


def test_unknown_export_kind():
    with pytest.raises(ValueError):
        build_export("orders", WALLET, [], [], None)
