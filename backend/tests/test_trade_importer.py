import sys
from datetime import datetime
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.exchange_mappings import (
    HYPERLIQUID_HEADERS,
    LIGHTER_HEADERS,
    detect_exchange,
    headers_match,
    map_custom_row,
    missing_required_fields,
    parse_date,
    parse_number,
    parse_side,
)
from services.trade_importer import TradeImportError, import_trades, read_csv


LIGHTER_CSV = """Market,Side,Date,Trade Value,Size,Price,Closed PnL,Fee,Role,Type
eth,Open Long,2025-01-06 10:15:00,3800,1,3800,-,0.5,Taker,Market
eth,Close Long,2025-01-06 14:30:00,3900,1,3900,"$1,100.25",-0.75,Maker,Limit
btc,Close Short,2025-01-07 09:00:00,100000,0.1,100000,-250,1.2,Taker,Market
sol,Close Short,,195,1,195,12,0,Taker,Market
"""

HYPERLIQUID_CSV = """time,coin,dir,px,sz,ntl,fee,closedPnl
1736158500000,HYPE,Close Long,38.2,10,382,0.1,15.5
1736244900000,HYPE,Close Short,37.9,10,379,0.1,-4
"""


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------


def test_parse_number_takes_numeric_prefix():
    assert parse_number("$1,234.50") == 1234.5
    assert parse_number("12.5 USDC") == 12.5
    assert parse_number("-0.75") == -0.75
    assert parse_number("-") == 0.0
    assert parse_number("") == 0.0
    assert parse_number(None) == 0.0


def test_parse_side_recognizes_long_and_buy():
    assert parse_side("Open Long") == "Long"
    assert parse_side("BUY") == "Long"
    assert parse_side("Close Short") == "Short"
    assert parse_side("sell") == "Short"


def test_parse_date_formats():
    assert parse_date("2025-01-06 10:15:00") == datetime(2025, 1, 6, 10, 15)
    assert parse_date("01/06/2025 10:15:00") == datetime(2025, 1, 6, 10, 15)
    assert parse_date("2025-01-06T10:15:00Z") == datetime(2025, 1, 6, 10, 15)
    # Epoch milliseconds and seconds agree.
    assert parse_date("1736158500000") == parse_date("1736158500")
    assert parse_date("not a date") is None
    assert parse_date("") is None


# ---------------------------------------------------------------------------
# Exchange detection
# ---------------------------------------------------------------------------


def test_headers_match_requires_seventy_percent():
    # 7 of 10 Lighter headers is exactly the threshold.
    assert headers_match(LIGHTER_HEADERS[:7], LIGHTER_HEADERS) is True
    assert headers_match(LIGHTER_HEADERS[:6], LIGHTER_HEADERS) is False
    assert headers_match([], LIGHTER_HEADERS) is False


def test_headers_match_ignores_case_and_whitespace():
    headers = [f" {h.upper()} " for h in HYPERLIQUID_HEADERS]
    assert headers_match(headers, HYPERLIQUID_HEADERS) is True


def test_detect_exchange_by_headers():
    assert detect_exchange(LIGHTER_HEADERS).exchange == "lighter"
    assert detect_exchange(HYPERLIQUID_HEADERS).exchange == "hyperliquid"
    assert detect_exchange(
        ["Time", "Market", "Direction", "Amount", "Price", "Fee", "Total", "Realized PnL"]
    ).exchange == "nado"

    unknown = detect_exchange(["foo", "bar"])
    assert unknown.detected is False
    assert unknown.exchange == "unknown"
    assert unknown.mapper is None


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def test_import_lighter_csv_skips_rows_without_required_fields():
    result = import_trades(LIGHTER_CSV)

    assert result.exchange == "lighter"
    # The open-long row has "-" as PnL (kept, parsed as 0); the SOL row lacks a date.
    assert len(result.trades) == 3
    assert result.skipped == 1

    close = result.trades[1]
    assert close.market == "ETH"
    assert close.side == "Long"
    assert close.closed_pnl == 1100.25
    assert close.fee == 0.75
    assert close.role == "Maker"
    assert close.type == "Limit"


def test_import_lighter_csv_with_lower_case_headers():
    lower = "market,side,date,trade value,size,price,closed pnl,fee,role,type\n" + "\n".join(
        LIGHTER_CSV.splitlines()[1:]
    )

    result = import_trades(lower)

    assert result.exchange == "lighter"
    assert len(result.trades) == 3
    assert result.trades[1].closed_pnl == 1100.25
    assert result.trades[1].role == "Maker"


def test_import_hyperliquid_epoch_timestamps():
    result = import_trades(HYPERLIQUID_CSV.encode("utf-8"))

    assert result.exchange == "hyperliquid"
    assert [t.closed_pnl for t in result.trades] == [15.5, -4.0]
    assert result.trades[0].role == "Taker"
    assert result.trades[0].type == "Market"


def test_import_strips_byte_order_mark():
    headers, rows = read_csv("\ufeff" + HYPERLIQUID_CSV)
    assert headers[0] == "time"
    assert len(rows) == 2


def test_generic_parser_handles_alias_headers():
    content = "timestamp,symbol,side,quantity,price,pnl\n2025-02-01 08:00:00,arb,buy,5,0.8,3.5\n"

    result = import_trades(content)

    assert result.exchange == "generic"
    assert result.trades[0].market == "ARB"
    assert result.trades[0].side == "Long"
    assert result.trades[0].size == 5.0


def test_unrecognized_csv_requests_mapping():
    content = "When,Pair,Way,Result\n2025-02-01,ETH,long,10\n"

    result = import_trades(content)

    assert result.needs_mapping is True
    assert result.trades == []
    assert result.headers == ["When", "Pair", "Way", "Result"]
    assert result.sample_rows[0]["Pair"] == "ETH"
    assert result.to_dict()["needs_mapping"] is True


def test_custom_mapping_reads_user_columns():
    content = "When,Pair,Way,Result,Cost\n2025-02-01 12:00:00,eth,long,10,-0.2\n2025-02-02,btc,short,,0\n"
    mapping = {"date": "When", "market": "Pair", "side": "Way", "closedPnL": "Result", "fee": "Cost"}

    result = import_trades(content, mapping=mapping)

    assert result.exchange == "custom"
    assert len(result.trades) == 1
    assert result.skipped == 1
    assert result.trades[0].fee == 0.2


def test_custom_mapping_validation():
    content = "When,Pair,Way,Result\n2025-02-01,ETH,long,10\n"

    with pytest.raises(TradeImportError, match="missing required"):
        import_trades(content, mapping={"date": "When", "market": "Pair"})

    with pytest.raises(TradeImportError, match="unknown columns"):
        import_trades(
            content,
            mapping={"date": "When", "market": "Pair", "side": "Way", "closedPnL": "Nope"},
        )


def test_missing_required_fields_lists_blank_entries():
    assert missing_required_fields({"date": "d", "market": " ", "side": "s"}) == [
        "market",
        "closedPnL",
    ]


def test_map_custom_row_defaults_role_and_type():
    trade = map_custom_row(
        {"d": "2025-03-01 00:00:00", "m": "eth", "p": "5"},
        {"date": "d", "market": "m", "closedPnL": "p"},
    )
    assert trade.role == "Taker"
    assert trade.type == "Market"
    assert trade.side == "Short"


def test_file_without_header_row_is_rejected():
    with pytest.raises(TradeImportError):
        import_trades("")


def test_detected_exchange_with_no_valid_rows_is_an_error():
    content = ",".join(LIGHTER_HEADERS) + "\neth,Long,,1,1,1,,0,Taker,Market\n"
    with pytest.raises(TradeImportError):
        import_trades(content)
