import sys
from datetime import datetime
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from conftest import make_trade
from config import settings
from services.trade_metrics import (
    TradeWithPnL,
    analyze_day_patterns,
    analyze_entry_patterns,
    calculate_trade_pnl,
    find_streaks,
    streak_summary,
)

# 2025-01-05 00:00:00 UTC, a Sunday
SUNDAY_UTC = 1736035200


@pytest.fixture(autouse=True)
def utc_analysis_zone(monkeypatch):
    monkeypatch.setattr(settings, "ANALYSIS_TIMEZONE", "UTC")


def _with_pnl(pnl, offset_hours):
    trade = make_trade(f"t{offset_hours}", SUNDAY_UTC + offset_hours * 3600)
    return TradeWithPnL(trade=trade, pnl=pnl, is_win=pnl > 0)


# ---------------------------------------------------------------------------
# Realized PnL estimate
# ---------------------------------------------------------------------------


def test_pnl_uses_taker_position_before():
    trade = make_trade(
        "1",
        SUNDAY_UTC,
        price="110",
        size="1",
        taker_fee="0.5",
        taker_position_size_before="-2",
        taker_entry_quote_before="200",
    )

    result = calculate_trade_pnl(trade)

    assert result.pnl == pytest.approx(9.5)
    assert result.is_win is True


def test_pnl_falls_back_to_maker_side():
    trade = make_trade(
        "2",
        SUNDAY_UTC,
        price="95",
        size="2",
        maker_fee="0.2",
        maker_position_size_before="4",
        maker_entry_quote_before="400",
    )

    assert calculate_trade_pnl(trade).pnl == pytest.approx(9.8)


def test_pnl_is_zero_without_prior_position():
    flat = make_trade(
        "3", SUNDAY_UTC, taker_position_size_before="0", taker_entry_quote_before="0"
    )
    unknown = make_trade("4", SUNDAY_UTC)

    assert calculate_trade_pnl(flat).pnl == 0.0
    assert calculate_trade_pnl(flat).is_win is False
    assert calculate_trade_pnl(unknown).pnl == 0.0


def test_to_dict_carries_pnl_fields():
    data = _with_pnl(4.0, 0).to_dict()
    assert data["pnl"] == 4.0
    assert data["isWin"] is True
    assert data["trade_id"] == "t0"


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


def test_streaks_follow_time_order():
    trades = [
        _with_pnl(7.0, 5),
        _with_pnl(5.0, 0),
        _with_pnl(-2.0, 3),
        _with_pnl(3.0, 1),
        _with_pnl(-1.0, 2),
        _with_pnl(0.0, 4),
    ]

    streaks = find_streaks(trades)

    assert [(s.type, s.count) for s in streaks] == [("win", 2), ("loss", 3), ("win", 1)]
    assert streaks[1].total_pnl == pytest.approx(-3.0)
    assert streaks[1].start_date == datetime(2025, 1, 5, 2)
    assert streaks[1].end_date == datetime(2025, 1, 5, 4)


def test_streak_summary():
    summary = streak_summary(find_streaks([_with_pnl(1.0, 0), _with_pnl(-1.0, 1), _with_pnl(-1.0, 2)]))

    assert summary["longest_win_streak"] == 1
    assert summary["longest_loss_streak"] == 2
    assert summary["current_streak"]["type"] == "loss"
    assert summary["total_streaks"] == 2


def test_streak_summary_empty():
    assert streak_summary([]) == {
        "longest_win_streak": 0,
        "longest_loss_streak": 0,
        "current_streak": None,
        "total_streaks": 0,
    }


# ---------------------------------------------------------------------------
# Timing patterns
# ---------------------------------------------------------------------------


def test_entry_patterns_bucket_by_hour():
    patterns = analyze_entry_patterns([_with_pnl(10.0, 15), _with_pnl(-4.0, 15), _with_pnl(1.0, 3)])

    assert len(patterns) == 24
    assert patterns[15].count == 2
    assert patterns[15].win_rate == pytest.approx(50.0)
    assert patterns[15].avg_pnl == pytest.approx(3.0)
    assert patterns[0].count == 0
    assert patterns[0].avg_pnl == 0.0


def test_patterns_use_analysis_timezone(monkeypatch):
    monkeypatch.setattr(settings, "ANALYSIS_TIMEZONE", "America/New_York")
    # 02:00 UTC on Sunday is 21:00 on Saturday in New York.
    trades = [_with_pnl(1.0, 2)]

    hours = analyze_entry_patterns(trades)
    days = analyze_day_patterns(trades)

    assert hours[21].count == 1
    assert days[6].day_name == "Saturday"
    assert days[6].count == 1
    assert days[0].count == 0
