import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.comparison import (
    MarketAverages,
    calculate_percentile,
    compare_performance,
    performance_band,
)


def test_percentile_is_clamped():
    assert calculate_percentile(52.5, 52.5) == 50.0
    assert calculate_percentile(1000, 10) == 100.0
    assert calculate_percentile(1000, 10, higher_is_better=False) == 0.0
    assert calculate_percentile(5, 0) == 50.0


def test_performance_bands():
    assert performance_band(60.5) == "above"
    assert performance_band(60) == "average"
    assert performance_band(40) == "average"
    assert performance_band(39.9) == "below"


def test_compare_performance_rows():
    rows = {r.metric: r for r in compare_performance(60.0, 6.4, 125.0, 10)}

    assert rows["Win Rate"].percentile == pytest.approx(50 + 7.5 / 52.5 * 100)
    assert rows["Win Rate"].performance == "above"
    # Higher leverage than average ranks lower.
    assert rows["Leverage"].percentile == 0.0
    assert rows["Leverage"].performance == "below"
    assert rows["Avg PnL per Trade"].user_value == pytest.approx(12.5)
    assert rows["Avg PnL per Trade"].performance == "average"


def test_compare_performance_without_trades():
    rows = compare_performance(0, 0, 50.0, 0, averages=MarketAverages(avg_pnl_per_trade=10))
    pnl = rows[-1]
    assert pnl.user_value == 0.0
    assert pnl.to_dict()["market_avg"] == 10
