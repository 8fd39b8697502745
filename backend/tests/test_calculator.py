import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.calculator import (
    calculate_average_open_price,
    calculate_initial_margin,
    calculate_liquidation_price,
    calculate_max_open_quantity,
    calculate_pnl,
    calculate_roe,
    calculate_target_price,
    liquidation_distance_percent,
    summarize_position,
)


def test_initial_margin_and_zero_leverage():
    assert calculate_initial_margin(2, 3000, 10) == pytest.approx(600.0)
    assert calculate_initial_margin(2, 3000, 0) == 0.0


def test_pnl_by_side():
    assert calculate_pnl("long", 100, 110, 3) == pytest.approx(30.0)
    assert calculate_pnl("short", 100, 110, 3) == pytest.approx(-30.0)


def test_roe_percent():
    assert calculate_roe(30, 60) == pytest.approx(50.0)
    assert calculate_roe(30, 0) == 0.0


def test_liquidation_price_long_and_short():
    assert calculate_liquidation_price("long", 100, 10, mmf=0.005) == pytest.approx(90.5)
    assert calculate_liquidation_price("short", 100, 10, mmf=0.005) == pytest.approx(109.5)
    assert calculate_liquidation_price("long", 100, 0) == 0.0


def test_liquidation_price_uses_configured_maintenance_fraction(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "MAINTENANCE_MARGIN_FRACTION", 0.01)
    assert calculate_liquidation_price("long", 100, 5) == pytest.approx(81.0)


def test_target_price_reaches_requested_roe():
    target = calculate_target_price("long", 100, 2, 10, 50)
    assert target == pytest.approx(105.0)

    margin = calculate_initial_margin(2, 100, 10)
    pnl = calculate_pnl("long", 100, target, 2)
    assert calculate_roe(pnl, margin) == pytest.approx(50.0)

    assert calculate_target_price("short", 100, 2, 10, 50) == pytest.approx(95.0)
    assert calculate_target_price("long", 100, 0, 10, 50) == 0.0


def test_max_open_quantity():
    assert calculate_max_open_quantity(1000, 5, 2500) == pytest.approx(2.0)
    assert calculate_max_open_quantity(1000, 5, 0) == 0.0


def test_average_open_price_is_size_weighted():
    assert calculate_average_open_price([(100, 1), (130, 2)]) == pytest.approx(120.0)
    assert calculate_average_open_price([]) == 0.0


def test_liquidation_distance():
    assert liquidation_distance_percent(100, 90.5) == pytest.approx(9.5)
    assert liquidation_distance_percent(100, 0) == 0.0


def test_summarize_position():
    summary = summarize_position("short", 200, 180, 1.5, 4, mmf=0.005)

    assert summary["initial_margin"] == pytest.approx(75.0)
    assert summary["pnl"] == pytest.approx(30.0)
    assert summary["roe"] == pytest.approx(40.0)
    assert summary["liquidation_price"] == pytest.approx(249.0)
    assert summary["position_value"] == pytest.approx(300.0)
