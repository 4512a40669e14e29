from __future__ import annotations

import pytest

from papertrader.errors import InvalidInput, NoRiskDefined
from papertrader.risk import kelly_size, size_by_percent, size_by_risk


def test_size_by_percent_of_equity(make_engine) -> None:
    e = make_engine()
    assert e.size_by_percent_of_equity(40, "ITC", 1000) == 40
    assert e.size_by_percent_of_equity(55, "ITC", 2500) == 22
    assert e.size_by_percent_of_equity(0.1, "ITC", 2500) == 0


def test_size_by_percent_uses_marked_equity(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 100, 100)
    e.process_tick("ITC", 200)
    # cash 90_000 + unrealized 100 * (200 - 100)
    assert e.size_by_percent_of_equity(10, "TCS", {"price": 1000}) == 10


def test_size_by_risk() -> None:
    assert size_by_risk(100, 99, 200) == 200
    assert size_by_risk(100, 102, 500) == 250
    assert size_by_risk(100, 50, 10) == 1


def test_engine_size_by_risk_can_use_live_price(make_engine) -> None:
    e = make_engine()
    assert e.size_by_risk("ITC", 100, 95, 1000) == 200
    assert e.size_by_risk("ITC", 100, 95, 1000, price_source=lambda: 105) == 100


def test_size_by_risk_without_risk() -> None:
    with pytest.raises(NoRiskDefined):
        size_by_risk(100, 100, 500)


def test_kelly_size() -> None:
    assert kelly_size(0.6, 2, 1, 100_000, 100) == 200
    # Full edge is capped at a quarter of equity.
    assert kelly_size(0.8, 3, 1, 100_000, 100) == 250
    assert kelly_size(0.3, 1, 1, 100_000, 100) == 0
    assert kelly_size(0.5, 0, 1, 100_000, 100) == 0


@pytest.mark.parametrize(
    "win_rate, avg_win, avg_loss, price",
    [
        (0.5, 2, 0, 100),
        (0.5, 2, -1, 100),
        (1.5, 2, 1, 100),
        (-0.1, 2, 1, 100),
        (0.5, 2, 1, 0),
    ],
)
def test_kelly_size_rejects_bad_input(win_rate, avg_win, avg_loss, price) -> None:
    with pytest.raises(InvalidInput):
        kelly_size(win_rate, avg_win, avg_loss, 100_000, price)


def test_size_by_percent_never_negative() -> None:
    assert size_by_percent(-500, 10, 100) == 0
    with pytest.raises(InvalidInput):
        size_by_percent(1000, 10, 0)
