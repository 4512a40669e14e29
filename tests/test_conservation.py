from __future__ import annotations

from typing import Mapping

import pytest

from papertrader.config import EngineConfig
from papertrader.engine import PaperTrader


def _market_value(e: PaperTrader, prices: Mapping[str, float]) -> float:
    return e.cash + sum(pos.qty * prices[symbol] for symbol, pos in e.get_positions().items())


def test_market_value_moves_only_by_costs_when_marked_at_fill_price() -> None:
    e = PaperTrader(EngineConfig(allow_short=True))
    start = e.cash

    buy = e.place_market_order("RELIANCE", "BUY", 10, 2500)
    after_buy = _market_value(e, {"RELIANCE": buy.price})
    assert after_buy - start == pytest.approx(-(buy.commission + buy.slippage), abs=0.02)

    sell = e.place_market_order("RELIANCE", "SELL", 10, 2600)
    before_sell = after_buy + (sell.price - buy.price) * 10
    after_sell = _market_value(e, {"RELIANCE": sell.price})
    assert after_sell - before_sell == pytest.approx(-(sell.commission + sell.slippage), abs=0.02)


def test_equity_is_cash_plus_unrealized(make_engine) -> None:
    e = make_engine(allow_short=True)
    e.place_market_order("ITC", "BUY", 10, 100)
    e.place_market_order("TCS", "SELL", 2, 3000)
    e.process_tick("ITC", 104)
    e.process_tick("TCS", 2950)

    snap = e.get_portfolio_snapshot()
    assert snap.total_unrealized == 40 + 100
    assert e.get_equity() == snap.cash + snap.total_unrealized
    assert snap.equity == e.get_equity()


def test_cash_plus_realized_balances_without_costs(make_engine) -> None:
    e = make_engine(allow_short=True)
    e.place_market_order("ITC", "BUY", 10, 100)
    e.place_market_order("ITC", "SELL", 25, 120)
    e.place_market_order("ITC", "BUY", 15, 90)

    snap = e.get_portfolio_snapshot()
    assert e.get_positions()["ITC"].qty == 0
    assert snap.cash == pytest.approx(snap.initial_cash + snap.total_realized)


def test_equity_history_tracks_ticks(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    for price in (101, 99, 105):
        e.process_tick("ITC", price)

    assert [p.equity for p in e.get_equity_history()] == [99_010, 98_990, 99_050]
