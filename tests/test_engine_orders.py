from __future__ import annotations

import pytest

from papertrader.bus import EventBus
from papertrader.config import EngineConfig
from papertrader.engine import PaperTrader
from papertrader.errors import InvalidBracket, InvalidPrice, InvalidPriceSource, ValidationFailed
from papertrader.events import OrderStatusUpdate
from papertrader.market_data import PriceQuote
from papertrader.models import Trade


def test_market_order_applies_slippage_and_costs() -> None:
    e = PaperTrader(EngineConfig(commission_pct=0.0005, slippage_pct=0.0002))
    trade = e.place_market_order("RELIANCE", "BUY", 10, 2500)

    assert trade.price == 2500.5
    assert trade.value == 25005.0
    assert trade.commission == 12.5
    assert trade.slippage == 5.0
    assert e.cash == pytest.approx(100_000 - 25_022.5)
    assert e.get_last_prices()["RELIANCE"] == 2500

    sell = e.place_market_order("RELIANCE", "SELL", 5, 2520)
    assert sell.price == 2519.5


@pytest.mark.parametrize(
    "symbol, side, qty",
    [
        ("", "BUY", 1),
        ("TCS", "HOLD", 1),
        ("TCS", "BUY", 0),
        ("TCS", "BUY", -3),
        ("TCS", "BUY", 1.5),
    ],
)
def test_malformed_market_orders_fail_validation(make_engine, symbol, side, qty) -> None:
    e = make_engine()
    with pytest.raises(ValidationFailed):
        e.place_market_order(symbol, side, qty, 500)
    assert e.cash == 100_000
    assert e.get_trade_history() == []


def test_market_order_below_minimum_value_is_rejected(make_engine) -> None:
    e = make_engine(min_trade_value=100)
    with pytest.raises(ValidationFailed, match="below minimum"):
        e.place_market_order("ITC", "BUY", 1, 50)


def test_market_order_price_sources() -> None:
    e = PaperTrader(EngineConfig(commission_pct=0, slippage_pct=0, min_trade_value=0))

    t1 = e.place_market_order("ITC", "BUY", 1, {"price": 400, "time": "2024-01-02T09:15:00Z"})
    assert t1.price == 400
    assert t1.time == "2024-01-02T09:15:00Z"

    t2 = e.place_market_order("ITC", "BUY", 1, lambda: lambda: 410)
    assert t2.price == 410

    t3 = e.place_market_order("ITC", "BUY", 1, PriceQuote(price=420, time="2024-01-02T09:16:00Z"))
    assert t3.time == "2024-01-02T09:16:00Z"

    t4 = e.place_market_order("ITC", "BUY", 1, 430, time="2024-01-02T09:17:00Z")
    assert t4.time == "2024-01-02T09:17:00Z"


@pytest.mark.parametrize("source", ["abc", None, object(), {"time": "x"}, lambda: "abc", float("nan")])
def test_invalid_price_source(make_engine, source) -> None:
    e = make_engine()
    with pytest.raises(InvalidPriceSource):
        e.place_market_order("ITC", "BUY", 1, source)


@pytest.mark.parametrize("price", [0, -1])
def test_resting_orders_need_positive_price(make_engine, price) -> None:
    e = make_engine()
    with pytest.raises(InvalidPrice):
        e.place_limit_order("ITC", "BUY", 1, price)
    with pytest.raises(InvalidPrice):
        e.place_stop_order("ITC", "BUY", 1, price)
    assert e.get_open_orders() == []


def test_resting_orders_validate_fields(make_engine) -> None:
    e = make_engine()
    with pytest.raises(ValidationFailed):
        e.place_limit_order("ITC", "BUY", -1, 100)
    with pytest.raises(ValidationFailed):
        e.place_stop_order("", "SELL", 1, 100)
    assert e.get_open_orders() == []


def test_limit_order_waits_for_marketable_tick_and_fills_at_limit(make_engine) -> None:
    e = make_engine()
    order = e.place_limit_order("ITC", "BUY", 10, 100.004)
    assert order.status == "PENDING"
    assert order.limit_price == 100.0

    assert e.process_tick("ITC", 101) == []
    assert [o.id for o in e.get_open_orders()] == [order.id]

    fills = e.process_tick("ITC", 97)
    assert len(fills) == 1
    assert fills[0].price == 100.0
    assert fills[0].order_id == order.id
    assert e.get_open_orders() == []


def test_stop_order_executes_at_tick_price(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    stop = e.place_stop_order("ITC", "SELL", 10, 95)

    assert e.process_tick("ITC", 96) == []
    fills = e.process_tick("ITC", 94)

    assert [t.order_id for t in fills] == [stop.id]
    assert fills[0].price == 94
    assert fills[0].pnl == -60
    assert "ITC" in e.get_positions()
    assert e.get_positions()["ITC"].qty == 0


def test_stop_fills_before_limit_on_same_tick(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    limit = e.place_limit_order("ITC", "SELL", 5, 100)
    stop = e.place_stop_order("ITC", "SELL", 5, 105)

    fills = e.process_tick("ITC", 102)

    assert [t.order_id for t in fills] == [stop.id, limit.id]
    history = e.get_trade_history()
    assert [t.order_id for t in history[-2:]] == [stop.id, limit.id]
    assert history[-2].price == 102
    assert history[-1].price == 100


def test_tick_on_other_symbol_leaves_orders_alone(make_engine) -> None:
    e = make_engine()
    order = e.place_limit_order("ITC", "BUY", 10, 100)
    e.process_tick("TCS", 50)
    assert [o.id for o in e.get_open_orders()] == [order.id]


@pytest.mark.parametrize("price", [0, -5, float("nan")])
def test_non_positive_tick_is_ignored(make_engine, price) -> None:
    e = make_engine()
    e.place_limit_order("ITC", "BUY", 10, 100)
    assert e.process_tick("ITC", price) == []
    assert e.get_equity_history() == []
    assert e.get_last_prices() == {}
    assert len(e.get_open_orders()) == 1


def test_tick_appends_equity_point(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    e.process_tick("ITC", 110, "2024-01-02T09:15:00Z")

    points = e.get_equity_history()
    assert len(points) == 1
    assert points[0].time == "2024-01-02T09:15:00Z"
    assert points[0].equity == 99_000 + 100


def test_failed_stop_is_marked_and_removed_without_raising(make_engine) -> None:
    bus = EventBus()
    updates: list[OrderStatusUpdate] = []
    bus.subscribe(OrderStatusUpdate, updates.append)

    e = make_engine()
    e.bus = bus
    stop = e.place_stop_order("ITC", "BUY", 5000, 100)

    assert e.process_tick("ITC", 101) == []
    assert e.get_open_orders() == []
    assert e.get_trade_history() == []
    assert e.cash == 100_000
    assert [(u.order_id, u.status) for u in updates] == [(stop.id, "FAILED")]
    assert "Insufficient cash" in (updates[0].reason or "")


def test_failed_limit_is_removed(make_engine) -> None:
    e = make_engine(allow_short=False)
    e.place_limit_order("ITC", "SELL", 10, 100)
    assert e.process_tick("ITC", 120) == []
    assert e.get_open_orders() == []


def test_cancel_order_is_idempotent(make_engine) -> None:
    e = make_engine()
    order = e.place_limit_order("ITC", "BUY", 10, 100)

    cancelled = e.cancel_order(order.id)
    assert cancelled is not None
    assert cancelled.status == "CANCELLED"
    assert e.cancel_order(order.id) is None
    assert e.cancel_order(999) is None
    assert e.get_open_orders() == []


def test_cancel_all_orders_by_symbol(make_engine) -> None:
    e = make_engine()
    e.place_limit_order("ITC", "BUY", 10, 100)
    e.place_stop_order("ITC", "BUY", 10, 120)
    keep = e.place_limit_order("TCS", "BUY", 1, 3000)

    assert e.cancel_all_orders("ITC") == 2
    assert [o.id for o in e.get_open_orders()] == [keep.id]
    assert e.cancel_all_orders() == 1
    assert e.get_open_orders() == []


def test_getters_return_copies(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    e.place_limit_order("ITC", "BUY", 10, 90)

    positions = e.get_positions()
    positions["ITC"].qty = 999
    orders = e.get_open_orders()
    orders[0].qty = 999
    orders.clear()
    e.get_last_prices()["ITC"] = 1

    assert e.get_positions()["ITC"].qty == 10
    assert e.get_open_orders()[0].qty == 10
    assert e.get_last_prices()["ITC"] == 100


def test_ids_are_per_engine(make_engine) -> None:
    a = make_engine()
    b = make_engine()
    assert a.place_limit_order("ITC", "BUY", 1, 100).id == 1
    assert a.place_limit_order("ITC", "BUY", 1, 100).id == 2
    assert b.place_limit_order("ITC", "BUY", 1, 100).id == 1


def test_close_position_partial_and_full(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)

    half = e.close_position("ITC", 110, partial=0.5)
    assert half.side == "SELL"
    assert half.qty == 5

    rest = e.close_position("ITC", 120)
    assert rest.qty == 5
    assert e.get_positions()["ITC"].qty == 0

    with pytest.raises(ValidationFailed):
        e.close_position("ITC", 120)


def test_close_position_rejects_bad_fraction(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 1, 100)
    with pytest.raises(ValidationFailed):
        e.close_position("ITC", 100, partial=1.5)
    with pytest.raises(ValidationFailed, match="zero"):
        e.close_position("ITC", 100, partial=0.5)


def test_close_all_positions_skips_failures(make_engine) -> None:
    e = make_engine(allow_short=True)
    e.place_market_order("ITC", "BUY", 10, 100)
    e.place_market_order("TCS", "SELL", 2, 3000)
    e.place_market_order("SBIN", "BUY", 3, 500)

    trades = e.close_all_positions({"ITC": 105, "TCS": "bad"})

    assert [t.symbol for t in trades] == ["ITC"]
    assert e.get_positions()["TCS"].qty == -2
    assert e.get_positions()["SBIN"].qty == 3


def test_attach_sl_tp_to_position_forms_oco_pair(make_engine) -> None:
    e = make_engine()
    e.place_market_order("ITC", "BUY", 10, 100)
    sl, tp = e.attach_sl_tp_to_position("ITC", sl_price=95, tp_price=110)

    assert sl.type == "STOP" and sl.side == "SELL" and sl.qty == 10
    assert tp.type == "LIMIT" and tp.attached is not None and tp.attached.for_position

    fills = e.process_tick("ITC", 111)
    assert [t.order_id for t in fills] == [tp.id]
    assert e.get_open_orders() == []


def test_attach_sl_tp_validation(make_engine) -> None:
    e = make_engine()
    with pytest.raises(ValidationFailed):
        e.attach_sl_tp_to_position("ITC", sl_price=95)

    e.place_market_order("ITC", "BUY", 10, 100)
    with pytest.raises(InvalidBracket):
        e.attach_sl_tp_to_position("ITC", sl_price=101)
    with pytest.raises(InvalidBracket):
        e.attach_sl_tp_to_position("ITC", tp_price=99)
    assert e.get_open_orders() == []


def test_trade_confirmations_are_published(make_engine) -> None:
    bus = EventBus()
    trades: list[Trade] = []
    bus.subscribe(Trade, trades.append)
    e = make_engine()
    e.bus = bus

    e.place_market_order("ITC", "BUY", 10, 100)
    e.place_limit_order("ITC", "SELL", 10, 110)
    e.process_tick("ITC", 110)

    assert [t.side for t in trades] == ["BUY", "SELL"]
    assert trades == e.get_trade_history()
