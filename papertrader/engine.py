from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from papertrader.bus import EventBus
from papertrader.config import EngineConfig
from papertrader.errors import InvalidBracket, InvalidPrice, PaperTradingError, ValidationFailed
from papertrader.events import OrderStatusUpdate
from papertrader.ledger import Ledger
from papertrader.market_data import PriceMapSource, PriceSource, normalize_price, resolve_price_map, resolve_price_source
from papertrader.models import (
    BracketOrder,
    EquityPoint,
    Order,
    OrderLink,
    PerformanceMetrics,
    PortfolioSnapshot,
    Position,
    PositionSnapshot,
    Trade,
    now_iso,
    opposite_side,
    round2,
    round4,
)
from papertrader.orders import OrderBook
from papertrader.persistence import EngineState, read_state, write_state
from papertrader.reporting import render_portfolio_report, render_trade_report
from papertrader.risk import RiskEngine, sizing


class PaperTrader:
    """In-process paper-trading engine.

    Accepts market, limit, stop and bracket orders, fills resting orders from
    price ticks, and keeps cash, positions, trades, equity history and
    performance metrics. The instance owns all of that state: getters hand
    out deep copies, and every mutation goes through the methods below.

    Not thread-safe. Callers serialize access, one tick or placement at a time.

    Bracket exits (stop-loss and take-profit legs) are placed together with
    their entry but stay dormant (``Order.active`` is False) until the entry
    fills; cancelling or failing an unfilled entry cancels them too.
    """

    def __init__(self, cfg: Optional[EngineConfig] = None, bus: Optional[EventBus] = None) -> None:
        self._log = logging.getLogger("engine")
        self.bus = bus
        self._cfg = (cfg or EngineConfig()).model_copy()
        self._ledger = Ledger(self._cfg)
        self._book = OrderBook()
        self._risk = RiskEngine(self._cfg)
        self._equity_history: List[EquityPoint] = []
        self._last_prices: Dict[str, float] = {}

    @property
    def config(self) -> EngineConfig:
        return self._cfg.model_copy()

    @property
    def cash(self) -> float:
        return self._ledger.cash

    @property
    def initial_cash(self) -> float:
        return self._ledger.initial_cash

    # ============================================================ placement

    def place_market_order(
        self,
        symbol: str,
        side: str,
        qty: int,
        price_source: PriceSource,
        time: Optional[str] = None,
    ) -> Trade:
        quote = resolve_price_source(price_source)
        fill_time = time or quote.time
        if isinstance(symbol, str) and symbol and quote.price > 0:
            self._last_prices[symbol] = quote.price

        try:
            self._risk.validate_order(self._ledger, symbol, side, qty, quote.price)
            self._risk.check_position_size_limit(self._ledger, symbol, side, qty, quote.price, self._last_prices)
            trade = self._ledger.apply_fill(symbol, side, qty, self._apply_slippage(quote.price, side), fill_time)
        except PaperTradingError as exc:
            self._log.warning(
                "market_order_rejected",
                extra={"symbol": symbol, "side": side, "qty": qty, "price": quote.price, "error": str(exc)},
            )
            raise

        self._publish(trade)
        return trade

    def place_limit_order(
        self,
        symbol: str,
        side: str,
        qty: int,
        limit_price: float,
        time: Optional[str] = None,
        attached: Optional[OrderLink] = None,
    ) -> Order:
        self._validate_resting(symbol, side, qty, limit_price, "Limit")
        order = self._open_order("LIMIT", symbol, side, qty, limit_price, time, attached)
        return copy.deepcopy(order)

    def place_stop_order(
        self,
        symbol: str,
        side: str,
        qty: int,
        stop_price: float,
        time: Optional[str] = None,
        attached: Optional[OrderLink] = None,
    ) -> Order:
        self._validate_resting(symbol, side, qty, stop_price, "Stop")
        order = self._open_order("STOP", symbol, side, qty, stop_price, time, attached)
        return copy.deepcopy(order)

    def place_bracket_order(
        self,
        symbol: str,
        side: str,
        qty: int,
        entry_price: float,
        stop_loss: float,
        target: float,
        time: Optional[str] = None,
    ) -> BracketOrder:
        # Validate every leg up front so a bad bracket places nothing.
        self._validate_resting(symbol, side, qty, entry_price, "Entry")
        for label, price in (("Stop loss", stop_loss), ("Target", target)):
            if not self._positive(price):
                raise InvalidPrice(f"{label} price must be > 0")

        if side == "BUY":
            if stop_loss >= entry_price:
                raise InvalidBracket("For BUY: stop loss must be < entry price")
            if target <= entry_price:
                raise InvalidBracket("For BUY: target must be > entry price")
        else:
            if stop_loss <= entry_price:
                raise InvalidBracket("For SELL: stop loss must be > entry price")
            if target >= entry_price:
                raise InvalidBracket("For SELL: target must be < entry price")

        exit_side = opposite_side(side)
        entry = self._open_order("LIMIT", symbol, side, qty, entry_price, time, None)
        sl = self._open_order(
            "STOP", symbol, exit_side, qty, stop_loss, time, OrderLink(role="SL", parent_id=entry.id), active=False
        )
        tp = self._open_order(
            "LIMIT", symbol, exit_side, qty, target, time, OrderLink(role="TP", parent_id=entry.id), active=False
        )
        self._log.info(
            "bracket_placed",
            extra={"symbol": symbol, "side": side, "qty": qty, "entry_id": entry.id, "sl_id": sl.id, "tp_id": tp.id},
        )
        return BracketOrder(entry=copy.deepcopy(entry), sl=copy.deepcopy(sl), tp=copy.deepcopy(tp))

    def cancel_order(self, order_id: int) -> Optional[Order]:
        cancelled = self._cancel_and_publish(order_id)
        if not cancelled:
            return None
        return copy.deepcopy(cancelled[0])

    def cancel_all_orders(self, symbol: Optional[str] = None) -> int:
        count = 0
        for order in self._book.orders(symbol):
            if order.id in self._book:
                count += len(self._cancel_and_publish(order.id))
        return count

    def attach_sl_tp_to_position(
        self,
        symbol: str,
        sl_price: Optional[float] = None,
        tp_price: Optional[float] = None,
        time: Optional[str] = None,
    ) -> List[Order]:
        pos = self._ledger.positions.get(symbol)
        if pos is None or pos.qty == 0:
            raise ValidationFailed(f"No position in {symbol} to attach SL/TP")

        is_long = pos.qty > 0
        if sl_price is not None:
            if is_long and sl_price >= pos.avg_price:
                raise InvalidBracket("For LONG: stop loss must be < average price")
            if not is_long and sl_price <= pos.avg_price:
                raise InvalidBracket("For SHORT: stop loss must be > average price")
        if tp_price is not None:
            if is_long and tp_price <= pos.avg_price:
                raise InvalidBracket("For LONG: take profit must be > average price")
            if not is_long and tp_price >= pos.avg_price:
                raise InvalidBracket("For SHORT: take profit must be < average price")
        for label, price in (("Stop loss", sl_price), ("Take profit", tp_price)):
            if price is not None and not self._positive(price):
                raise InvalidPrice(f"{label} price must be > 0")

        exit_side = "SELL" if is_long else "BUY"
        qty = abs(pos.qty)
        placed: List[Order] = []
        if sl_price is not None:
            placed.append(self._open_order("STOP", symbol, exit_side, qty, sl_price, time, OrderLink(role="SL", for_position=True)))
        if tp_price is not None:
            placed.append(self._open_order("LIMIT", symbol, exit_side, qty, tp_price, time, OrderLink(role="TP", for_position=True)))
        return copy.deepcopy(placed)

    def close_position(self, symbol: str, price_source: PriceSource, partial: float = 1.0) -> Trade:
        pos = self._ledger.positions.get(symbol)
        if pos is None or pos.qty == 0:
            raise ValidationFailed(f"No position in {symbol} to close")
        if partial <= 0 or partial > 1:
            raise ValidationFailed("Partial must be between 0 and 1")
        close_qty = int(abs(pos.qty) * partial)
        if close_qty == 0:
            raise ValidationFailed("Close quantity is zero")
        side = "SELL" if pos.qty > 0 else "BUY"
        return self.place_market_order(symbol, side, close_qty, price_source)

    def close_all_positions(self, prices: Mapping[str, PriceSource]) -> List[Trade]:
        results: List[Trade] = []
        for symbol, pos in list(self._ledger.positions.items()):
            if pos.qty == 0 or symbol not in prices:
                continue
            try:
                results.append(self.close_position(symbol, prices[symbol]))
            except PaperTradingError as exc:
                self._log.warning("close_position_failed", extra={"symbol": symbol, "error": str(exc)})
        return results

    # =============================================================== sizing

    def size_by_percent_of_equity(self, percent: float, symbol: str, price_source: PriceSource) -> int:
        quote = resolve_price_source(price_source)
        equity = self._ledger.equity({**self._last_prices, symbol: quote.price})
        return sizing.size_by_percent(equity, percent, quote.price)

    def size_by_risk(
        self,
        symbol: str,
        entry_price: float,
        stop_price: float,
        risk_amount: float,
        price_source: Optional[PriceSource] = None,
    ) -> int:
        entry = resolve_price_source(price_source).price if price_source is not None else entry_price
        return sizing.size_by_risk(entry, stop_price, risk_amount)

    def kelly_size(self, win_rate: float, avg_win: float, avg_loss: float, equity: float, price: float) -> int:
        return sizing.kelly_size(win_rate, avg_win, avg_loss, equity, price)

    # ============================================================= matching

    def process_tick(self, symbol: str, price: float, time: Optional[str] = None) -> List[Trade]:
        """Advance ``symbol`` to ``price``: fill triggered stops, then marketable limits.

        Returns the trades executed on this tick. Never raises: a fill that
        fails marks its order FAILED and drops it from the book.
        """
        tick_price = normalize_price(price)
        if not isinstance(symbol, str) or not symbol or tick_price is None or tick_price <= 0:
            self._log.warning("tick_ignored", extra={"symbol": symbol, "price": price})
            return []

        tick_time = time or now_iso()
        self._last_prices[symbol] = tick_price
        fills: List[Trade] = []

        for order in self._book.matchable(symbol, "STOP"):
            if order.id not in self._book:
                continue
            if not self._stop_triggered(order, tick_price):
                continue
            order.triggered = True
            order.status = "TRIGGERED"
            order.type = "STOP->MARKET"
            trade = self._fill_resting(order, self._apply_slippage(tick_price, order.side), tick_time)
            if trade is not None:
                fills.append(trade)

        for order in self._book.matchable(symbol, "LIMIT"):
            if order.id not in self._book:
                continue
            if not self._limit_marketable(order, tick_price):
                continue
            trade = self._fill_resting(order, self._apply_slippage(order.limit_price, order.side), tick_time)  # type: ignore[arg-type]
            if trade is not None:
                fills.append(trade)

        self._record_equity_point(tick_time)
        return fills

    @staticmethod
    def _stop_triggered(order: Order, price: float) -> bool:
        if order.side == "BUY":
            return price >= order.stop_price  # type: ignore[operator]
        return price <= order.stop_price  # type: ignore[operator]

    @staticmethod
    def _limit_marketable(order: Order, price: float) -> bool:
        if order.side == "BUY":
            return price <= order.limit_price  # type: ignore[operator]
        return price >= order.limit_price  # type: ignore[operator]

    def _fill_resting(self, order: Order, fill_price: float, time: str) -> Optional[Trade]:
        try:
            trade = self._ledger.apply_fill(order.symbol, order.side, order.qty, fill_price, time, order_id=order.id)
        except Exception as exc:
            if not isinstance(exc, PaperTradingError):
                self._log.exception("order_fill_crashed", extra={"order_id": order.id})
            self._fail_order(order, str(exc), time)
            return None

        self._book.remove(order.id)
        order.status = "FILLED"
        self._publish(trade)
        self._publish_status(order, time)

        for sibling in self._book.cancel_siblings(order):
            self._publish_status(sibling, time)
        self._book.activate_children(order.id)
        return trade

    def _fail_order(self, order: Order, reason: str, time: str) -> None:
        self._book.remove(order.id)
        order.status = "FAILED"
        self._log.warning(
            "order_failed",
            extra={"order_id": order.id, "symbol": order.symbol, "type": order.type, "side": order.side, "error": reason},
        )
        self._publish_status(order, time, reason)
        for child in self._book.cancel_dormant_children(order.id):
            self._publish_status(child, time)

    # ============================================================ reporting

    def get_equity(self, prices: PriceMapSource = None) -> float:
        return self._ledger.equity(self._price_map(prices))

    def get_portfolio_snapshot(self, prices: PriceMapSource = None) -> PortfolioSnapshot:
        price_map = self._price_map(prices)
        snap = PortfolioSnapshot(cash=round2(self._ledger.cash), initial_cash=self._ledger.initial_cash)

        total_unrealized = 0.0
        total_realized = 0.0
        for symbol, pos in self._ledger.positions.items():
            if pos.qty == 0 and pos.realized == 0:
                continue
            last = price_map.get(symbol, pos.avg_price)
            unrealized = round2(Ledger.unrealized(pos, last))
            snap.positions.append(
                PositionSnapshot(
                    symbol=symbol,
                    qty=pos.qty,
                    side=pos.side,
                    avg_price=round2(pos.avg_price),
                    realized=round2(pos.realized),
                    last_price=last,
                    unrealized=unrealized,
                    value=round2(last * abs(pos.qty)),
                )
            )
            if pos.qty != 0:
                total_unrealized += unrealized
            total_realized += pos.realized

        snap.total_unrealized = round2(total_unrealized)
        snap.total_realized = round2(total_realized)
        snap.equity = self._ledger.equity(price_map)
        snap.total_pnl = round2(snap.total_realized + snap.total_unrealized)
        snap.return_pct = round4((snap.equity - snap.initial_cash) / snap.initial_cash * 100)
        return snap

    def get_performance_metrics(self) -> PerformanceMetrics:
        m = self._ledger.metrics
        total = m.total_trades
        return PerformanceMetrics(
            total_trades=total,
            winning_trades=m.winning_trades,
            losing_trades=m.losing_trades,
            win_rate=round4(m.winning_trades / total * 100) if total else 0.0,
            largest_win=round2(m.largest_win),
            largest_loss=round2(m.largest_loss),
            avg_win=round2(m.total_win_amount / m.winning_trades) if m.winning_trades else 0.0,
            avg_loss=round2(m.total_loss_amount / m.losing_trades) if m.losing_trades else 0.0,
            profit_factor=round2(m.total_win_amount / m.total_loss_amount) if m.total_loss_amount > 0 else 0.0,
            expectancy=round2((m.total_win_amount - m.total_loss_amount) / total) if total else 0.0,
            total_commission=round2(m.total_commission),
            total_slippage=round2(m.total_slippage),
        )

    def get_positions(self) -> Dict[str, Position]:
        return copy.deepcopy(self._ledger.positions)

    def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return copy.deepcopy(self._book.orders(symbol))

    def get_trade_history(self) -> List[Trade]:
        return list(self._ledger.trades)

    def get_equity_history(self) -> List[EquityPoint]:
        return list(self._equity_history)

    def get_last_prices(self) -> Dict[str, float]:
        return dict(self._last_prices)

    def generate_trade_report(self) -> str:
        return render_trade_report(self._ledger.trades, self.get_performance_metrics())

    def generate_portfolio_report(self, prices: PriceMapSource = None) -> str:
        return render_portfolio_report(self.get_portfolio_snapshot(prices), self._book.orders())

    # ========================================================== persistence

    def reset(self) -> None:
        self._ledger.reset()
        self._book.reset()
        self._equity_history = []
        self._last_prices = {}
        self._log.info("engine_reset", extra={"cash": self._ledger.cash})

    def to_state(self) -> EngineState:
        cfg = self._cfg
        return EngineState(
            cash=self._ledger.cash,
            initial_cash=self._ledger.initial_cash,
            commission_pct=cfg.commission_pct,
            slippage_pct=cfg.slippage_pct,
            allow_short=cfg.allow_short,
            min_trade_value=cfg.min_trade_value,
            margin_multiplier=cfg.margin_multiplier,
            max_position_size=cfg.max_position_size,
            positions=copy.deepcopy(self._ledger.positions),
            open_orders=copy.deepcopy(self._book.orders()),
            trades=list(self._ledger.trades),
            equity_history=list(self._equity_history),
            metrics=copy.deepcopy(self._ledger.metrics),
            last_prices=dict(self._last_prices),
            next_order_id=self._book.next_order_id,
            next_trade_id=self._ledger.next_trade_id,
        )

    def save_state(self, path: str | Path) -> Path:
        return write_state(path, self.to_state())

    def load_state(self, path: str | Path) -> None:
        """Replace all engine state with the snapshot at ``path``.

        The file is read and validated in full first; on any error the live
        state is left untouched and the error propagates.
        """
        state = read_state(path)
        self.restore(state)

    def restore(self, state: EngineState) -> None:
        cfg = EngineConfig(
            initial_cash=state.initial_cash,
            commission_pct=state.commission_pct,
            slippage_pct=state.slippage_pct,
            allow_short=state.allow_short,
            min_trade_value=state.min_trade_value,
            margin_multiplier=state.margin_multiplier,
            max_position_size=state.max_position_size,
        )
        self._cfg = cfg
        self._ledger.cfg = cfg
        self._risk.cfg = cfg
        self._ledger.restore(
            cash=state.cash,
            initial_cash=state.initial_cash,
            positions={symbol: pos for symbol, pos in state.positions.items()},
            trades=list(state.trades),
            metrics=state.metrics,
            next_trade_id=state.next_trade_id,
        )
        self._book.load(state.open_orders, state.next_order_id)
        self._equity_history = list(state.equity_history)
        self._last_prices = dict(state.last_prices)
        self._log.info(
            "engine_restored",
            extra={"cash": self._ledger.cash, "open_orders": len(self._book), "trades": len(self._ledger.trades)},
        )

    # ============================================================== helpers

    @staticmethod
    def _positive(price: Any) -> bool:
        value = normalize_price(price)
        return value is not None and value > 0

    def _validate_resting(self, symbol: str, side: str, qty: int, price: float, label: str) -> None:
        if not self._positive(price):
            raise InvalidPrice(f"{label} price must be > 0")
        self._risk.validate_basic_order(symbol, side, qty)

    def _open_order(
        self,
        order_type: str,
        symbol: str,
        side: str,
        qty: int,
        price: float,
        time: Optional[str],
        attached: Optional[OrderLink],
        active: bool = True,
    ) -> Order:
        order = Order(
            id=self._book.new_id(),
            symbol=symbol,
            type=order_type,  # type: ignore[arg-type]
            side=side,  # type: ignore[arg-type]
            qty=qty,
            time=time or now_iso(),
            limit_price=round2(float(price)) if order_type == "LIMIT" else None,
            stop_price=round2(float(price)) if order_type == "STOP" else None,
            attached=copy.deepcopy(attached),
            active=active,
        )
        self._book.add(order)
        return order

    def _apply_slippage(self, price: float, side: str) -> float:
        if not self._cfg.slippage_pct:
            return price
        factor = 1 + self._cfg.slippage_pct if side == "BUY" else 1 - self._cfg.slippage_pct
        return round2(price * factor)

    def _price_map(self, prices: PriceMapSource) -> Dict[str, float]:
        if prices is None:
            return dict(self._last_prices)
        return {**self._last_prices, **resolve_price_map(prices, self._last_prices)}

    def _record_equity_point(self, time: str) -> None:
        equity = self._ledger.equity(self._last_prices)
        self._equity_history.append(EquityPoint(time=time, equity=equity))

    def _cancel_and_publish(self, order_id: int) -> List[Order]:
        cancelled = self._book.cancel(order_id)
        now = now_iso()
        for order in cancelled:
            self._publish_status(order, now)
        return cancelled

    def _publish(self, event: Any) -> None:
        if self.bus is not None:
            self.bus.publish(event)

    def _publish_status(self, order: Order, time: str, reason: Optional[str] = None) -> None:
        self._publish(
            OrderStatusUpdate(time=time, order_id=order.id, symbol=order.symbol, status=order.status, reason=reason)
        )
