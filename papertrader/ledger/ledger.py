from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from papertrader.config import EngineConfig
from papertrader.errors import InsufficientCash, ShortingDisabled, ValidationFailed
from papertrader.models import Metrics, Position, Trade, round2


class Ledger:
    """Cash, per-symbol positions, executed trades and running metrics.

    Buys debit (value + commission + slippage) / m and short sales credit
    (value - commission - slippage) / m, where m is ``margin_multiplier``.
    Selling out of a long credits the net proceeds unscaled. Each fill
    checks its preconditions before touching any state, so a rejected fill
    leaves the ledger as it was.
    """

    def __init__(self, cfg: EngineConfig) -> None:
        self._log = logging.getLogger("ledger")
        self.cfg = cfg
        self.initial_cash = float(cfg.initial_cash)
        self.cash = self.initial_cash
        self.positions: Dict[str, Position] = {}
        self.trades: List[Trade] = []
        self.metrics = Metrics()
        self.next_trade_id = 1

    # ------------------------------------------------------------------ fills

    def apply_fill(
        self,
        symbol: str,
        side: str,
        qty: int,
        price: float,
        time: str,
        order_id: Optional[int] = None,
    ) -> Trade:
        if qty <= 0:
            raise ValidationFailed("Quantity must be > 0")
        fill_price = round2(price)
        value = round2(fill_price * qty)
        commission = round2(abs(value) * self.cfg.commission_pct)
        slippage = round2(abs(value) * self.cfg.slippage_pct)

        if side == "BUY":
            pnl = self._buy(symbol, qty, fill_price, value, commission, slippage)
        elif side == "SELL":
            pnl = self._sell(symbol, qty, fill_price, value, commission, slippage)
        else:
            raise ValidationFailed(f"Unknown side: {side}")

        self.metrics.total_commission = round2(self.metrics.total_commission + commission)
        self.metrics.total_slippage = round2(self.metrics.total_slippage + slippage)
        return self._record_trade(symbol, side, qty, fill_price, value, commission, slippage, pnl, time, order_id)

    def required_cash(self, value: float, commission: float, slippage: float) -> float:
        return round2(round2(value + commission + slippage) / self.cfg.margin_multiplier)

    def _buy(self, symbol: str, qty: int, price: float, value: float, commission: float, slippage: float) -> float:
        required = self.required_cash(value, commission, slippage)
        if self.cash < required:
            raise InsufficientCash(f"Insufficient cash. Need {required}, have {round2(self.cash)}")

        pos = self.positions.get(symbol)
        pnl = 0.0
        if pos is None or pos.qty == 0:
            realized = pos.realized if pos else 0.0
            pos = Position(symbol=symbol, qty=qty, avg_price=price, realized=realized)
        elif pos.qty > 0:
            new_qty = pos.qty + qty
            pos.avg_price = (pos.avg_price * pos.qty + price * qty) / new_qty
            pos.qty = new_qty
        else:
            cover_qty = min(qty, abs(pos.qty))
            pnl = round2((pos.avg_price - price) * cover_qty)
            pos.realized = round2(pos.realized + pnl)
            pos.qty += cover_qty
            self._update_trade_metrics(pnl)
            remaining = qty - cover_qty
            if remaining > 0:
                # Realized P&L carries over into the new long leg.
                pos.qty = remaining
                pos.avg_price = price

        self.cash = round2(self.cash - required)
        self._store(pos)
        return pnl

    def _sell(self, symbol: str, qty: int, price: float, value: float, commission: float, slippage: float) -> float:
        pos = self.positions.get(symbol)
        if (pos is None or pos.qty == 0) and not self.cfg.allow_short:
            raise ShortingDisabled(f"Cannot short {symbol} - shorting not allowed")
        if pos is not None and 0 < pos.qty < qty and not self.cfg.allow_short:
            raise ShortingDisabled(f"Not enough qty to sell: have {pos.qty}, trying to sell {qty}")

        pnl = 0.0
        short_proceeds = round2(round2(value - commission - slippage) / self.cfg.margin_multiplier)
        if pos is None or pos.qty == 0:
            realized = pos.realized if pos else 0.0
            pos = Position(symbol=symbol, qty=-qty, avg_price=price, realized=realized)
            credit = short_proceeds
        elif pos.qty > 0:
            sell_qty = min(qty, pos.qty)
            pnl = round2((price - pos.avg_price) * sell_qty)
            pos.realized = round2(pos.realized + pnl)
            pos.qty -= sell_qty
            self._update_trade_metrics(pnl)
            # Closing a long returns the sale proceeds unscaled by the margin multiplier.
            credit = round2(price * sell_qty - commission - slippage)
            remaining = qty - sell_qty
            if remaining > 0:
                pos.qty = -remaining
                pos.avg_price = price
                credit = round2(credit + round2(round2(price * remaining) / self.cfg.margin_multiplier))
        else:
            new_qty = pos.qty - qty
            pos.avg_price = (pos.avg_price * abs(pos.qty) + price * qty) / abs(new_qty)
            pos.qty = new_qty
            credit = short_proceeds

        self.cash = round2(self.cash + credit)
        self._store(pos)
        return pnl

    def _store(self, pos: Position) -> None:
        # Flat positions that realized something stay as an audit trail.
        if pos.qty == 0 and pos.realized == 0:
            self.positions.pop(pos.symbol, None)
        else:
            self.positions[pos.symbol] = pos

    def _record_trade(
        self,
        symbol: str,
        side: str,
        qty: int,
        price: float,
        value: float,
        commission: float,
        slippage: float,
        pnl: float,
        time: str,
        order_id: Optional[int],
    ) -> Trade:
        trade = Trade(
            id=self.next_trade_id,
            order_id=order_id,
            time=time,
            symbol=symbol,
            side=side,  # type: ignore[arg-type]
            qty=qty,
            price=price,
            value=value,
            commission=commission,
            slippage=slippage,
            pnl=round2(pnl),
        )
        self.next_trade_id += 1
        self.trades.append(trade)
        self.metrics.total_trades += 1

        pos = self.positions.get(symbol)
        self._log.info(
            "fill_applied",
            extra={
                "trade_id": trade.id,
                "order_id": order_id,
                "symbol": symbol,
                "side": side,
                "qty": qty,
                "price": price,
                "pnl": trade.pnl,
                "pos_qty": pos.qty if pos else 0,
                "pos_avg": pos.avg_price if pos else 0.0,
                "cash": self.cash,
            },
        )
        return trade

    def _update_trade_metrics(self, pnl: float) -> None:
        m = self.metrics
        if pnl > 0:
            m.winning_trades += 1
            m.largest_win = max(m.largest_win, pnl)
            m.total_win_amount = round2(m.total_win_amount + pnl)
        elif pnl < 0:
            m.losing_trades += 1
            m.largest_loss = min(m.largest_loss, pnl)
            m.total_loss_amount = round2(m.total_loss_amount + abs(pnl))

    # ------------------------------------------------------------- valuation

    @staticmethod
    def unrealized(pos: Position, last_price: float) -> float:
        if pos.qty == 0:
            return 0.0
        return (last_price - pos.avg_price) * pos.qty

    def equity(self, prices: Mapping[str, float]) -> float:
        """Cash plus unrealized P&L of open positions at ``prices``.

        A symbol missing from ``prices`` is marked at its average price and
        contributes nothing.
        """
        unrealized = 0.0
        for symbol, pos in self.positions.items():
            if pos.qty == 0:
                continue
            unrealized += self.unrealized(pos, prices.get(symbol, pos.avg_price))
        return round2(self.cash + unrealized)

    def position_qty(self, symbol: str) -> int:
        pos = self.positions.get(symbol)
        return pos.qty if pos else 0

    # ------------------------------------------------------------------ state

    def reset(self) -> None:
        self.cash = self.initial_cash
        self.positions = {}
        self.trades = []
        self.metrics = Metrics()
        self.next_trade_id = 1

    def restore(
        self,
        *,
        cash: float,
        initial_cash: float,
        positions: Mapping[str, Position],
        trades: List[Trade],
        metrics: Metrics,
        next_trade_id: int,
    ) -> None:
        self.cash = float(cash)
        self.initial_cash = float(initial_cash)
        self.positions = dict(positions)
        self.trades = list(trades)
        self.metrics = metrics
        highest = max((t.id for t in self.trades), default=0)
        self.next_trade_id = max(int(next_trade_id), highest + 1, 1)
