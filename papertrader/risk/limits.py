from __future__ import annotations

import logging
from typing import Any, Mapping

from papertrader.config import EngineConfig
from papertrader.errors import (
    InsufficientCash,
    InvalidPrice,
    PositionLimitExceeded,
    ShortingDisabled,
    ValidationFailed,
)
from papertrader.ledger import Ledger
from papertrader.models import SIDES, round2


class RiskEngine:
    """Pre-trade checks. Every method raises and never mutates the ledger."""

    def __init__(self, cfg: EngineConfig) -> None:
        self.cfg = cfg
        self._log = logging.getLogger("risk")

    def validate_basic_order(self, symbol: Any, side: Any, qty: Any) -> None:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValidationFailed("Invalid symbol")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationFailed("Quantity must be positive integer")
        if side not in SIDES:
            raise ValidationFailed("Side must be BUY or SELL")

    def validate_order(self, ledger: Ledger, symbol: str, side: str, qty: int, price: float) -> None:
        self.validate_basic_order(symbol, side, qty)

        if price <= 0:
            raise InvalidPrice("Price must be > 0")

        trade_value = price * qty
        if trade_value < self.cfg.min_trade_value:
            raise ValidationFailed(f"Trade value {round2(trade_value)} below minimum {self.cfg.min_trade_value}")

        if side == "BUY":
            total_cost = round2(trade_value * (1 + self.cfg.commission_pct + self.cfg.slippage_pct))
            required = round2(total_cost / self.cfg.margin_multiplier)
            if ledger.cash < required:
                raise InsufficientCash(f"Insufficient cash: need {required}, have {round2(ledger.cash)}")
        else:
            held = ledger.position_qty(symbol)
            # Adding to an existing short needs no shorting permission.
            if not self.cfg.allow_short and 0 <= held < qty:
                raise ShortingDisabled(f"Cannot sell {qty} shares - only have {max(held, 0)}")

    def check_position_size_limit(
        self,
        ledger: Ledger,
        symbol: str,
        side: str,
        qty: int,
        price: float,
        last_prices: Mapping[str, float],
    ) -> None:
        current = ledger.position_qty(symbol)
        projected = current + qty if side == "BUY" else current - qty
        if abs(projected) <= abs(current) and projected * current >= 0:
            # Reducing exposure in the same direction is always allowed.
            return
        position_value = abs(projected) * price

        prices = {**last_prices, symbol: price}
        equity = ledger.equity(prices)
        limit = self.cfg.max_position_size * equity

        if equity <= 0 or position_value > limit:
            self._log.warning(
                "position_limit_rejected",
                extra={
                    "symbol": symbol,
                    "side": side,
                    "qty": qty,
                    "projected_qty": projected,
                    "position_value": round2(position_value),
                    "equity": equity,
                    "max_position_size": self.cfg.max_position_size,
                },
            )
            raise PositionLimitExceeded(
                f"Position size would exceed {self.cfg.max_position_size * 100:g}% limit "
                f"({round2(position_value)} > {round2(limit)})"
            )
