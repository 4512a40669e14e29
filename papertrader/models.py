from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

Side = Literal["BUY", "SELL"]
OrderType = Literal["MARKET", "LIMIT", "STOP", "STOP->MARKET"]
OrderStatus = Literal["PENDING", "TRIGGERED", "FILLED", "CANCELLED", "FAILED"]
LinkRole = Literal["SL", "TP"]
PositionSide = Literal["LONG", "SHORT", "FLAT"]

SIDES = ("BUY", "SELL")


def round2(x: float) -> float:
    return round(x + 1e-12 if x >= 0 else x - 1e-12, 2)


def round4(x: float) -> float:
    return round(x + 1e-12 if x >= 0 else x - 1e-12, 4)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def opposite_side(side: str) -> Side:
    return "SELL" if side == "BUY" else "BUY"


@dataclass
class OrderLink:
    """Ties an exit order to its bracket entry (parent_id) or to an open position."""

    role: LinkRole
    parent_id: Optional[int] = None
    for_position: bool = False


@dataclass
class Order:
    id: int
    symbol: str
    type: OrderType
    side: Side
    qty: int
    time: str
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    status: OrderStatus = "PENDING"
    attached: Optional[OrderLink] = None
    triggered: bool = False
    # Bracket exits stay dormant until their entry fills.
    active: bool = True

    @property
    def is_exit_leg(self) -> bool:
        return self.attached is not None and self.attached.parent_id is not None


@dataclass
class Position:
    symbol: str
    qty: int = 0
    avg_price: float = 0.0
    realized: float = 0.0

    @property
    def side(self) -> PositionSide:
        if self.qty > 0:
            return "LONG"
        if self.qty < 0:
            return "SHORT"
        return "FLAT"


@dataclass(frozen=True)
class Trade:
    id: int
    order_id: Optional[int]
    time: str
    symbol: str
    side: Side
    qty: int
    price: float
    value: float
    commission: float
    slippage: float
    pnl: float = 0.0


@dataclass
class Metrics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_commission: float = 0.0
    total_slippage: float = 0.0
    total_win_amount: float = 0.0
    total_loss_amount: float = 0.0


@dataclass(frozen=True)
class EquityPoint:
    time: str
    equity: float


@dataclass(frozen=True)
class BracketOrder:
    entry: Order
    sl: Order
    tp: Order


@dataclass
class PositionSnapshot:
    symbol: str
    qty: int
    side: PositionSide
    avg_price: float
    realized: float
    last_price: float
    unrealized: float
    value: float


@dataclass
class PortfolioSnapshot:
    cash: float
    initial_cash: float
    positions: list[PositionSnapshot] = field(default_factory=list)
    total_unrealized: float = 0.0
    total_realized: float = 0.0
    equity: float = 0.0
    total_pnl: float = 0.0
    return_pct: float = 0.0


@dataclass
class PerformanceMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # percent
    largest_win: float
    largest_loss: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    expectancy: float
    total_commission: float
    total_slippage: float
