from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from papertrader.models import OrderStatus


@dataclass(frozen=True)
class Tick:
    time: str
    symbol: str
    price: float


@dataclass(frozen=True)
class OrderStatusUpdate:
    time: str
    order_id: int
    symbol: str
    status: OrderStatus
    reason: Optional[str] = None
