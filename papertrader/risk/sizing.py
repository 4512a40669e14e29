from __future__ import annotations

import math

from papertrader.errors import InvalidInput, NoRiskDefined

KELLY_FRACTION = 0.5
KELLY_CAP = 0.25


def size_by_percent(equity: float, percent: float, price: float) -> int:
    """Shares buyable with ``percent`` of ``equity`` at ``price``, never negative."""
    if price <= 0:
        raise InvalidInput("price must be > 0")
    allocated = equity * (percent / 100.0)
    return max(math.floor(allocated / price), 0)


def size_by_risk(entry_price: float, stop_price: float, risk_amount: float) -> int:
    """Shares such that hitting the stop loses about ``risk_amount``; at least 1."""
    per_share_risk = abs(entry_price - stop_price)
    if per_share_risk == 0:
        raise NoRiskDefined("Stop price equals entry price - no risk defined")
    return max(math.floor(risk_amount / per_share_risk), 1)


def kelly_size(win_rate: float, avg_win: float, avg_loss: float, equity: float, price: float) -> int:
    """Half-Kelly position size, capped at 25% of equity.

    ``kelly = (b*p - q) / b`` with ``b = avg_win / avg_loss``. A non-positive
    edge sizes to zero.
    """
    if avg_loss <= 0:
        raise InvalidInput("avg_loss must be > 0")
    if win_rate < 0 or win_rate > 1:
        raise InvalidInput("win_rate must be 0-1")
    if price <= 0:
        raise InvalidInput("price must be > 0")

    b = avg_win / avg_loss
    if b <= 0:
        return 0
    p = win_rate
    q = 1 - p
    kelly = (b * p - q) / b
    if kelly <= 0:
        return 0

    safe_pct = max(0.0, min(kelly * KELLY_FRACTION, KELLY_CAP))
    return math.floor(equity * safe_pct / price)
