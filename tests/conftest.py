from __future__ import annotations

from typing import Any, Callable

import pytest

from papertrader.config import EngineConfig
from papertrader.engine import PaperTrader


@pytest.fixture
def make_engine() -> Callable[..., PaperTrader]:
    """Engine factory; costs and the minimum trade value default to zero."""

    def _make(**overrides: Any) -> PaperTrader:
        params: dict[str, Any] = {"commission_pct": 0.0, "slippage_pct": 0.0, "min_trade_value": 0.0}
        params.update(overrides)
        return PaperTrader(EngineConfig(**params))

    return _make
