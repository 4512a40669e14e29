from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from papertrader.models import EquityPoint, Metrics, Order, Position, Trade

_log = logging.getLogger("persistence")


class EngineState(BaseModel):
    """Flat snapshot of a whole engine, as written to the state file.

    Older snapshots may lack ``margin_multiplier``, ``max_position_size`` or
    ``metrics``; those fall back to 1, 1.0 and zeroed metrics.
    """

    model_config = ConfigDict(extra="ignore")

    cash: float
    initial_cash: float
    commission_pct: float = 0.0005
    slippage_pct: float = 0.0002
    allow_short: bool = False
    min_trade_value: float = 100.0
    margin_multiplier: float = 1.0
    max_position_size: float = 1.0
    positions: Dict[str, Position] = Field(default_factory=dict)
    open_orders: List[Order] = Field(default_factory=list)
    trades: List[Trade] = Field(default_factory=list)
    equity_history: List[EquityPoint] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
    last_prices: Dict[str, float] = Field(default_factory=dict)
    next_order_id: int = 1
    next_trade_id: int = 1

    @field_validator("margin_multiplier", "max_position_size", mode="before")
    @classmethod
    def _falsy_to_default(cls, value: Any) -> Any:
        if value in (None, 0):
            return 1.0
        return value

    @field_validator("metrics", mode="before")
    @classmethod
    def _null_metrics(cls, value: Any) -> Any:
        return Metrics() if value is None else value


def write_state(path: str | Path, state: EngineState) -> Path:
    """Write ``state`` as JSON, replacing ``path`` only once the write succeeded."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = state.model_dump_json(indent=2)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    _log.info(
        "state_saved",
        extra={"path": str(target), "open_orders": len(state.open_orders), "trades": len(state.trades)},
    )
    return target


def read_state(path: str | Path) -> EngineState:
    p = Path(path)
    state = EngineState.model_validate_json(p.read_text(encoding="utf-8"))
    _log.info(
        "state_loaded",
        extra={"path": str(p), "open_orders": len(state.open_orders), "trades": len(state.trades)},
    )
    return state
