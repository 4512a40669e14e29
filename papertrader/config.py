from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


Env = Literal["paper", "backtest"]


class LogConfig(BaseModel):
    level: str = "INFO"
    json_logs: bool = Field(default=True, alias="json")
    file: str = "run/papertrader.log"
    max_bytes: int = Field(default=5_000_000, gt=0)
    backup_count: int = Field(default=5, ge=0)
    console: bool = True

    model_config = ConfigDict(populate_by_name=True)


class StorageConfig(BaseModel):
    state_path: str = "run/papertrader_state.json"


class EngineConfig(BaseModel):
    initial_cash: float = Field(default=100_000.0, gt=0)
    commission_pct: float = Field(default=0.0005, ge=0)
    slippage_pct: float = Field(default=0.0002, ge=0)
    allow_short: bool = False
    min_trade_value: float = Field(default=100.0, ge=0)
    margin_multiplier: float = Field(default=1.0, gt=0)
    max_position_size: float = Field(default=1.0, gt=0)  # fraction of equity per symbol


class FeedConfig(BaseModel):
    symbols: list[str] = Field(default_factory=lambda: ["RELIANCE"])
    start_prices: dict[str, float] = Field(default_factory=dict)
    default_start_price: float = Field(default=1000.0, gt=0)
    volatility_pct: float = Field(default=0.002, ge=0)
    seed: Optional[int] = None


class AppConfig(BaseModel):
    env: Env = "paper"
    log: LogConfig = Field(default_factory=LogConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)

    @model_validator(mode="before")
    @classmethod
    def _promote_legacy_engine_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        engine_keys = set(EngineConfig.model_fields)
        promoted = [key for key in list(data) if key in engine_keys]
        if not promoted:
            return data

        engine_data = dict(data.get("engine") or {})
        conflict_keys: list[str] = []
        for key in promoted:
            value = data.pop(key)
            if key in engine_data:
                conflict_keys.append(key)
            else:
                engine_data[key] = value

        logger = logging.getLogger(__name__)
        moved = sorted(set(promoted) - set(conflict_keys))
        if moved:
            logger.warning("Moved top-level %s under engine", ", ".join(moved))
        if conflict_keys:
            logger.warning("Ignoring top-level %s because engine config is set", ", ".join(conflict_keys))

        data["engine"] = engine_data
        return data


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return AppConfig.model_validate(data)
