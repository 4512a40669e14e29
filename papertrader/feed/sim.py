from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, Optional

from papertrader.config import FeedConfig
from papertrader.events import Tick
from papertrader.feed.base import PriceFeed
from papertrader.models import round2


class SimFeed(PriceFeed):
    """Random-walk ticks for dry runs and demos.

    Each step moves every symbol by a gaussian percentage with standard
    deviation ``volatility_pct`` and emits one tick per symbol. Prices never
    drop below one tick (0.01).
    """

    def __init__(self, cfg: FeedConfig, steps: int = 100, start: Optional[datetime] = None, interval_seconds: float = 1.0) -> None:
        self._log = logging.getLogger("feed.sim")
        self.cfg = cfg
        self.steps = steps
        self.interval = timedelta(seconds=interval_seconds)
        self._clock = start or datetime.now(timezone.utc)
        self._rng = random.Random(cfg.seed)
        self._last: Dict[str, float] = {s: float(cfg.start_prices.get(s, cfg.default_start_price)) for s in cfg.symbols}

    @property
    def last_prices(self) -> Dict[str, float]:
        return dict(self._last)

    def ticks(self) -> Iterator[Tick]:
        self._log.info("sim_feed_started", extra={"symbols": list(self._last), "steps": self.steps, "seed": self.cfg.seed})
        for _ in range(self.steps):
            self._clock += self.interval
            ts = self._clock.isoformat()
            for symbol, last in self._last.items():
                move = self._rng.gauss(0.0, self.cfg.volatility_pct)
                price = max(round2(last * (1 + move)), 0.01)
                self._last[symbol] = price
                yield Tick(time=ts, symbol=symbol, price=price)
