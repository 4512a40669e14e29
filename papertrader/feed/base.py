from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from papertrader.events import Tick


class PriceFeed(ABC):
    """Source of price ticks driving ``PaperTrader.process_tick``."""

    @abstractmethod
    def ticks(self) -> Iterator[Tick]:
        """Yield ticks in time order. Finite feeds stop when exhausted."""
        raise NotImplementedError
