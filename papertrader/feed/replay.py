from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterator

from papertrader.events import Tick
from papertrader.feed.base import PriceFeed
from papertrader.market_data import normalize_price


class CsvReplayFeed(PriceFeed):
    """Replay ticks from a CSV file with ``time,symbol,price`` columns.

    Rows with a missing symbol or an unparseable price are skipped with a
    warning; rows are replayed in file order.
    """

    def __init__(self, path: str | Path) -> None:
        self._log = logging.getLogger("feed.replay")
        self.path = Path(path)

    def ticks(self) -> Iterator[Tick]:
        with self.path.open(newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            for line_no, row in enumerate(reader, start=2):
                symbol = (row.get("symbol") or "").strip()
                price = normalize_price(row.get("price"))
                if not symbol or price is None:
                    self._log.warning("replay_row_skipped", extra={"line": line_no, "row": row})
                    continue
                yield Tick(time=(row.get("time") or "").strip(), symbol=symbol, price=price)
