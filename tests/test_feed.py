from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from papertrader.config import FeedConfig
from papertrader.feed import CsvReplayFeed, SimFeed


def _sim(seed: int) -> SimFeed:
    cfg = FeedConfig(symbols=["ITC", "TCS"], start_prices={"ITC": 400}, seed=seed)
    return SimFeed(cfg, steps=20, start=datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc))


def test_sim_feed_is_deterministic_for_a_seed() -> None:
    a = list(_sim(7).ticks())
    b = list(_sim(7).ticks())
    c = list(_sim(8).ticks())

    assert a == b
    assert a != c
    assert len(a) == 40
    assert {t.symbol for t in a} == {"ITC", "TCS"}
    assert all(t.price >= 0.01 for t in a)
    assert a[0].time == "2024-01-02T09:15:01+00:00"


def test_sim_feed_uses_start_prices() -> None:
    feed = _sim(7)
    assert feed.last_prices == {"ITC": 400.0, "TCS": 1000.0}


def test_replay_feed_skips_bad_rows(tmp_path: Path) -> None:
    path = tmp_path / "ticks.csv"
    path.write_text(
        "time,symbol,price\n"
        "2024-01-02T09:15:00Z,ITC,400\n"
        "2024-01-02T09:15:01Z,,401\n"
        "2024-01-02T09:15:02Z,ITC,abc\n"
        "2024-01-02T09:15:03Z,TCS,3500.5\n"
    )
    ticks = list(CsvReplayFeed(path).ticks())

    assert [(t.symbol, t.price) for t in ticks] == [("ITC", 400.0), ("TCS", 3500.5)]
    assert ticks[0].time == "2024-01-02T09:15:00Z"


def test_replay_drives_engine(make_engine, tmp_path: Path) -> None:
    path = tmp_path / "ticks.csv"
    path.write_text("time,symbol,price\nt1,ITC,101\nt2,ITC,98\nt3,ITC,112\n")
    e = make_engine()
    b = e.place_bracket_order("ITC", "BUY", 10, 100, 95, 110)

    fills = []
    for tick in CsvReplayFeed(path).ticks():
        fills += e.process_tick(tick.symbol, tick.price, tick.time)

    assert [t.order_id for t in fills] == [b.entry.id, b.tp.id]
    assert [p.time for p in e.get_equity_history()] == ["t1", "t2", "t3"]
