from papertrader.feed.base import PriceFeed
from papertrader.feed.replay import CsvReplayFeed
from papertrader.feed.sim import SimFeed

__all__ = ["CsvReplayFeed", "PriceFeed", "SimFeed"]
