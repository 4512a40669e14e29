from papertrader.engine import PaperTrader

__all__ = ["PaperTrader"]
