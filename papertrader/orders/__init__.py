from papertrader.orders.book import OrderBook

__all__ = ["OrderBook"]
