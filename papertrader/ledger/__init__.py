from papertrader.ledger.ledger import Ledger

__all__ = ["Ledger"]
