from papertrader.risk.limits import RiskEngine
from papertrader.risk.sizing import kelly_size, size_by_percent, size_by_risk

__all__ = ["RiskEngine", "kelly_size", "size_by_percent", "size_by_risk"]
