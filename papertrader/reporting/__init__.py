from papertrader.reporting.report import render_portfolio_report, render_trade_report

__all__ = ["render_portfolio_report", "render_trade_report"]
