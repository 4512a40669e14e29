from __future__ import annotations

from typing import Iterable, List

from papertrader.models import Order, PerformanceMetrics, PortfolioSnapshot, Trade, round2

RULE = "=" * 80
THIN_RULE = "-" * 80


def render_trade_report(trades: Iterable[Trade], metrics: PerformanceMetrics, currency: str = "₹") -> str:
    trades = list(trades)
    if not trades:
        return "No trades executed yet."

    c = currency
    lines: List[str] = [RULE, "TRADE HISTORY REPORT", RULE, ""]
    for t in trades:
        lines.append(f"Trade #{t.id} | {t.time}" + (f" | Order #{t.order_id}" if t.order_id is not None else ""))
        lines.append(f"  {t.side} {t.qty} x {t.symbol} @ {c}{t.price}")
        lines.append(f"  Value: {c}{t.value} | Commission: {c}{t.commission} | Slippage: {c}{t.slippage}")
        if t.pnl != 0:
            lines.append(f"  P&L: {c}{t.pnl} ({'gain' if t.pnl > 0 else 'loss'})")
        lines.append("")

    lines += [
        RULE,
        "PERFORMANCE METRICS",
        RULE,
        f"Total Trades: {metrics.total_trades}",
        f"Win Rate: {metrics.win_rate}%",
        f"Winning Trades: {metrics.winning_trades} | Losing Trades: {metrics.losing_trades}",
        f"Largest Win: {c}{metrics.largest_win} | Largest Loss: {c}{metrics.largest_loss}",
        f"Average Win: {c}{metrics.avg_win} | Average Loss: {c}{metrics.avg_loss}",
        f"Profit Factor: {metrics.profit_factor}",
        f"Expectancy: {c}{metrics.expectancy} per trade",
        f"Total Commission Paid: {c}{metrics.total_commission}",
        f"Total Slippage Cost: {c}{metrics.total_slippage}",
        RULE,
    ]
    return "\n".join(lines)


def render_portfolio_report(snapshot: PortfolioSnapshot, open_orders: Iterable[Order], currency: str = "₹") -> str:
    c = currency
    lines: List[str] = [
        RULE,
        "PORTFOLIO SNAPSHOT",
        RULE,
        "",
        f"Cash: {c}{snapshot.cash}",
        f"Initial Capital: {c}{snapshot.initial_cash}",
        f"Current Equity: {c}{snapshot.equity}",
        f"Total Return: {c}{round2(snapshot.equity - snapshot.initial_cash)} ({snapshot.return_pct}%)",
        "",
        f"Total Realized P&L: {c}{snapshot.total_realized}",
        f"Total Unrealized P&L: {c}{snapshot.total_unrealized}",
        f"Total P&L: {c}{snapshot.total_pnl}",
        "",
        THIN_RULE,
        "OPEN POSITIONS",
        THIN_RULE,
    ]

    open_positions = [p for p in snapshot.positions if p.qty != 0]
    if not open_positions:
        lines.append("No open positions.")
    for p in open_positions:
        lines.append(f"{p.symbol} | {p.side}")
        lines.append(f"  Qty: {p.qty} @ Avg {c}{p.avg_price}")
        lines.append(f"  Current: {c}{p.last_price} | Value: {c}{p.value}")
        lines.append(f"  Unrealized P&L: {c}{p.unrealized}")
        if p.realized != 0:
            lines.append(f"  Realized P&L: {c}{p.realized}")
        lines.append("")

    closed = [p for p in snapshot.positions if p.qty == 0]
    if closed:
        lines += [THIN_RULE, "CLOSED POSITIONS", THIN_RULE]
        for p in closed:
            lines.append(f"{p.symbol} | Realized P&L: {c}{p.realized}")

    lines += [THIN_RULE, "OPEN ORDERS", THIN_RULE]
    orders = list(open_orders)
    if not orders:
        lines.append("No open orders.")
    for o in orders:
        lines.append(f"Order #{o.id} | {o.type} | {o.side} {o.qty} x {o.symbol}")
        if o.limit_price is not None:
            lines.append(f"  Limit Price: {c}{o.limit_price}")
        if o.stop_price is not None:
            lines.append(f"  Stop Price: {c}{o.stop_price}")
        lines.append(f"  Status: {o.status}" + ("" if o.active else " (waiting for entry fill)"))
        if o.attached is not None:
            link = f"parent #{o.attached.parent_id}" if o.attached.parent_id is not None else "position"
            lines.append(f"  Type: {o.attached.role} ({link})")
        lines.append("")

    lines.append(RULE)
    return "\n".join(lines)
