from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from papertrader.config import AppConfig, load_config
from papertrader.engine import PaperTrader
from papertrader.errors import PaperTradingError
from papertrader.feed import CsvReplayFeed, PriceFeed, SimFeed
from papertrader.logging_setup import setup_logging


app = typer.Typer(add_completion=False, help="Local paper-trading engine.")

ORDER_TYPES = ("MARKET", "LIMIT", "STOP")


def _open_engine(cfg: AppConfig) -> PaperTrader:
    """Engine seeded from config, then from the state file when one exists."""
    engine = PaperTrader(cfg.engine)
    state_path = Path(cfg.storage.state_path)
    if state_path.exists():
        try:
            engine.load_state(state_path)
        except (ValidationError, OSError) as exc:
            _fail(logging.getLogger("cli"), "load", exc)
    return engine


def _setup(config: str, name: str) -> tuple[AppConfig, logging.Logger]:
    cfg: AppConfig = load_config(config)
    setup_logging(cfg.log)
    return cfg, logging.getLogger(name)


def _fail(log: logging.Logger, action: str, exc: Exception) -> None:
    log.error(f"{action}_failed", extra={"error": str(exc)})
    typer.echo(f"{action.capitalize()} failed: {exc}")
    raise typer.Exit(code=1)


def _side(value: str) -> str:
    side = value.upper()
    if side not in ("BUY", "SELL"):
        typer.echo("Side must be BUY or SELL.")
        raise typer.Exit(code=1)
    return side


def _drive(engine: PaperTrader, feed: PriceFeed, log: logging.Logger) -> tuple[int, int]:
    ticks = 0
    fills = 0
    for tick in feed.ticks():
        fills += len(engine.process_tick(tick.symbol, tick.price, tick.time or None))
        ticks += 1
    log.info("feed_complete", extra={"ticks": ticks, "fills": fills})
    return ticks, fills


@app.command()
def order(
    side: str = typer.Argument(..., help="BUY or SELL"),
    symbol: str = typer.Argument(...),
    qty: int = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    price: float = typer.Option(..., "--price", "-p", help="Market price, or limit/stop trigger price"),
    order_type: str = typer.Option("MARKET", "--type", "-t", help="MARKET, LIMIT or STOP"),
) -> None:
    """Place a market, limit or stop order against the saved state."""
    cfg, log = _setup(config, "cli.order")
    side_up = _side(side)
    type_up = order_type.upper()
    if type_up not in ORDER_TYPES:
        typer.echo("type must be MARKET, LIMIT or STOP.")
        raise typer.Exit(code=1)

    try:
        engine = _open_engine(cfg)
        if type_up == "MARKET":
            trade = engine.place_market_order(symbol, side_up, qty, price)
            typer.echo(f"filled trade_id={trade.id} {trade.side} {trade.qty} {trade.symbol} @ {trade.price} pnl={trade.pnl}")
        elif type_up == "LIMIT":
            o = engine.place_limit_order(symbol, side_up, qty, price)
            typer.echo(f"order_id={o.id} LIMIT {o.side} {o.qty} {o.symbol} @ {o.limit_price} status={o.status}")
        else:
            o = engine.place_stop_order(symbol, side_up, qty, price)
            typer.echo(f"order_id={o.id} STOP {o.side} {o.qty} {o.symbol} @ {o.stop_price} status={o.status}")
        engine.save_state(cfg.storage.state_path)
    except PaperTradingError as exc:
        _fail(log, "order", exc)


@app.command()
def bracket(
    side: str = typer.Argument(..., help="BUY or SELL"),
    symbol: str = typer.Argument(...),
    qty: int = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    entry: float = typer.Option(..., "--entry"),
    stop_loss: float = typer.Option(..., "--stop-loss"),
    target: float = typer.Option(..., "--target"),
) -> None:
    """Place a limit entry with stop-loss and take-profit exits."""
    cfg, log = _setup(config, "cli.bracket")
    side_up = _side(side)
    try:
        engine = _open_engine(cfg)
        placed = engine.place_bracket_order(symbol, side_up, qty, entry, stop_loss, target)
        engine.save_state(cfg.storage.state_path)
    except PaperTradingError as exc:
        _fail(log, "bracket", exc)
        return
    typer.echo(f"entry_id={placed.entry.id} sl_id={placed.sl.id} tp_id={placed.tp.id}")


@app.command()
def cancel(
    config: str = typer.Option(..., "--config", "-c"),
    order_id: Optional[int] = typer.Option(None, "--id", help="Order id to cancel"),
    all_orders: bool = typer.Option(False, "--all", help="Cancel every open order"),
    symbol: Optional[str] = typer.Option(None, "--symbol", help="With --all, only this symbol"),
) -> None:
    """Cancel one order, or all open orders."""
    cfg, log = _setup(config, "cli.cancel")
    if order_id is None and not all_orders:
        typer.echo("Pass --id or --all.")
        raise typer.Exit(code=1)

    engine = _open_engine(cfg)
    if all_orders:
        count = engine.cancel_all_orders(symbol)
        typer.echo(f"cancelled {count} order(s)")
    else:
        cancelled = engine.cancel_order(order_id)  # type: ignore[arg-type]
        if cancelled is None:
            typer.echo(f"No open order #{order_id}")
        else:
            typer.echo(f"cancelled order_id={cancelled.id}")
    engine.save_state(cfg.storage.state_path)
    log.info("cancel_complete", extra={"order_id": order_id, "all": all_orders, "symbol": symbol})


@app.command()
def tick(
    symbol: str = typer.Argument(...),
    price: float = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    time: Optional[str] = typer.Option(None, "--time", help="ISO-8601 tick time"),
) -> None:
    """Feed one price tick to the engine and fill whatever it triggers."""
    cfg, _ = _setup(config, "cli.tick")
    engine = _open_engine(cfg)
    fills = engine.process_tick(symbol, price, time)
    for t in fills:
        typer.echo(f"filled trade_id={t.id} order_id={t.order_id} {t.side} {t.qty} {t.symbol} @ {t.price} pnl={t.pnl}")
    typer.echo(f"equity={engine.get_equity()} open_orders={len(engine.get_open_orders())}")
    engine.save_state(cfg.storage.state_path)


@app.command()
def replay(
    ticks_path: str = typer.Argument(..., help="CSV with time,symbol,price columns"),
    config: str = typer.Option(..., "--config", "-c"),
) -> None:
    """Replay a CSV of ticks through the engine."""
    cfg, log = _setup(config, "cli.replay")
    if not Path(ticks_path).exists():
        typer.echo(f"Tick file not found: {ticks_path}")
        raise typer.Exit(code=1)
    engine = _open_engine(cfg)
    count, fills = _drive(engine, CsvReplayFeed(ticks_path), log)
    engine.save_state(cfg.storage.state_path)
    typer.echo(f"ticks={count} fills={fills} equity={engine.get_equity()}")


@app.command()
def simulate(
    config: str = typer.Option(..., "--config", "-c"),
    steps: int = typer.Option(100, "--steps", "-n"),
) -> None:
    """Drive the engine with the random-walk feed from config."""
    cfg, log = _setup(config, "cli.simulate")
    engine = _open_engine(cfg)
    start_prices = {**cfg.feed.start_prices, **engine.get_last_prices()}
    feed_cfg = cfg.feed.model_copy(update={"start_prices": start_prices})
    count, fills = _drive(engine, SimFeed(feed_cfg, steps=steps), log)
    engine.save_state(cfg.storage.state_path)
    typer.echo(f"ticks={count} fills={fills} equity={engine.get_equity()}")


@app.command()
def close(
    symbol: str = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    price: float = typer.Option(..., "--price", "-p"),
    partial: float = typer.Option(1.0, "--partial", help="Fraction of the position to close, (0, 1]"),
) -> None:
    """Close all or part of a position at market."""
    cfg, log = _setup(config, "cli.close")
    try:
        engine = _open_engine(cfg)
        trade = engine.close_position(symbol, price, partial)
        engine.save_state(cfg.storage.state_path)
    except PaperTradingError as exc:
        _fail(log, "close", exc)
        return
    typer.echo(f"closed trade_id={trade.id} {trade.side} {trade.qty} {trade.symbol} @ {trade.price} pnl={trade.pnl}")


@app.command()
def report(config: str = typer.Option(..., "--config", "-c")) -> None:
    """Print the trade history and portfolio reports."""
    cfg, _ = _setup(config, "cli.report")
    engine = _open_engine(cfg)
    typer.echo(engine.generate_trade_report())
    typer.echo("")
    typer.echo(engine.generate_portfolio_report())


@app.command()
def reset(
    config: str = typer.Option(..., "--config", "-c"),
    confirm: bool = typer.Option(False, "--confirm", help="Required to wipe state"),
) -> None:
    """Wipe positions, orders and history back to initial cash."""
    if not confirm:
        typer.echo("Refusing to reset without --confirm")
        raise typer.Exit(code=1)
    cfg, log = _setup(config, "cli.reset")
    engine = _open_engine(cfg)
    engine.reset()
    engine.save_state(cfg.storage.state_path)
    log.warning("state_reset", extra={"path": cfg.storage.state_path})
    typer.echo(f"reset cash={engine.cash}")


if __name__ == "__main__":
    app()
