from __future__ import annotations

import inspect
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from papertrader.errors import InvalidPriceSource
from papertrader.models import now_iso

_MAX_PROVIDER_DEPTH = 8


@dataclass(frozen=True)
class PriceQuote:
    price: float
    time: str


# A price source is a literal number, a {price, time} snapshot (PriceQuote or
# mapping) or a zero-argument provider returning any of those.
PriceSource = Union[float, int, PriceQuote, Mapping[str, Any], Callable[[], Any]]
PriceMapSource = Union[None, Mapping[str, float], Callable[[], Mapping[str, float]]]


def normalize_price(value: Any) -> Optional[float]:
    """Convert feed values to float, mapping NaN or invalid inputs to None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def is_valid_price(value: Any) -> bool:
    """Return True when price is a finite real number strictly above zero."""
    number = normalize_price(value)
    return number is not None and number > 0


def resolve_price_source(source: PriceSource, *, _depth: int = 0) -> PriceQuote:
    if _depth > _MAX_PROVIDER_DEPTH:
        raise InvalidPriceSource("Price provider nesting too deep")

    if isinstance(source, PriceQuote):
        return source

    if isinstance(source, (int, float)) and not isinstance(source, bool):
        price = normalize_price(source)
        if price is None:
            raise InvalidPriceSource(f"Invalid price value: {source!r}")
        return PriceQuote(price=price, time=now_iso())

    if isinstance(source, Mapping):
        if "price" not in source:
            raise InvalidPriceSource("Price snapshot is missing 'price'")
        price = normalize_price(source["price"])
        if price is None:
            raise InvalidPriceSource(f"Invalid price value: {source['price']!r}")
        return PriceQuote(price=price, time=str(source.get("time") or now_iso()))

    if callable(source):
        result = source()
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise InvalidPriceSource("Asynchronous price providers must be awaited by the caller")
        return resolve_price_source(result, _depth=_depth + 1)

    raise InvalidPriceSource(f"Invalid price provider: {type(source).__name__}")


def resolve_price_map(prices: PriceMapSource, fallback: Mapping[str, float]) -> Dict[str, float]:
    """Resolve a price map argument: None uses ``fallback``, callables are invoked."""
    if prices is None:
        return dict(fallback)
    if callable(prices):
        prices = prices()
    if not isinstance(prices, Mapping):
        raise InvalidPriceSource(f"Price map must be a mapping, got {type(prices).__name__}")
    if not prices:
        return dict(fallback)
    resolved: Dict[str, float] = {}
    for symbol, value in prices.items():
        price = normalize_price(value)
        if price is not None:
            resolved[symbol] = price
    return resolved
