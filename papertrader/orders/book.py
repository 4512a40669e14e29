from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from papertrader.models import Order


class OrderBook:
    """Open-order set keyed by order id, in placement order.

    Owns the session-scoped order id counter. Filled, failed and cancelled
    orders leave the book; only PENDING/TRIGGERED orders live here.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger("orders")
        self._orders: Dict[int, Order] = {}
        self.next_order_id = 1

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._orders

    def new_id(self) -> int:
        order_id = self.next_order_id
        self.next_order_id += 1
        return order_id

    def add(self, order: Order) -> None:
        self._orders[order.id] = order
        self._log.info(
            "order_open",
            extra={
                "order_id": order.id,
                "symbol": order.symbol,
                "type": order.type,
                "side": order.side,
                "qty": order.qty,
                "limit_price": order.limit_price,
                "stop_price": order.stop_price,
                "active": order.active,
            },
        )

    def get(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)

    def orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [o for o in self._orders.values() if symbol is None or o.symbol == symbol]

    def matchable(self, symbol: str, order_type: str) -> List[Order]:
        """Active orders of one type for ``symbol``, frozen at call time."""
        return [o for o in self._orders.values() if o.symbol == symbol and o.type == order_type and o.active]

    def remove(self, order_id: int) -> Optional[Order]:
        return self._orders.pop(order_id, None)

    def cancel(self, order_id: int) -> List[Order]:
        """Cancel one order plus any dormant exit legs waiting on it.

        Returns every order that was cancelled, the requested one first;
        an empty list when the id is not open.
        """
        order = self._orders.pop(order_id, None)
        if order is None:
            return []
        order.status = "CANCELLED"
        cancelled = [order]
        cancelled.extend(self._cancel_where(self._dormant_children(order_id)))
        self._log.info("order_cancelled", extra={"order_ids": [o.id for o in cancelled]})
        return cancelled

    def cancel_siblings(self, order: Order) -> List[Order]:
        """OCO: once an exit leg fills, the other leg of the same parent goes.

        Position-attached exits have no parent; they form one group per symbol.
        """
        link = order.attached
        if link is None:
            return []
        if order.is_exit_leg:
            siblings = [
                o
                for o in self._orders.values()
                if o.id != order.id and o.is_exit_leg and o.attached.parent_id == link.parent_id  # type: ignore[union-attr]
            ]
        elif link.for_position:
            siblings = [
                o
                for o in self._orders.values()
                if o.id != order.id and o.symbol == order.symbol and o.attached is not None and o.attached.for_position
            ]
        else:
            return []
        cancelled = self._cancel_where(siblings)
        if cancelled:
            self._log.info(
                "oco_cancelled",
                extra={"order_id": order.id, "parent_id": link.parent_id, "cancelled": [o.id for o in cancelled]},
            )
        return cancelled

    def cancel_dormant_children(self, parent_id: int) -> List[Order]:
        return self._cancel_where(self._dormant_children(parent_id))

    def activate_children(self, parent_id: int) -> List[Order]:
        children = self._dormant_children(parent_id)
        for child in children:
            child.active = True
        if children:
            self._log.info("exits_activated", extra={"parent_id": parent_id, "order_ids": [o.id for o in children]})
        return children

    def reset(self) -> None:
        self._orders = {}
        self.next_order_id = 1

    def load(self, orders: Iterable[Order], next_order_id: int) -> None:
        self._orders = {o.id: o for o in orders}
        highest = max(self._orders, default=0)
        self.next_order_id = max(int(next_order_id), highest + 1, 1)

    def _dormant_children(self, parent_id: int) -> List[Order]:
        return [
            o
            for o in self._orders.values()
            if not o.active and o.is_exit_leg and o.attached.parent_id == parent_id  # type: ignore[union-attr]
        ]

    def _cancel_where(self, orders: List[Order]) -> List[Order]:
        for o in orders:
            self._orders.pop(o.id, None)
            o.status = "CANCELLED"
        return orders
