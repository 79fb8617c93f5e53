import itertools
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from strategy.execution import ExecutionVenue
from strategy.execution_types import FillEvent, OrderStatus, OrderTicket


class PaperVenue(ExecutionVenue):
    """In-memory venue: records orders and holdings, fills only when asked to."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._orders: Dict[int, OrderTicket] = {}
        self._holdings: Dict[str, int] = {}

    @property
    def orders(self) -> Mapping[int, OrderTicket]:
        return MappingProxyType(self._orders)

    def holdings(self, symbol: str) -> int:
        return self._holdings.get(symbol, 0)

    def open_orders(self, symbol: Optional[str] = None) -> List[OrderTicket]:
        return [
            ticket for ticket in self._orders.values()
            if ticket.is_open and (symbol is None or ticket.symbol == symbol)
        ]

    def submit_limit_order(self, symbol: str, signed_quantity: int, limit_price: float, tag: str) -> int:
        return self._create(symbol, signed_quantity, "limit", limit_price, tag)

    def cancel_open_orders(self, symbol: str) -> int:
        cancelled = 0
        for ticket in self.open_orders(symbol):
            ticket.status = "canceled"
            cancelled += 1
        return cancelled

    def liquidate(self, symbol: str, tag: str) -> List[int]:
        self.cancel_open_orders(symbol)
        held = self.holdings(symbol)
        if held == 0:
            return []
        return [self._create(symbol, -held, "market", None, tag)]

    def fill(self, order_id: int, price: float, quantity: Optional[int] = None) -> FillEvent:
        """Fill an open order (fully unless ``quantity`` is smaller) and return the event."""
        ticket = self._orders[order_id]
        if not ticket.is_open:
            return FillEvent(ticket.symbol, order_id, OrderStatus.INVALID, price, 0)
        remaining = ticket.quantity - ticket.raw.get("filled", 0)
        qty = remaining if quantity is None else quantity
        ticket.raw["filled"] = ticket.raw.get("filled", 0) + qty
        self._holdings[ticket.symbol] = self.holdings(ticket.symbol) + qty
        if ticket.raw["filled"] == ticket.quantity:
            ticket.status = "filled"
            return FillEvent(ticket.symbol, order_id, OrderStatus.FILLED, price, qty)
        return FillEvent(ticket.symbol, order_id, OrderStatus.PARTIALLY_FILLED, price, qty)

    def reject(self, order_id: int) -> FillEvent:
        ticket = self._orders[order_id]
        ticket.status = "invalid"
        return FillEvent(ticket.symbol, order_id, OrderStatus.INVALID, 0.0, 0)

    def cancel(self, order_id: int) -> FillEvent:
        ticket = self._orders[order_id]
        ticket.status = "canceled"
        return FillEvent(ticket.symbol, order_id, OrderStatus.CANCELED, 0.0, 0)

    def _create(self, symbol: str, quantity: int, order_type: str,
                limit_price: Optional[float], tag: str) -> int:
        order_id = next(self._ids)
        self._orders[order_id] = OrderTicket(
            order_id=order_id,
            symbol=symbol,
            quantity=quantity,
            type=order_type,
            limit_price=limit_price,
            tag=tag,
        )
        return order_id
