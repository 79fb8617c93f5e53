import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from config.settings import ExecutionPolicy
from strategy.execution_types import FillEvent, OrderIntent, OrderStatus
from strategy.registry import InstrumentState


logger = logging.getLogger(__name__)


class OrderInFlightError(RuntimeError):
    """Raised when an order is submitted while another one is still open."""


class ExecutionVenue(ABC):
    """Host-side execution venue. Results always come back later as fill events."""

    @abstractmethod
    def submit_limit_order(self, symbol: str, signed_quantity: int, limit_price: float, tag: str) -> int:
        pass

    @abstractmethod
    def cancel_open_orders(self, symbol: str) -> int:
        pass

    @abstractmethod
    def liquidate(self, symbol: str, tag: str) -> List[int]:
        pass


class OrderCoordinator:
    """Keep at most one in-flight order per instrument and fold fills back into state."""

    def __init__(self, venue: ExecutionVenue, policy: Optional[ExecutionPolicy] = None,
                 on_event: Optional[Callable[[str, InstrumentState, dict], None]] = None):
        self.venue = venue
        self.policy = policy or ExecutionPolicy()
        self._on_event = on_event

    def submit(self, state: InstrumentState, intent: OrderIntent) -> int:
        if state.has_open_order:
            raise OrderInFlightError(
                f"{state.symbol} already has open order {state.open_order_id}"
            )
        order_id = self.venue.submit_limit_order(
            intent.symbol,
            intent.signed_quantity,
            intent.limit_price,
            intent.tag,
        )
        state.open_order_id = order_id
        state.open_order_reason = intent.reason
        logger.info(
            "%s %s order %s: %+d @ %.4f",
            state.symbol,
            intent.reason.value,
            order_id,
            intent.signed_quantity,
            intent.limit_price,
        )
        self._emit('submitted', state, {'order_id': order_id, **intent.as_dict()})
        return order_id

    def liquidate(self, state: InstrumentState, intent: OrderIntent) -> List[int]:
        if state.has_open_order:
            self.cancel_open_orders(state)
        order_ids = list(self.venue.liquidate(intent.symbol, intent.tag))
        if len(order_ids) > 1:
            logger.warning(
                "%s liquidation returned %s orders; tracking %s",
                state.symbol,
                len(order_ids),
                order_ids[-1],
            )
        units = state.position_units
        if order_ids:
            state.open_order_id = order_ids[-1]
            state.open_order_reason = intent.reason
            state.liquidated_units = units
            state.liquidated_fill_price = state.last_fill_price
        state.position_units = 0
        state.clear_fill_price()
        logger.info(
            "%s %s: liquidating %s units (orders %s)",
            state.symbol,
            intent.reason.value,
            units,
            order_ids,
        )
        self._emit('liquidated', state, {'order_ids': order_ids, 'units': units, **intent.as_dict()})
        return order_ids

    def cancel_open_orders(self, state: InstrumentState) -> int:
        cancelled = self.venue.cancel_open_orders(state.symbol)
        if state.has_open_order:
            logger.info("%s cancelled open order %s", state.symbol, state.open_order_id)
            if state.is_liquidating:
                self._reinstate(state, 'cancelled')
        state.clear_open_order()
        return cancelled

    def on_fill(self, state: InstrumentState, event: FillEvent) -> bool:
        """Apply a fill event; returns True when instrument state changed."""
        if event.status is OrderStatus.INVALID:
            logger.warning("%s order %s is invalid", event.symbol, event.order_id)
            self._emit('invalid', state, event.as_dict())
            if event.order_id == state.open_order_id and state.is_liquidating:
                self._reinstate(state, 'rejected')
                state.clear_open_order()
                return True
            return False

        if event.order_id != state.open_order_id:
            logger.warning(
                "%s %s event for order %s ignored; open order is %s",
                event.symbol,
                event.status.value,
                event.order_id,
                state.open_order_id,
            )
            return False

        if event.status is OrderStatus.FILLED:
            return self._apply_filled(state, event)
        if event.status is OrderStatus.PARTIALLY_FILLED:
            return self._apply_partial(state, event)
        if event.status is OrderStatus.CANCELED:
            return self._apply_cancel(state, event)
        return False

    def _apply_filled(self, state: InstrumentState, event: FillEvent) -> bool:
        if event.fill_quantity > 0:
            state.position_units += event.fill_quantity
            state.last_fill_price = event.fill_price
        else:
            # liquidation already flattened the position when it was submitted
            state.position_units = 0
            state.clear_fill_price()
        state.clear_open_order()
        logger.info(
            "%s order %s filled: %+d @ %.4f",
            event.symbol,
            event.order_id,
            event.fill_quantity,
            event.fill_price,
        )
        self._emit('filled', state, event.as_dict())
        return True

    def _apply_partial(self, state: InstrumentState, event: FillEvent) -> bool:
        if state.is_liquidating and event.fill_quantity < 0:
            state.liquidated_units = max(0, state.liquidated_units + event.fill_quantity)
            logger.info(
                "%s liquidation %s partially filled: %+d, %s units left to sell",
                event.symbol,
                event.order_id,
                event.fill_quantity,
                state.liquidated_units,
            )
            return False
        if not self.policy.partial_fill_updates_price or event.fill_quantity <= 0:
            logger.warning(
                "%s order %s partially filled (%+d); ignored",
                event.symbol,
                event.order_id,
                event.fill_quantity,
            )
            return False
        state.position_units += event.fill_quantity
        state.last_fill_price = event.fill_price
        logger.info(
            "%s order %s partially filled: %+d @ %.4f",
            event.symbol,
            event.order_id,
            event.fill_quantity,
            event.fill_price,
        )
        self._emit('partial', state, event.as_dict())
        return True

    def _apply_cancel(self, state: InstrumentState, event: FillEvent) -> bool:
        if state.is_liquidating:
            self._reinstate(state, 'canceled')
            state.clear_open_order()
            return True
        if not self.policy.release_on_cancel:
            logger.warning("%s order %s canceled; ignored", event.symbol, event.order_id)
            return False
        state.clear_open_order()
        logger.info("%s order %s canceled; open-order marker released", event.symbol, event.order_id)
        self._emit('canceled', state, event.as_dict())
        return True

    def _reinstate(self, state: InstrumentState, outcome: str) -> None:
        state.restore_liquidated_position()
        logger.warning(
            "%s liquidation %s %s; %s units @ %.4f back on the books",
            state.symbol,
            state.open_order_id,
            outcome,
            state.position_units,
            state.last_fill_price,
        )
        self._emit('reinstated', state, {'order_id': state.open_order_id, 'outcome': outcome})

    def _emit(self, event_type: str, state: InstrumentState, payload: dict) -> None:
        if self._on_event is not None:
            self._on_event(event_type, state, payload)
