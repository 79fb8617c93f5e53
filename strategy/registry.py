from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterator, List, Optional

from analytics.channel import BreakoutChannel
from analytics.volatility import VolatilityTracker
from strategy.execution_types import NO_FILL_PRICE, Instrument, IntentReason


class UnknownInstrumentError(KeyError):
    """Raised when an event references an instrument that was never registered."""


class DuplicateInstrumentError(ValueError):
    pass


@dataclass
class InstrumentState:
    handle: int
    instrument: Instrument
    volatility: VolatilityTracker
    channel: BreakoutChannel
    position_units: int = 0
    last_fill_price: float = NO_FILL_PRICE
    position_cap: int = 0
    open_order_id: Optional[int] = None
    open_order_reason: Optional[IntentReason] = None
    # position taken off the books when a liquidation was submitted
    liquidated_units: int = 0
    liquidated_fill_price: float = NO_FILL_PRICE
    session_date: Optional[date] = None
    last_bar_time: Optional[datetime] = None

    @property
    def symbol(self) -> str:
        return self.instrument.symbol

    @property
    def n(self) -> Optional[float]:
        return self.volatility.get_n()

    @property
    def has_fill_price(self) -> bool:
        return self.last_fill_price != NO_FILL_PRICE

    @property
    def has_open_order(self) -> bool:
        return self.open_order_id is not None

    @property
    def is_holding(self) -> bool:
        return self.position_units > 0

    @property
    def is_liquidating(self) -> bool:
        return self.has_open_order and self.open_order_reason is not None and self.open_order_reason.liquidates

    def clear_fill_price(self) -> None:
        self.last_fill_price = NO_FILL_PRICE

    def restore_liquidated_position(self) -> None:
        """Put back the position removed by a liquidation that never executed."""
        if self.liquidated_units > 0:
            self.position_units = self.liquidated_units
            self.last_fill_price = self.liquidated_fill_price

    def clear_open_order(self) -> None:
        self.open_order_id = None
        self.open_order_reason = None
        self.liquidated_units = 0
        self.liquidated_fill_price = NO_FILL_PRICE

    def to_dict(self) -> dict:
        return {
            'handle': self.handle,
            'symbol': self.symbol,
            'ready': self.volatility.is_ready and self.channel.is_ready,
            'volatility': self.volatility.to_dict(),
            'channel': self.channel.to_dict(),
            'position_units': self.position_units,
            'last_fill_price': self.last_fill_price,
            'position_cap': self.position_cap,
            'open_order_id': self.open_order_id,
            'open_order_reason': self.open_order_reason.value if self.open_order_reason else None,
            'session_date': self.session_date.isoformat() if self.session_date else None,
        }


class InstrumentRegistry:
    """Insertion-ordered registry of instruments with stable integer handles."""

    def __init__(self, volatility_period: int = 20, true_range=None,
                 entry_window: int = 55, exit_window: int = 20):
        self.volatility_period = volatility_period
        self.true_range = true_range
        self.entry_window = entry_window
        self.exit_window = exit_window
        self._states: List[InstrumentState] = []
        self._by_symbol: Dict[str, InstrumentState] = {}

    def register(self, instrument: Instrument) -> int:
        if instrument.symbol in self._by_symbol:
            raise DuplicateInstrumentError(f"Instrument {instrument.symbol} is already registered")
        tracker_kwargs = {'period': self.volatility_period}
        if self.true_range is not None:
            tracker_kwargs['selector'] = self.true_range
        state = InstrumentState(
            handle=len(self._states),
            instrument=instrument,
            volatility=VolatilityTracker(**tracker_kwargs),
            channel=BreakoutChannel(self.entry_window, self.exit_window),
        )
        self._states.append(state)
        self._by_symbol[instrument.symbol] = state
        return state.handle

    def get(self, symbol: str) -> InstrumentState:
        try:
            return self._by_symbol[symbol]
        except KeyError:
            raise UnknownInstrumentError(symbol) from None

    def find(self, symbol: str) -> Optional[InstrumentState]:
        return self._by_symbol.get(symbol)

    def by_handle(self, handle: int) -> InstrumentState:
        if not 0 <= handle < len(self._states):
            raise UnknownInstrumentError(handle)
        return self._states[handle]

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._by_symbol

    def __iter__(self) -> Iterator[InstrumentState]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)
