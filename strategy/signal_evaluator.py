"""Turtle decision state machine.

Each ready bar is evaluated against the instrument's position state:

* FLAT: enter one unit when the bar's low clears the entry channel high.
* LONG: in strict priority, force-quit when price has fallen ``2N`` below
  the last fill, exit when the high breaks below the exit channel low, or
  pyramid one more unit once the low is ``N/2`` above the last fill.

Entries and adds are only considered with no order in flight and while the
position is below both the volatility cap and the notional hard limit.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config.settings import ExecutionPolicy, LimitPriceSource
from risk.position_sizer import PositionSizer
from strategy.execution_types import Bar, IntentReason, OrderIntent
from strategy.registry import InstrumentState
from strategy.signal_states import FlatState, LongState


logger = logging.getLogger(__name__)


class PositionState(Enum):
    FLAT = "flat"
    LONG = "long"


@dataclass(frozen=True)
class EvaluationContext:
    bar: Bar
    n: float
    max_channel: float
    min_channel: float
    hard_limit: int
    tradable: int


class SignalEvaluator:
    def __init__(self, sizer: PositionSizer, policy: Optional[ExecutionPolicy] = None):
        self.sizer = sizer
        self.policy = policy or ExecutionPolicy()
        self.state_map = {
            PositionState.FLAT: FlatState,
            PositionState.LONG: LongState,
        }

    @staticmethod
    def position_state(state: InstrumentState) -> PositionState:
        return PositionState.LONG if state.is_holding else PositionState.FLAT

    def build_context(self, state: InstrumentState, bar: Bar, levels) -> Optional[EvaluationContext]:
        n = state.n
        if n is None or levels is None:
            return None
        max_channel, min_channel = levels
        hard_limit = self.sizer.hard_limit(bar.high)
        tradable = self.sizer.tradable_units(state.position_cap, bar.high, state.position_units)
        return EvaluationContext(
            bar=bar,
            n=n,
            max_channel=max_channel,
            min_channel=min_channel,
            hard_limit=hard_limit,
            tradable=tradable,
        )

    def evaluate(self, state: InstrumentState, ctx: Optional[EvaluationContext]) -> Optional[OrderIntent]:
        if ctx is None:
            logger.debug("%s not ready; decision suppressed", state.symbol)
            return None
        processor = self.state_map[self.position_state(state)](state, self)
        return processor.process(ctx)

    def can_add(self, state: InstrumentState, ctx: EvaluationContext) -> bool:
        if state.has_open_order:
            return False
        if state.position_units >= state.position_cap:
            return False
        if state.position_units >= ctx.hard_limit:
            return False
        return ctx.tradable > 0

    def buy(self, state: InstrumentState, ctx: EvaluationContext, reason: IntentReason) -> Optional[OrderIntent]:
        quantity = min(self.policy.unit_quantity * state.instrument.unit, ctx.tradable)
        if quantity <= 0:
            return None
        if self.policy.entry_limit_price is LimitPriceSource.LOW:
            limit_price = ctx.bar.low
        else:
            limit_price = ctx.bar.high
        return OrderIntent(
            symbol=state.symbol,
            signed_quantity=quantity,
            limit_price=limit_price,
            reason=reason,
        )

    def liquidate(self, state: InstrumentState, reason: IntentReason) -> OrderIntent:
        return OrderIntent(
            symbol=state.symbol,
            signed_quantity=-state.position_units,
            limit_price=None,
            reason=reason,
        )
