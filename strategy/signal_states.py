from __future__ import annotations
from typing import TYPE_CHECKING, Optional
from abc import ABC, abstractmethod

from strategy.execution_types import IntentReason, OrderIntent

if TYPE_CHECKING:
    from .registry import InstrumentState
    from .signal_evaluator import EvaluationContext, SignalEvaluator


class DecisionStateProcessor(ABC):
    def __init__(self, state: InstrumentState, evaluator: SignalEvaluator):
        self.state = state
        self.evaluator = evaluator

    @abstractmethod
    def process(self, ctx: EvaluationContext) -> Optional[OrderIntent]:
        pass


class FlatState(DecisionStateProcessor):
    def process(self, ctx: EvaluationContext) -> Optional[OrderIntent]:
        if not self.evaluator.can_add(self.state, ctx):
            return None
        if ctx.bar.low >= ctx.max_channel:
            return self.evaluator.buy(self.state, ctx, IntentReason.ENTRY)
        return None


class LongState(DecisionStateProcessor):
    def process(self, ctx: EvaluationContext) -> Optional[OrderIntent]:
        state = self.state
        bar = ctx.bar

        if state.has_fill_price and state.last_fill_price - bar.high >= 2 * ctx.n:
            return self.evaluator.liquidate(state, IntentReason.FORCE_QUIT)

        if bar.high < ctx.min_channel:
            return self.evaluator.liquidate(state, IntentReason.EXIT)

        if not self.evaluator.can_add(state, ctx):
            return None
        if state.has_fill_price and bar.low >= state.last_fill_price + ctx.n / 2:
            return self.evaluator.buy(state, ctx, IntentReason.ADD)
        return None
