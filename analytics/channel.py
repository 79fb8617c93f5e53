from collections import deque
from typing import Optional, Tuple

import numpy as np

from strategy.execution_types import Bar


class BreakoutChannel:
    """Rolling breakout channel: max of the last ``entry_window`` highs and
    min of the last ``exit_window`` lows."""

    def __init__(self, entry_window: int = 55, exit_window: int = 20):
        if entry_window < 1 or exit_window < 1:
            raise ValueError("channel windows must be >= 1")
        self.entry_window = entry_window
        self.exit_window = exit_window
        self.high_history = deque(maxlen=entry_window)
        self.low_history = deque(maxlen=exit_window)
        self.max_channel: Optional[float] = None
        self.min_channel: Optional[float] = None

    def update(self, bar: Bar) -> Optional[Tuple[float, float]]:
        self.high_history.append(bar.high)
        self.low_history.append(bar.low)
        self.max_channel = float(np.max(np.fromiter(self.high_history, dtype=float)))
        self.min_channel = float(np.min(np.fromiter(self.low_history, dtype=float)))
        return self.levels

    @property
    def is_ready(self) -> bool:
        return (
            len(self.high_history) == self.entry_window
            and len(self.low_history) == self.exit_window
        )

    @property
    def levels(self) -> Optional[Tuple[float, float]]:
        if not self.is_ready:
            return None
        return self.max_channel, self.min_channel

    def to_dict(self) -> dict:
        return {
            'max_channel': self.max_channel,
            'min_channel': self.min_channel,
            'ready': self.is_ready,
        }
