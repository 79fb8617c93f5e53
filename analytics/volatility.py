from enum import Enum
from typing import Optional

from strategy.execution_types import Bar


class TrueRange(Enum):
    """How a bar's true range is measured."""

    EXTENDED = "extended"
    CLASSIC = "classic"
    BAR_RANGE = "bar_range"


def true_range(bar: Bar, prev_close: Optional[float], selector: TrueRange = TrueRange.EXTENDED) -> float:
    high, low, open_ = bar.high, bar.low, bar.open
    if selector is TrueRange.BAR_RANGE or prev_close is None:
        ref = bar.close
    else:
        ref = prev_close

    if selector is TrueRange.CLASSIC:
        return max(high - low, abs(high - ref), abs(low - ref))
    return max(high - low, high - ref, ref - low, high - open_, open_ - low)


class VolatilityTracker:
    """Wilder-smoothed true range ("N") for a single instrument.

    ``N_t = ((period - 1) * N_{t-1} + TR_t) / period`` with ``N_0 = TR_0``.
    The value is exposed from the first bar on, but ``is_ready`` only turns
    true once ``period`` bars have been observed.
    """

    def __init__(self, period: int = 20, selector: TrueRange = TrueRange.EXTENDED):
        if period < 1:
            raise ValueError("period must be >= 1")
        self.period = period
        self.selector = selector
        self.n: Optional[float] = None
        self.last_true_range: Optional[float] = None
        self.prev_close: Optional[float] = None
        self.samples = 0

    def update(self, bar: Bar) -> float:
        tr = true_range(bar, self.prev_close, self.selector)
        if self.n is None:
            self.n = tr
        else:
            self.n = ((self.period - 1) * self.n + tr) / self.period
        self.last_true_range = tr
        self.prev_close = bar.close
        self.samples += 1
        return self.n

    @property
    def is_ready(self) -> bool:
        return self.n is not None and self.samples >= self.period

    def get_n(self) -> Optional[float]:
        return self.n if self.is_ready else None

    def to_dict(self) -> dict:
        return {
            'n': self.n,
            'true_range': self.last_true_range,
            'samples': self.samples,
            'ready': self.is_ready,
        }
