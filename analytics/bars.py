from datetime import datetime, timedelta, timezone
from typing import Optional

from strategy.execution_types import Bar


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class _WorkingBar:
    def __init__(self, bar_start: datetime, bar_end: datetime):
        self.bar_start = bar_start
        self.bar_end = bar_end
        self.open_price = None
        self.high_price = None
        self.low_price = None
        self.close_price = None
        self.volume = 0.0

    def add(self, open_: float, high: float, low: float, close: float, volume: float):
        if self.open_price is None:
            self.open_price = open_
            self.high_price = high
            self.low_price = low
        self.close_price = close
        if high > self.high_price:
            self.high_price = high
        if low < self.low_price:
            self.low_price = low
        self.volume += volume

    def to_bar(self, symbol: str) -> Bar:
        return Bar(
            symbol=symbol,
            open=self.open_price,
            high=self.high_price,
            low=self.low_price,
            close=self.close_price,
            end_time=self.bar_end,
            volume=self.volume,
        )


class BarConsolidator:
    """Aggregate ticks or finer bars into fixed-interval bars for one symbol.

    Intervals are aligned to the UTC epoch. A consolidated bar is only
    emitted once data for a later interval arrives (or on ``flush``), so
    downstream consumers never see a partially built bar.
    """

    def __init__(self, symbol: str, interval_s: int = 86400):
        if interval_s < 1:
            raise ValueError("interval_s must be >= 1")
        self.symbol = symbol
        self.interval = timedelta(seconds=interval_s)
        self._working: Optional[_WorkingBar] = None

    def _interval_bounds(self, ts: datetime):
        ts = _as_utc(ts)
        offset = (ts - _EPOCH) // self.interval
        start = _EPOCH + offset * self.interval
        return start, start + self.interval

    def _roll(self, ts: datetime) -> Optional[Bar]:
        start, end = self._interval_bounds(ts)
        if self._working is not None and self._working.bar_start == start:
            return None
        if self._working is not None and start < self._working.bar_start:
            raise ValueError(
                f"{self.symbol}: data at {ts.isoformat()} is older than the working interval"
            )
        finished = self._working.to_bar(self.symbol) if self._working is not None else None
        self._working = _WorkingBar(start, end)
        return finished

    def add_tick(self, price: float, timestamp: datetime, volume: float = 0.0) -> Optional[Bar]:
        finished = self._roll(timestamp)
        self._working.add(price, price, price, price, volume)
        return finished

    def add_bar(self, bar: Bar) -> Optional[Bar]:
        # end_time is exclusive, so a bar closing exactly on a boundary belongs to the earlier interval
        finished = self._roll(_as_utc(bar.end_time) - timedelta(microseconds=1))
        self._working.add(bar.open, bar.high, bar.low, bar.close, bar.volume)
        return finished

    def flush(self) -> Optional[Bar]:
        if self._working is None:
            return None
        finished = self._working.to_bar(self.symbol)
        self._working = None
        return finished
