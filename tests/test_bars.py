from datetime import datetime, timedelta, timezone

import pytest

from analytics.bars import BarConsolidator
from tests.bar_fixtures import make_bar


DAY = datetime(2018, 1, 2, tzinfo=timezone.utc)


def test_ticks_consolidate_into_daily_bar():
    consolidator = BarConsolidator('AAPL')
    assert consolidator.add_tick(10.0, DAY + timedelta(hours=14), volume=100) is None
    assert consolidator.add_tick(11.5, DAY + timedelta(hours=15), volume=50) is None
    assert consolidator.add_tick(9.5, DAY + timedelta(hours=16)) is None
    assert consolidator.add_tick(10.2, DAY + timedelta(hours=20)) is None

    bar = consolidator.add_tick(10.4, DAY + timedelta(days=1, hours=14))
    assert (bar.open, bar.high, bar.low, bar.close) == (10.0, 11.5, 9.5, 10.2)
    assert bar.volume == 150
    assert bar.end_time == DAY + timedelta(days=1)
    assert bar.symbol == 'AAPL'

    last = consolidator.flush()
    assert last.open == last.close == 10.4
    assert consolidator.flush() is None


def test_minute_bars_consolidate_by_interval():
    consolidator = BarConsolidator('IBM', interval_s=300)
    start = DAY + timedelta(hours=15)
    rows = [(10, 10.5, 9.9, 10.2), (10.2, 10.8, 10.1, 10.7), (10.7, 10.9, 10.3, 10.4)]
    for minute, (o, h, l, c) in enumerate(rows, start=1):
        done = consolidator.add_bar(
            make_bar('IBM', o, h, l, c, end_time=start + timedelta(minutes=minute))
        )
        assert done is None
    # a bar closing exactly on the boundary still belongs to the first interval
    assert consolidator.add_bar(make_bar('IBM', 10.4, 10.6, 10.0, 10.1, end_time=start + timedelta(minutes=5))) is None

    bar = consolidator.add_bar(make_bar('IBM', 10.1, 10.2, 10.0, 10.0, end_time=start + timedelta(minutes=6)))
    assert (bar.open, bar.high, bar.low, bar.close) == (10, 10.9, 9.9, 10.1)
    assert bar.end_time == start + timedelta(minutes=5)


def test_older_data_rejected():
    consolidator = BarConsolidator('AAPL')
    consolidator.add_tick(10.0, DAY + timedelta(days=1, hours=14))
    with pytest.raises(ValueError):
        consolidator.add_tick(9.0, DAY + timedelta(hours=14))


def test_naive_timestamps_treated_as_utc():
    consolidator = BarConsolidator('AAPL', interval_s=3600)
    consolidator.add_tick(10.0, datetime(2018, 1, 2, 14, 5))
    bar = consolidator.add_tick(10.5, datetime(2018, 1, 2, 15, 1))
    assert bar.end_time == datetime(2018, 1, 2, 15, 0, tzinfo=timezone.utc)
