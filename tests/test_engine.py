import json
import random
from datetime import date, timedelta

import pytest
from prometheus_client import REGISTRY

from monitoring.decision_auditor import DecisionAuditor
from orchestration.engine import TurtleEngine, build_engine
from strategy.execution_types import NO_FILL_PRICE, Instrument, IntentReason, OrderStatus
from strategy.registry import DuplicateInstrumentError, UnknownInstrumentError
from strategy.simulators.paper import PaperVenue
from tests.bar_fixtures import BREAKOUT_ROWS, START, bars_from_ohlc, make_bar, make_engine, small_settings


def _warm_up(engine, symbol='AAPL'):
    intents = [engine.on_bar(bar) for bar in bars_from_ohlc(BREAKOUT_ROWS, symbol)]
    return intents


def test_breakout_scenario_submits_entry():
    engine, venue = make_engine()
    intents = _warm_up(engine)
    assert intents[:3] == [None, None, None]
    entry = intents[3]
    assert entry.reason is IntentReason.ENTRY
    assert entry.signed_quantity == 1
    assert entry.limit_price == 13.0

    state = engine.state('AAPL')
    assert state.n == pytest.approx(1.140741, rel=1e-5)
    assert state.position_cap == 87
    assert engine.sizer.hard_limit(13.0) == 76
    assert len(venue.open_orders('AAPL')) == 1
    assert state.open_order_id == venue.open_orders('AAPL')[0].order_id


def test_full_trade_cycle():
    engine, venue = make_engine()
    entry = _warm_up(engine)[3]
    state = engine.state('AAPL')
    assert engine.on_fill(venue.fill(state.open_order_id, entry.limit_price))
    assert state.position_units == 1
    assert state.last_fill_price == 13.0

    add = engine.on_bar(make_bar(open_=14.0, high=14.5, low=14.0, close=14.2, day=4))
    assert add.reason is IntentReason.ADD
    assert add.limit_price == 14.5
    engine.on_fill(venue.fill(state.open_order_id, 14.5))
    assert state.position_units == 2
    assert state.last_fill_price == 14.5

    exit_intent = engine.on_bar(make_bar(open_=10.5, high=10.8, low=10.0, close=10.2, day=5))
    assert exit_intent.reason is IntentReason.EXIT
    assert exit_intent.signed_quantity == -2
    assert state.position_units == 0
    assert state.last_fill_price == NO_FILL_PRICE

    engine.on_fill(venue.fill(state.open_order_id, 10.2))
    assert not state.has_open_order
    assert venue.holdings('AAPL') == 0


def test_steady_volatility_still_sizes_entry():
    engine, venue = make_engine()
    rows = [(10.5, 11.0, 10.0, 11.0)] * 3 + [(11.5, 12.0, 11.0, 11.5)]
    intents = [engine.on_bar(bar) for bar in bars_from_ohlc(rows)]
    state = engine.state('AAPL')
    assert state.n == pytest.approx(1.0)
    assert state.position_cap == 100
    assert intents[-1].reason is IntentReason.ENTRY
    assert len(venue.open_orders('AAPL')) == 1


def _enter_and_exit(engine, venue):
    _warm_up(engine)
    state = engine.state('AAPL')
    engine.on_fill(venue.fill(state.open_order_id, 13.0))
    intent = engine.on_bar(make_bar(open_=9.5, high=9.5, low=9.0, close=9.2, day=4))
    assert intent.reason is IntentReason.EXIT
    assert state.position_units == 0
    return state


def test_cancelled_liquidation_reinstated_on_session_reset():
    engine, venue = make_engine()
    state = _enter_and_exit(engine, venue)

    engine.on_session_start('AAPL')
    assert venue.open_orders('AAPL') == []
    assert state.position_units == venue.holdings('AAPL') == 1
    assert state.last_fill_price == 13.0

    # still under water on the next bar, so the stop is issued again
    intent = engine.on_bar(make_bar(open_=9.0, high=9.4, low=8.8, close=9.0, day=5))
    assert intent.reason is IntentReason.FORCE_QUIT
    assert intent.signed_quantity == -1
    engine.on_fill(venue.fill(state.open_order_id, 9.0))
    assert state.position_units == venue.holdings('AAPL') == 0


def test_rejected_liquidation_reinstated():
    engine, venue = make_engine()
    state = _enter_and_exit(engine, venue)
    order_id = state.open_order_id

    event = venue.reject(order_id)
    assert engine.on_fill(event)
    assert state.position_units == venue.holdings('AAPL') == 1
    assert state.last_fill_price == 13.0
    assert not state.has_open_order
    # a repeated rejection no longer matches the open order
    assert not engine.on_fill(event)
    assert state.position_units == 1


def test_no_decisions_before_ready():
    engine, venue = make_engine(volatility={'period': 10})
    assert all(intent is None for intent in _warm_up(engine))
    assert venue.orders == {}


def test_session_start_cancels_stale_entry():
    engine, venue = make_engine(session={'auto_reset': False})
    _warm_up(engine)
    state = engine.state('AAPL')
    stale = state.open_order_id

    engine.on_session_start('AAPL', date(2018, 1, 6))
    assert not state.has_open_order
    assert venue.orders[stale].status == 'canceled'
    assert state.session_date == date(2018, 1, 6)

    # a fill for the cancelled order arriving late is not applied
    assert not engine.on_fill(venue.fill(stale, 13.0))
    assert state.position_units == 0


def test_new_session_bar_resets_automatically():
    engine, venue = make_engine()
    _warm_up(engine)
    state = engine.state('AAPL')
    stale = state.open_order_id
    # next day's bar is still above the channel, so a fresh entry replaces the stale one
    intent = engine.on_bar(make_bar(open_=13.5, high=14.0, low=13.5, close=13.8, day=4))
    assert venue.orders[stale].status == 'canceled'
    assert intent.reason is IntentReason.ENTRY
    assert len(venue.open_orders('AAPL')) == 1
    assert state.open_order_id != stale


def test_session_reset_keeps_fill_price_while_holding():
    engine, venue = make_engine()
    _warm_up(engine)
    state = engine.state('AAPL')
    engine.on_fill(venue.fill(state.open_order_id, 13.0))
    engine.on_session_start_all()
    assert state.position_units == 1
    assert state.last_fill_price == 13.0


def test_unknown_instrument_bar_raises():
    engine, _ = make_engine()
    with pytest.raises(UnknownInstrumentError):
        engine.on_bar(make_bar(symbol='MSFT'))


def test_unknown_instrument_fill_ignored():
    engine, venue = make_engine()
    order_id = venue.submit_limit_order('MSFT', 1, 10.0, 'manual')
    assert not engine.on_fill(venue.fill(order_id, 10.0))


def test_duplicate_registration_rejected():
    engine, _ = make_engine()
    with pytest.raises(DuplicateInstrumentError):
        engine.register(Instrument('AAPL'))


def test_register_universe_assigns_handles_in_order():
    engine = TurtleEngine(PaperVenue(), small_settings(symbols=['AAPL', 'IBM', 'INTC']))
    assert engine.register_universe() == [0, 1, 2]
    assert [state.symbol for state in engine.states()] == ['AAPL', 'IBM', 'INTC']
    assert engine.registry.by_handle(1).symbol == 'IBM'


def test_instruments_are_independent():
    engine, venue = make_engine(symbols=('AAPL', 'IBM'))
    _warm_up(engine, 'AAPL')
    for bar in bars_from_ohlc(BREAKOUT_ROWS[:3], 'IBM'):
        engine.on_bar(bar)
    assert engine.state('AAPL').has_open_order
    assert not engine.state('IBM').has_open_order
    assert venue.open_orders('IBM') == []


def test_invalid_and_out_of_order_bars_dropped():
    engine, _ = make_engine()
    engine.on_bar(make_bar(high=10, low=9, day=1))
    state = engine.state('AAPL')
    samples = state.volatility.samples

    assert engine.on_bar(make_bar(high=9, low=10, day=2)) is None
    assert engine.on_bar(make_bar(high=11, low=10, day=0)) is None
    assert state.volatility.samples == samples
    assert state.last_bar_time == START + timedelta(days=1)


def test_consolidated_ticks_drive_engine():
    engine, venue = make_engine()
    consolidator = engine.consolidator('AAPL')
    intents = []
    for day, (o, h, l, c) in enumerate(BREAKOUT_ROWS + [(13.5, 13.5, 13.5, 13.5)]):
        session = START.replace(hour=0) + timedelta(days=day)
        for hour, price in zip((14, 15, 16, 20), (o, h, l, c)):
            bar = consolidator.add_tick(price, session + timedelta(hours=hour))
            if bar is not None:
                intents.append(engine.on_bar(bar))
    assert len(intents) == 4
    assert intents[-1].reason is IntentReason.ENTRY
    assert len(venue.open_orders('AAPL')) == 1

    with pytest.raises(UnknownInstrumentError):
        engine.consolidator('MSFT')


def test_reconcile_holdings():
    engine, _ = make_engine()
    state = engine.state('AAPL')
    with pytest.raises(ValueError):
        engine.reconcile_holdings('AAPL', 3)
    engine.reconcile_holdings('AAPL', 3, average_price=50.0)
    assert state.position_units == 3
    assert state.last_fill_price == 50.0
    engine.reconcile_holdings('AAPL', 0)
    assert state.position_units == 0
    assert state.last_fill_price == NO_FILL_PRICE
    with pytest.raises(ValueError):
        engine.reconcile_holdings('AAPL', -1)


def test_decisions_written_to_audit_log(tmp_path):
    log_path = tmp_path / 'audit' / 'decisions.jsonl'
    venue = PaperVenue()
    engine = TurtleEngine(venue, small_settings(), auditor=DecisionAuditor(log_path))
    engine.register('AAPL')
    _warm_up(engine)
    engine.on_fill(venue.fill(engine.state('AAPL').open_order_id, 13.0))

    entries = [json.loads(line) for line in log_path.read_text().splitlines()]
    events = [entry['event'] for entry in entries]
    assert 'submitted' in events
    assert events[-1] == 'filled'
    assert entries[-1]['state']['position_units'] == 1
    assert entries[-1]['details']['status'] == 'filled'
    assert entries[-1]['state']['volatility']['samples'] == 4
    assert entries[-1]['state']['channel']['max_channel'] == 13.0
    submitted = next(entry for entry in entries if entry['event'] == 'submitted')
    assert submitted['state']['open_order_reason'] == 'entry'


def test_metrics_track_bars_and_intents():
    engine, _ = make_engine(symbols=('METR',))
    labels = {'symbol': 'METR', 'reason': 'entry'}
    intents_before = REGISTRY.get_sample_value('turtle_order_intents_total', labels) or 0
    bars_before = REGISTRY.get_sample_value('turtle_bars_processed_total', {'symbol': 'METR'}) or 0

    _warm_up(engine, 'METR')
    engine.on_bar(make_bar(symbol='METR', high=1, low=2, day=9))

    assert REGISTRY.get_sample_value('turtle_order_intents_total', labels) == intents_before + 1
    assert REGISTRY.get_sample_value('turtle_bars_processed_total', {'symbol': 'METR'}) == bars_before + 4
    assert REGISTRY.get_sample_value(
        'turtle_bars_dropped_total', {'symbol': 'METR', 'reason': 'invalid_range'}
    ) >= 1
    assert REGISTRY.get_sample_value('turtle_position_cap', {'symbol': 'METR'}) == 87


def test_build_engine_from_dict_config(tmp_path):
    source = {
        'account': {'total_cash': 20000, 'risk_fraction': 0.02, 'notional_cap': 5000},
        'volatility': {'period': 5, 'true_range': 'classic'},
        'channel': {'entry_window': 10, 'exit_window': 5},
        'execution': {'unit_quantity': 2},
        'session': {'auto_reset': 'false'},
        'universe': {'symbols': 'AAPL, IBM'},
        'monitoring': {'log_level': 'warning', 'decision_audit_log': str(tmp_path / 'audit.jsonl')},
    }
    engine = build_engine(PaperVenue(), source)
    assert [state.symbol for state in engine.states()] == ['AAPL', 'IBM']
    assert engine.settings.channel.entry_window == 10
    assert engine.settings.session.auto_reset is False
    assert engine.state('IBM').volatility.period == 5
    assert engine.auditor is not None


@pytest.mark.parametrize('seed', [3, 17, 2024])
def test_random_interleaving_keeps_invariants(seed):
    rng = random.Random(seed)
    engine, venue = make_engine()
    state = engine.state('AAPL')
    price = 50.0
    bound = None

    def check():
        open_orders = venue.open_orders('AAPL')
        assert len(open_orders) <= 1
        assert (state.last_fill_price == NO_FILL_PRICE) == (state.position_units == 0)
        if not open_orders:
            assert state.position_units == venue.holdings('AAPL')

    for day in range(200):
        open_ = price
        close = max(1.0, price * (1 + rng.gauss(0.002, 0.03)))
        high = max(open_, close) * (1 + rng.random() * 0.01)
        low = min(open_, close) * (1 - rng.random() * 0.01)
        price = close

        intent = engine.on_bar(make_bar(open_=open_, high=high, low=low, close=close, day=day))
        if intent is not None and not intent.reason.liquidates:
            bound = min(state.position_cap, engine.sizer.hard_limit(high))
        check()

        for _ in range(rng.randint(0, 2)):
            tickets = venue.open_orders('AAPL')
            if not tickets:
                break
            ticket = tickets[0]
            action = rng.choice(['fill', 'fill', 'cancel', 'reject'])
            if action == 'fill':
                fill_price = ticket.limit_price if ticket.limit_price is not None else close
                event = venue.fill(ticket.order_id, fill_price)
            elif action == 'cancel':
                event = venue.cancel(ticket.order_id)
            else:
                event = venue.reject(ticket.order_id)
            engine.on_fill(event)
            if event.status is OrderStatus.FILLED and event.fill_quantity > 0:
                assert state.position_units <= bound
            check()
