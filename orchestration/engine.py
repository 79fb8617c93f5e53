import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Union

from analytics.bars import BarConsolidator
from api.metrics import MetricsCollector, metrics, start_metrics_server
from config.settings import EngineSettings
from monitoring.decision_auditor import DecisionAuditor
from monitoring.logging_utils import setup_logging
from risk.position_sizer import PositionSizer
from strategy.execution import ExecutionVenue, OrderCoordinator
from strategy.execution_types import Bar, FillEvent, Instrument, OrderIntent
from strategy.registry import InstrumentRegistry, InstrumentState
from strategy.signal_evaluator import SignalEvaluator


logger = logging.getLogger(__name__)


class TurtleEngine:
    """Per-instrument turtle decision engine driven by host callbacks.

    The host delivers one event at a time through ``on_bar``, ``on_fill`` and
    ``on_session_start``; each call runs to completion before the next.
    """

    def __init__(self, venue: ExecutionVenue, settings: Optional[EngineSettings] = None,
                 auditor: Optional[DecisionAuditor] = None,
                 metrics_collector: Optional[MetricsCollector] = None):
        self.settings = settings or EngineSettings()
        self.registry = InstrumentRegistry(
            volatility_period=self.settings.volatility.period,
            true_range=self.settings.volatility.true_range,
            entry_window=self.settings.channel.entry_window,
            exit_window=self.settings.channel.exit_window,
        )
        self.sizer = PositionSizer(self.settings.account)
        self.evaluator = SignalEvaluator(self.sizer, self.settings.execution)
        self.coordinator = OrderCoordinator(venue, self.settings.execution, on_event=self._record_event)
        self.auditor = auditor
        self.metrics = metrics_collector or metrics

    def register(self, instrument: Union[Instrument, str]) -> int:
        if isinstance(instrument, str):
            instrument = Instrument(symbol=instrument)
        handle = self.registry.register(instrument)
        logger.info("Registered %s (handle %s)", instrument.symbol, handle)
        return handle

    def register_universe(self, symbols: Optional[Iterable[str]] = None) -> List[int]:
        symbols = self.settings.symbols if symbols is None else symbols
        return [self.register(symbol) for symbol in symbols]

    def state(self, symbol: str) -> InstrumentState:
        return self.registry.get(symbol)

    def states(self) -> Iterator[InstrumentState]:
        return iter(self.registry)

    def consolidator(self, symbol: str) -> BarConsolidator:
        """Bar consolidator for a registered symbol at the configured session bar interval."""
        self.registry.get(symbol)
        return BarConsolidator(symbol, self.settings.session.bar_interval_s)

    def on_bar(self, bar: Bar) -> Optional[OrderIntent]:
        state = self.registry.get(bar.symbol)

        if bar.high < bar.low:
            logger.warning("%s bar at %s has high < low; dropped", bar.symbol, bar.end_time)
            self.metrics.record_drop(bar.symbol, 'invalid_range')
            return None
        if state.last_bar_time is not None and bar.end_time < state.last_bar_time:
            logger.warning(
                "%s bar at %s is older than last processed bar %s; dropped",
                bar.symbol,
                bar.end_time,
                state.last_bar_time,
            )
            self.metrics.record_drop(bar.symbol, 'out_of_order')
            return None

        session = bar.end_time.date()
        if state.session_date is None:
            state.session_date = session
        elif self.settings.session.auto_reset and session > state.session_date:
            self.on_session_start(bar.symbol, session)

        state.volatility.update(bar)
        state.position_cap = self.sizer.position_cap(state.n)

        ctx = self.evaluator.build_context(state, bar, state.channel.levels)
        intent = self.evaluator.evaluate(state, ctx)
        if intent is not None:
            self._dispatch(state, intent)

        state.channel.update(bar)
        state.last_bar_time = bar.end_time

        self.metrics.record_bar(bar.symbol)
        self.metrics.update_volatility(bar.symbol, state.volatility.n)
        self.metrics.update_position(bar.symbol, state.position_units, state.position_cap)
        return intent

    def on_fill(self, event: FillEvent) -> bool:
        state = self.registry.find(event.symbol)
        if state is None:
            logger.warning("Fill event for unregistered symbol %s ignored", event.symbol)
            return False
        self.metrics.record_fill(event.symbol, event.status.value)
        changed = self.coordinator.on_fill(state, event)
        self.metrics.update_position(event.symbol, state.position_units, state.position_cap)
        return changed

    def on_session_start(self, symbol: str, session_date: Optional[date] = None) -> None:
        """Daily reset: cancel stale orders and drop the last fill price when flat."""
        state = self.registry.get(symbol)
        self.coordinator.cancel_open_orders(state)
        if not state.is_holding:
            state.clear_fill_price()
        if session_date is not None:
            state.session_date = session_date
        logger.info("%s session reset for %s", symbol, session_date or 'current session')
        self.metrics.record_session_reset(symbol)
        self._record_event('session_reset', state, {'session_date': session_date})

    def on_session_start_all(self, session_date: Optional[date] = None) -> None:
        for state in self.registry:
            self.on_session_start(state.symbol, session_date)

    def reconcile_holdings(self, symbol: str, quantity: int, average_price: Optional[float] = None) -> None:
        """Align tracked units with the account's holdings for ``symbol``."""
        state = self.registry.get(symbol)
        quantity = int(quantity)
        if quantity < 0:
            raise ValueError(f"{symbol}: short holdings ({quantity}) are not supported")
        if quantity != state.position_units:
            logger.warning(
                "%s holdings mismatch: tracked %s, account %s",
                symbol,
                state.position_units,
                quantity,
            )
        if quantity == 0:
            state.position_units = 0
            state.clear_fill_price()
        else:
            if not state.has_fill_price:
                if average_price is None:
                    raise ValueError(f"{symbol}: average_price required to adopt {quantity} held units")
                state.last_fill_price = float(average_price)
            state.position_units = quantity
        self.metrics.update_position(symbol, state.position_units, state.position_cap)

    def _dispatch(self, state: InstrumentState, intent: OrderIntent) -> None:
        self.metrics.record_intent(intent.symbol, intent.reason.value)
        if intent.reason.liquidates:
            self.coordinator.liquidate(state, intent)
        else:
            self.coordinator.submit(state, intent)

    def _record_event(self, event_type: str, state: InstrumentState, payload: dict) -> None:
        if self.auditor is not None:
            self.auditor.record(event_type, state.to_dict(), payload)


def build_engine(venue: ExecutionVenue, config_source: Any = None,
                 settings: Optional[EngineSettings] = None) -> TurtleEngine:
    """Build a ready engine from configuration: logging, metrics exporter, audit log and universe."""
    settings = settings or EngineSettings.from_config(config_source)
    monitoring_cfg = settings.monitoring
    setup_logging(monitoring_cfg.log_level)

    if monitoring_cfg.metrics_port:
        start_metrics_server(monitoring_cfg.metrics_port, monitoring_cfg.prometheus_port_scan)

    auditor = None
    if monitoring_cfg.decision_audit_log:
        auditor = DecisionAuditor(Path(monitoring_cfg.decision_audit_log))

    engine = TurtleEngine(venue, settings, auditor=auditor)
    engine.register_universe()
    logger.info(
        "Engine ready: %s instruments, N period %s, channel %s/%s",
        len(engine.registry),
        settings.volatility.period,
        settings.channel.entry_window,
        settings.channel.exit_window,
    )
    return engine
