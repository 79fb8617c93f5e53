import errno
import logging
from pathlib import Path
from prometheus_client import Counter, Gauge, start_http_server
from typing import Optional


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None


def _write_port_file(port_file: Optional[Path], port: int) -> None:
    if not port_file:
        return
    try:
        port_file.parent.mkdir(parents=True, exist_ok=True)
        port_file.write_text(str(port))
    except OSError as exc:
        logger.warning("Failed to persist metrics port file %s: %s", port_file, exc)


class MetricsCollector:
    def __init__(self):
        self.bars_processed = Counter('turtle_bars_processed_total', 'Consolidated bars processed', ['symbol'])
        self.bars_dropped = Counter('turtle_bars_dropped_total', 'Bars dropped before evaluation', ['symbol', 'reason'])
        self.intents = Counter('turtle_order_intents_total', 'Order intents emitted', ['symbol', 'reason'])
        self.fill_events = Counter('turtle_fill_events_total', 'Fill events received', ['symbol', 'status'])
        self.session_resets = Counter('turtle_session_resets_total', 'Session-boundary resets applied', ['symbol'])

        self.volatility_n = Gauge('turtle_volatility_n', 'Smoothed true range (N)', ['symbol'])
        self.position_units = Gauge('turtle_position_units', 'Units currently held', ['symbol'])
        self.position_cap = Gauge('turtle_position_cap', 'Volatility-scaled position cap', ['symbol'])

    def record_bar(self, symbol: str):
        self.bars_processed.labels(symbol=symbol).inc()

    def record_drop(self, symbol: str, reason: str):
        self.bars_dropped.labels(symbol=symbol, reason=reason).inc()

    def record_intent(self, symbol: str, reason: str):
        self.intents.labels(symbol=symbol, reason=reason).inc()

    def record_fill(self, symbol: str, status: str):
        self.fill_events.labels(symbol=symbol, status=status).inc()

    def record_session_reset(self, symbol: str):
        self.session_resets.labels(symbol=symbol).inc()

    def update_volatility(self, symbol: str, n: Optional[float]):
        if n is not None:
            self.volatility_n.labels(symbol=symbol).set(n)

    def update_position(self, symbol: str, units: int, cap: int):
        self.position_units.labels(symbol=symbol).set(units)
        self.position_cap.labels(symbol=symbol).set(cap)


def start_metrics_server(port: int = 9090, port_scan_limit: int = 0, port_file: Optional[Path] = None):
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return _METRICS_PORT
    last_error: Optional[OSError] = None
    for offset in range(max(0, port_scan_limit) + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        _write_port_file(port_file, candidate)
        logger.info("Prometheus metrics server started on port %s", candidate)
        return candidate
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error
    return None

metrics = MetricsCollector()
