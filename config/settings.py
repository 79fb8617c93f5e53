"""Immutable engine settings built once from the YAML configuration.

Every tunable of the decision engine lives here so that nothing downstream
reads ambient process state. ``EngineSettings.from_config`` accepts the
module-level ``config`` object, a ``SectionProxy`` or a plain dict with the
same layout as ``config/config.yaml``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from analytics.volatility import TrueRange
from config.utils import get_config_section


class ConfigurationError(ValueError):
    """Raised when a configuration value is missing or out of range."""


class LimitPriceSource(Enum):
    HIGH = "high"
    LOW = "low"


def _coerce_enum(enum_cls, value: Any, key: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"{key}: expected one of {choices}, got {value!r}") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _build(cls, section: Dict[str, Any], name: str):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{name}' section: {', '.join(unknown)}")
    try:
        return cls(**section)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid '{name}' section: {exc}") from exc


@dataclass(frozen=True)
class AccountSettings:
    total_cash: float = 10000.0
    risk_fraction: float = 0.01
    notional_cap: float = 1000.0

    def __post_init__(self):
        object.__setattr__(self, 'total_cash', float(self.total_cash))
        object.__setattr__(self, 'risk_fraction', float(self.risk_fraction))
        object.__setattr__(self, 'notional_cap', float(self.notional_cap))
        if self.total_cash <= 0:
            raise ConfigurationError("account.total_cash must be positive")
        if not 0 < self.risk_fraction <= 1:
            raise ConfigurationError("account.risk_fraction must be in (0, 1]")
        if self.notional_cap <= 0:
            raise ConfigurationError("account.notional_cap must be positive")


@dataclass(frozen=True)
class VolatilitySettings:
    period: int = 20
    true_range: TrueRange = TrueRange.EXTENDED

    def __post_init__(self):
        object.__setattr__(self, 'period', int(self.period))
        object.__setattr__(self, 'true_range', _coerce_enum(TrueRange, self.true_range, 'volatility.true_range'))
        if self.period < 1:
            raise ConfigurationError("volatility.period must be >= 1")


@dataclass(frozen=True)
class ChannelSettings:
    entry_window: int = 55
    exit_window: int = 20

    def __post_init__(self):
        object.__setattr__(self, 'entry_window', int(self.entry_window))
        object.__setattr__(self, 'exit_window', int(self.exit_window))
        if self.entry_window < 1 or self.exit_window < 1:
            raise ConfigurationError("channel windows must be >= 1")


@dataclass(frozen=True)
class ExecutionPolicy:
    unit_quantity: int = 1
    entry_limit_price: LimitPriceSource = LimitPriceSource.HIGH
    partial_fill_updates_price: bool = False
    release_on_cancel: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'unit_quantity', int(self.unit_quantity))
        object.__setattr__(
            self,
            'entry_limit_price',
            _coerce_enum(LimitPriceSource, self.entry_limit_price, 'execution.entry_limit_price'),
        )
        object.__setattr__(self, 'partial_fill_updates_price', _as_bool(self.partial_fill_updates_price))
        object.__setattr__(self, 'release_on_cancel', _as_bool(self.release_on_cancel))
        if self.unit_quantity < 1:
            raise ConfigurationError("execution.unit_quantity must be >= 1")


@dataclass(frozen=True)
class SessionSettings:
    auto_reset: bool = True
    bar_interval_s: int = 86400

    def __post_init__(self):
        object.__setattr__(self, 'auto_reset', _as_bool(self.auto_reset))
        object.__setattr__(self, 'bar_interval_s', int(self.bar_interval_s))
        if self.bar_interval_s < 1:
            raise ConfigurationError("session.bar_interval_s must be >= 1")


@dataclass(frozen=True)
class MonitoringSettings:
    log_level: str = "INFO"
    decision_audit_log: Optional[str] = None
    metrics_port: int = 0
    prometheus_port_scan: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'log_level', str(self.log_level or "INFO").upper())
        object.__setattr__(self, 'decision_audit_log', str(self.decision_audit_log) if self.decision_audit_log else None)
        object.__setattr__(self, 'metrics_port', int(self.metrics_port or 0))
        object.__setattr__(self, 'prometheus_port_scan', int(self.prometheus_port_scan or 0))


@dataclass(frozen=True)
class EngineSettings:
    account: AccountSettings = field(default_factory=AccountSettings)
    volatility: VolatilitySettings = field(default_factory=VolatilitySettings)
    channel: ChannelSettings = field(default_factory=ChannelSettings)
    execution: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    session: SessionSettings = field(default_factory=SessionSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    symbols: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, source: Any = None) -> 'EngineSettings':
        if source is None:
            from config.config_loader import config as source

        universe = get_config_section(source, 'universe')
        symbols = universe.get('symbols') or ()
        if isinstance(symbols, str):
            symbols = [s.strip() for s in symbols.split(',') if s.strip()]

        return cls(
            account=_build(AccountSettings, get_config_section(source, 'account'), 'account'),
            volatility=_build(VolatilitySettings, get_config_section(source, 'volatility'), 'volatility'),
            channel=_build(ChannelSettings, get_config_section(source, 'channel'), 'channel'),
            execution=_build(ExecutionPolicy, get_config_section(source, 'execution'), 'execution'),
            session=_build(SessionSettings, get_config_section(source, 'session'), 'session'),
            monitoring=_build(MonitoringSettings, get_config_section(source, 'monitoring'), 'monitoring'),
            symbols=tuple(str(s) for s in symbols),
        )

    def with_overrides(self, **sections: Dict[str, Any]) -> 'EngineSettings':
        """Return a copy with whole sections partially overridden, e.g. ``channel={'entry_window': 3}``."""
        changes = {}
        for name, values in sections.items():
            current = getattr(self, name)
            if name == 'symbols':
                changes[name] = tuple(values)
                continue
            changes[name] = replace(current, **values)
        return replace(self, **changes)
