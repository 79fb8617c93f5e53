from .config_loader import Config, config
from .settings import (
    AccountSettings,
    ChannelSettings,
    ConfigurationError,
    EngineSettings,
    ExecutionPolicy,
    MonitoringSettings,
    SessionSettings,
    VolatilitySettings,
)

__all__ = [
    'Config',
    'config',
    'AccountSettings',
    'ChannelSettings',
    'ConfigurationError',
    'EngineSettings',
    'ExecutionPolicy',
    'MonitoringSettings',
    'SessionSettings',
    'VolatilitySettings',
]
