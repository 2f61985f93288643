from rpclb.backends import BackendPool, ExclusionCache, shuffled
from rpclb.config import ConfigError, Settings, load_settings
from rpclb.failover import FailoverRouter, FallbackExhausted, PrimaryExhausted, Relayed
from rpclb.forwarder import Forwarder, ForwardResult, Outcome, RequestSnapshot

__all__ = [
    "BackendPool",
    "ConfigError",
    "ExclusionCache",
    "FailoverRouter",
    "FallbackExhausted",
    "Forwarder",
    "ForwardResult",
    "Outcome",
    "PrimaryExhausted",
    "Relayed",
    "RequestSnapshot",
    "Settings",
    "load_settings",
    "shuffled",
]
