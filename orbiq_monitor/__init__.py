"""Host metrics -> MQTT publisher with Home Assistant discovery."""

__version__ = "0.3.0"

from .errors import (  # noqa: E402
    BrokerConnectionError,
    ConfigurationError,
    OrbiqError,
    PublishError,
    SampleError,
)

__all__ = [
    "__version__",
    "BrokerConnectionError",
    "ConfigurationError",
    "OrbiqError",
    "PublishError",
    "SampleError",
]
