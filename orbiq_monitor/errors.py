"""Error taxonomy for the monitor daemon."""


class OrbiqError(Exception):
    """Base class for all monitor errors."""


class ConfigurationError(OrbiqError):
    """Invalid configuration; fatal at startup."""


class BrokerConnectionError(OrbiqError):
    """Connecting to the broker failed or the connection was lost."""


class PublishError(OrbiqError):
    """A single MQTT publish was rejected or not acknowledged."""


class SampleError(OrbiqError):
    """The sensor source could not produce a snapshot."""
