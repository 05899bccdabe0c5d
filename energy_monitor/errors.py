"""Error taxonomy shared by the data provider and the display driver"""


class EnergyMonitorError(Exception):
    """Base class for all errors raised by this project."""


class PipelineError(EnergyMonitorError):
    """
    Failure of a single acquisition cycle or message.

    Non-fatal errors end the current cycle without a publish and are
    logged; the next scheduled tick starts over. Fatal errors propagate
    to the driver, which terminates the process.
    """
    fatal = False


class ConfigError(PipelineError):
    """Missing or empty credential. The process cannot operate without it."""
    fatal = True


class AuthError(PipelineError):
    """Token or credential rejected by the remote side."""


class TransportError(PipelineError):
    """Network, timeout or HTTP status failure."""


class GraphQLError(TransportError):
    """The GraphQL endpoint answered with errors or without data."""


class DecodeError(PipelineError):
    """Malformed bus payload or malformed meter telegram."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ProtocolAssumptionViolation(PipelineError):
    """Well-formed data that does not have the expected content."""


class NoPriceAvailable(ProtocolAssumptionViolation):
    """The price API returned no current price."""


class BusError(EnergyMonitorError):
    """Publish, subscribe or connection failure on the message bus."""


class TopicBindingError(EnergyMonitorError):
    """A topic name is bound inconsistently or fails its round-trip check."""
