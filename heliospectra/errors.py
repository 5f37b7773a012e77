"""Error taxonomy shared by the adapters, the control loop and the CLI."""
from __future__ import annotations


class HeliospectraError(Exception):
    """Base exception for the fixture control agent."""


class DeviceError(HeliospectraError):
    """A read or write against the fixture failed; retryable at the timepoint level."""


class TransportError(DeviceError):
    """Network unreachable, dial failure, timeout or a non-2xx HTTP status."""


class ProtocolError(DeviceError):
    """The fixture answered, but not with something we understand."""


class DecodeError(HeliospectraError):
    """The status document could not be parsed at all."""


class ValidationError(HeliospectraError):
    """A timepoint does not fit the fixture; skipped rather than retried."""


class ConfigError(HeliospectraError):
    """Startup misconfiguration; the agent exits with a nonzero status."""


class MetricsError(HeliospectraError):
    """A metrics line could not be delivered to the collector."""
