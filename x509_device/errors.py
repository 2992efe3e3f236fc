"""Errors raised while bringing the simulated device up and keeping it running."""


class DeviceError(Exception):
    """Base class for every fatal device error."""


class ConfigError(DeviceError):
    """Settings are missing or malformed."""


class CredentialError(DeviceError):
    """The certificate bundle is missing, unreadable, or has no usable key."""


class TransportError(DeviceError):
    """Network or protocol failure talking to DPS or the IoT hub."""


class AuthenticationError(DeviceError):
    """The endpoint rejected the device certificate."""


class ProvisioningError(DeviceError):
    """DPS finished the handshake but did not assign the device."""

    def __init__(self, status, result=None):
        self.status = status
        self.result = result
        super().__init__(
            f"DeviceRegistrationResult.Status is NOT 'assigned' ({getattr(status, 'value', status)})")


class PublishError(DeviceError):
    """A message could not be handed to the session."""


class SessionClosedError(PublishError):
    """The session was already closed."""
