"""
Custom Exceptions

Everything the package raises derives from ``MdnsDiscoveryError``. Malformed
traffic from the network is dropped, not raised; these cover local misuse,
socket failures and addresses that cannot be put on the wire.
"""

from typing import Optional


class MdnsDiscoveryError(Exception):
    """Root of the package's exception hierarchy."""
    pass


class NetworkError(MdnsDiscoveryError):
    """A socket operation failed."""

    def __init__(self, message: str, operation: Optional[str] = None, address: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.address = address


class TransportError(NetworkError):
    """The multicast socket could not be opened, joined or used."""
    pass


class ValidationError(MdnsDiscoveryError):
    """A caller supplied value was rejected."""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[str] = None):
        super().__init__(message)
        if field is not None:
            self.field = field
        if value is not None:
            self.value = value


class PeerIdError(ValidationError):
    """A peer ID is not a valid base58 multihash."""
    pass


class ConfigurationError(MdnsDiscoveryError):
    """Configuration from a file, the environment or the command line is invalid."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details


class ProtocolError(MdnsDiscoveryError):
    """A DNS name, record or query could not be built."""

    def __init__(self, message: str, message_data: Optional[str] = None, expected_format: Optional[str] = None):
        super().__init__(message)
        self.message_data = message_data
        self.expected_format = expected_format


class AddressEncodingError(ProtocolError):
    """An address cannot be represented in a wire format."""
    pass


class ServiceDiscoveryError(MdnsDiscoveryError):
    """An engine operation failed."""
    pass


class EngineStateError(ServiceDiscoveryError):
    """The operation is not allowed in the engine's current state."""

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message)
        self.state = state
