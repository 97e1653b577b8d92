"""
Type Protocols and Interfaces

Defines protocol interfaces for structural typing of the discovery pipelines,
the transport and the event emitter.
"""

from abc import abstractmethod
from typing import (
    Any,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

import dns.message
from multiaddr import Multiaddr

from .models import DiscoveredPeer, PeerId


SourceAddress = Tuple[str, int]

AddressLike = Union[Multiaddr, str, bytes]

# A static list of addresses, or a callable (sync or async) producing one
AddressProvider = Union[
    Iterable[AddressLike],
    Callable[[], Iterable[AddressLike]],
    Callable[[], Awaitable[Iterable[AddressLike]]],
]

MessageCallback = Callable[[dns.message.Message, SourceAddress], None]


@runtime_checkable
class RecordBuilder(Protocol):
    """Protocol for building the outgoing messages of one wire format."""

    @abstractmethod
    def build_query(self) -> dns.message.Message:
        """
        Build a query asking peers of this format to announce themselves.

        Returns:
            The query message.
        """
        ...

    @abstractmethod
    def build_announce(self, peer_id: PeerId, addresses: Iterable[Multiaddr]) -> dns.message.Message:
        """
        Build a response advertising a peer.

        Args:
            peer_id: Identity to advertise.
            addresses: Address set of this announce cycle.

        Returns:
            The response message.
        """
        ...


@runtime_checkable
class ResponseInterpreter(Protocol):
    """Protocol for decoding inbound messages of one wire format."""

    @abstractmethod
    def is_service_query(self, message: dns.message.Message) -> bool:
        """
        Check whether a message asks for this format's service.

        Args:
            message: Parsed inbound message.

        Returns:
            True for a query naming the service label.
        """
        ...

    @abstractmethod
    def interpret(
        self,
        message: dns.message.Message,
        source: Optional[SourceAddress] = None
    ) -> Optional[DiscoveredPeer]:
        """
        Decode a message into a remote peer.

        Args:
            message: Parsed inbound message.
            source: Sender address.

        Returns:
            The discovered peer, or None.
        """
        ...


@runtime_checkable
class Transport(Protocol):
    """Protocol for the multicast send/receive primitive."""

    on_query: Optional[MessageCallback]
    on_response: Optional[MessageCallback]

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the transport can currently send."""
        ...

    @abstractmethod
    async def open(self) -> None:
        """Bind the socket and join the multicast group."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the socket; resolves once it is fully closed."""
        ...

    @abstractmethod
    def send(self, message: dns.message.Message) -> None:
        """
        Send a message to the multicast group.

        Args:
            message: The message to send.
        """
        ...


class EventEmitter(Protocol):
    """Protocol for event emission."""

    @abstractmethod
    def emit(self, event: str, *args: Any) -> None:
        """
        Emit an event.

        Args:
            event: The event name.
            *args: Event arguments.
        """
        ...

    @abstractmethod
    def add_listener(self, event: str, callback: Callable[..., None], once: bool = False) -> Any:
        """
        Register an event listener.

        Args:
            event: The event name.
            callback: The callback function.
            once: Remove the listener after its first call.
        """
        ...

    @abstractmethod
    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        """
        Unregister an event listener.

        Args:
            event: The event name.
            callback: The callback function.
        """
        ...
