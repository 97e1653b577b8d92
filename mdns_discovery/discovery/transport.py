"""
Multicast Transport

Asyncio datagram endpoint bound to the mDNS multicast group. Converts
datagrams to and from ``dns.message.Message`` objects and hands inbound
queries and responses to the owning engine.
"""

import asyncio
import contextlib
import logging
import socket
import struct
from typing import Optional, Tuple

import dns.exception
import dns.flags
import dns.message

from ..shared.config import DiscoveryConfig
from ..shared.constants import MAX_DATAGRAM_SIZE
from ..shared.exceptions import TransportError
from ..shared.metrics import MetricsCollector
from ..shared.protocols import MessageCallback
from ..shared.utils import format_address


logger = logging.getLogger(__name__)


def create_multicast_socket(config: DiscoveryConfig) -> socket.socket:
    """
    Create a non-blocking UDP socket joined to the configured IPv4 group.

    Args:
        config: Discovery configuration (port, group, interface, TTL, loopback).

    Returns:
        The bound socket.

    Raises:
        OSError: If the socket cannot be created, bound or joined.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Several engines on one host share the port
        if hasattr(socket, "SO_REUSEPORT"):
            with contextlib.suppress(OSError):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)

        sock.bind(("", config.port))

        group = socket.inet_aton(config.multicast_address)
        interface = socket.inet_aton(config.interface or "0.0.0.0")
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, struct.pack("4s4s", group, interface))

        if config.interface:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, interface)

        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, config.multicast_ttl)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1 if config.loopback else 0)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise

    return sock


class _MulticastProtocol(asyncio.DatagramProtocol):
    """Datagram protocol forwarding packets to its ``MulticastTransport``."""

    def __init__(self, owner: "MulticastTransport", closed: asyncio.Future):
        super().__init__()
        self._owner = owner
        self.closed = closed

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._owner._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"Multicast socket error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.closed.done():
            self.closed.set_result(None)


class MulticastTransport:
    """
    The single socket an engine sends and receives through.

    Inbound messages are dispatched by their QR flag to ``on_query`` or
    ``on_response``. Datagrams that do not parse as DNS are counted and dropped.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        metrics: Optional[MetricsCollector] = None,
        on_query: Optional[MessageCallback] = None,
        on_response: Optional[MessageCallback] = None
    ):
        """
        Initialize the transport.

        Args:
            config: Discovery configuration.
            metrics: Collector for datagram counters.
            on_query: Called with ``(message, source)`` for inbound queries.
            on_response: Called with ``(message, source)`` for inbound responses.
        """
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self.on_query = on_query
        self.on_response = on_response
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[_MulticastProtocol] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def destination(self) -> Tuple[str, int]:
        return (self.config.multicast_address, self.config.port)

    async def open(self) -> None:
        """
        Bind the socket and start receiving.

        Raises:
            TransportError: If the socket cannot be bound or joined.
        """
        if self._transport is not None:
            return

        try:
            sock = create_multicast_socket(self.config)
        except OSError as e:
            raise TransportError(
                f"Failed to open multicast socket on port {self.config.port}: {e}",
                operation="open",
                address=format_address(self.destination)
            ) from e

        loop = asyncio.get_running_loop()
        protocol = _MulticastProtocol(self, loop.create_future())
        try:
            transport, _ = await loop.create_datagram_endpoint(lambda: protocol, sock=sock)
        except OSError as e:
            sock.close()
            raise TransportError(
                f"Failed to start multicast endpoint: {e}",
                operation="open",
                address=format_address(self.destination)
            ) from e

        self._transport = transport
        self._protocol = protocol
        logger.debug(f"Multicast transport open on {format_address(self.destination)}")

    async def close(self) -> None:
        """
        Close the socket. Resolves once the endpoint has been torn down.

        Raises:
            TransportError: If the socket fails to close.
        """
        transport, protocol = self._transport, self._protocol
        self._transport = None
        self._protocol = None

        if transport is None:
            return

        try:
            transport.close()
            await protocol.closed
        except OSError as e:
            raise TransportError(f"Failed to close multicast socket: {e}", operation="close") from e

        logger.debug("Multicast transport closed")

    def send(self, message: dns.message.Message) -> None:
        """
        Send a message to the multicast group. Dropped silently once closed.

        Args:
            message: The message to send.
        """
        if not self.is_open:
            logger.debug("Dropping outbound message: transport is closed")
            return

        # Record order within an RRset is the advertised address order
        wire = message.to_wire(want_shuffle=False)
        if len(wire) > MAX_DATAGRAM_SIZE:
            logger.warning(f"Outbound mDNS message is {len(wire)} bytes, larger than {MAX_DATAGRAM_SIZE}")

        self._transport.sendto(wire, self.destination)

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        if not self.is_open:
            return

        try:
            message = dns.message.from_wire(data)
        except (dns.exception.DNSException, ValueError, UnicodeError) as e:
            self.metrics.increment_counter("malformed_datagrams")
            logger.debug(f"Dropping malformed datagram from {format_address(addr)}: {e}")
            return

        callback = self.on_response if message.flags & dns.flags.QR else self.on_query
        if callback is not None:
            callback(message, (addr[0], addr[1]))
