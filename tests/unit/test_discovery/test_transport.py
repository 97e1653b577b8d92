"""
Unit tests for the multicast transport.
"""

import socket
import struct
from unittest.mock import Mock, patch

import dns.message
import dns.name
import pytest

from mdns_discovery.discovery.record_builder import NativeRecordBuilder, new_query
from mdns_discovery.discovery.transport import MulticastTransport, create_multicast_socket
from mdns_discovery.shared.config import DiscoveryConfig
from mdns_discovery.shared.exceptions import TransportError
from mdns_discovery.shared.metrics import MetricsCollector


SOURCE = ("192.168.1.20", 5353)


def open_transport(transport: MulticastTransport) -> Mock:
    """Attach a mock datagram transport so the transport counts as open."""
    datagram_transport = Mock()
    datagram_transport.is_closing.return_value = False
    transport._transport = datagram_transport
    return datagram_transport


class TestCreateMulticastSocket:
    """Test create_multicast_socket function."""

    @patch("socket.socket")
    def test_socket_options(self, mock_socket_class):
        """Test the socket is bound and joined to the configured group."""
        mock_socket = Mock()
        mock_socket_class.return_value = mock_socket
        config = DiscoveryConfig(port=15353, multicast_ttl=4, loopback=False)

        sock = create_multicast_socket(config)

        assert sock is mock_socket
        mock_socket.bind.assert_called_once_with(("", 15353))
        membership = struct.pack("4s4s", socket.inet_aton("224.0.0.251"), socket.inet_aton("0.0.0.0"))
        mock_socket.setsockopt.assert_any_call(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        mock_socket.setsockopt.assert_any_call(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        mock_socket.setsockopt.assert_any_call(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 4)
        mock_socket.setsockopt.assert_any_call(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 0)
        mock_socket.setblocking.assert_called_once_with(False)

    @patch("socket.socket")
    def test_explicit_interface(self, mock_socket_class):
        """Test an explicit interface is used for membership and sending."""
        mock_socket = Mock()
        mock_socket_class.return_value = mock_socket

        create_multicast_socket(DiscoveryConfig(interface="192.168.1.10"))

        interface = socket.inet_aton("192.168.1.10")
        membership = struct.pack("4s4s", socket.inet_aton("224.0.0.251"), interface)
        mock_socket.setsockopt.assert_any_call(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        mock_socket.setsockopt.assert_any_call(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, interface)

    @patch("socket.socket")
    def test_bind_failure_closes_socket(self, mock_socket_class):
        """Test the socket is closed when binding fails."""
        mock_socket = Mock()
        mock_socket.bind.side_effect = OSError("Address already in use")
        mock_socket_class.return_value = mock_socket

        with pytest.raises(OSError):
            create_multicast_socket(DiscoveryConfig())

        mock_socket.close.assert_called_once()


class TestMulticastTransport:
    """Test MulticastTransport class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.metrics = MetricsCollector()
        self.on_query = Mock()
        self.on_response = Mock()
        self.transport = MulticastTransport(
            DiscoveryConfig(port=15353),
            metrics=self.metrics,
            on_query=self.on_query,
            on_response=self.on_response,
        )

    def test_initial_state(self):
        """Test a new transport is closed."""
        assert not self.transport.is_open
        assert self.transport.destination == ("224.0.0.251", 15353)

    async def test_open_failure(self):
        """Test socket errors are reported as TransportError."""
        with patch(
            "mdns_discovery.discovery.transport.create_multicast_socket",
            side_effect=OSError("Address already in use")
        ):
            with pytest.raises(TransportError, match="Failed to open multicast socket") as exc_info:
                await self.transport.open()

        assert exc_info.value.operation == "open"
        assert not self.transport.is_open

    async def test_close_when_not_open(self):
        """Test closing a transport that was never opened."""
        await self.transport.close()

        assert not self.transport.is_open

    def test_send_when_closed_is_dropped(self):
        """Test sending on a closed transport does nothing."""
        self.transport.send(NativeRecordBuilder().build_query())

    def test_send(self):
        """Test messages are sent to the multicast group."""
        datagram_transport = open_transport(self.transport)
        query = NativeRecordBuilder().build_query()

        self.transport.send(query)

        datagram_transport.sendto.assert_called_once_with(query.to_wire(), ("224.0.0.251", 15353))

    def test_query_dispatch(self):
        """Test inbound queries go to on_query."""
        open_transport(self.transport)
        query = new_query(0, dns.name.from_text("_p2p._udp.local"))

        self.transport._handle_datagram(query.to_wire(), SOURCE)

        self.on_query.assert_called_once()
        message, source = self.on_query.call_args[0]
        assert isinstance(message, dns.message.Message)
        assert source == SOURCE
        self.on_response.assert_not_called()

    def test_response_dispatch(self, peer_a):
        """Test inbound responses go to on_response."""
        open_transport(self.transport)
        response = NativeRecordBuilder().build_announce(peer_a, ["/ip4/192.168.1.20/tcp/4001"])

        self.transport._handle_datagram(response.to_wire(), SOURCE)

        self.on_response.assert_called_once()
        self.on_query.assert_not_called()

    @pytest.mark.parametrize("data", [b"", b"\x00", b"\xff" * 12, b"not a dns message at all"])
    def test_malformed_datagram(self, data):
        """Test datagrams that are not DNS are counted and dropped."""
        open_transport(self.transport)

        self.transport._handle_datagram(data, SOURCE)

        assert self.metrics.get_counter("malformed_datagrams") == 1
        self.on_query.assert_not_called()
        self.on_response.assert_not_called()

    def test_datagram_after_close_ignored(self):
        """Test datagrams are not dispatched once the transport is closed."""
        query = new_query(0, dns.name.from_text("_p2p._udp.local"))

        self.transport._handle_datagram(query.to_wire(), SOURCE)

        self.on_query.assert_not_called()
