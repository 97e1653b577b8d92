"""
Pytest configuration and shared fixtures for the mDNS discovery test suite.
"""

import asyncio
import hashlib
import socket
import struct
from typing import Callable, List, Optional, Tuple

import dns.flags
import dns.message
import pytest

from mdns_discovery.shared.config import DiscoveryConfig
from mdns_discovery.shared.exceptions import TransportError
from mdns_discovery.shared.metrics import MetricsCollector
from mdns_discovery.shared.models import PeerId


def make_peer_id(seed: str) -> PeerId:
    """Deterministic sha2-256 identity derived from ``seed``."""
    return PeerId(bytes([0x12, 0x20]) + hashlib.sha256(seed.encode("utf-8")).digest())


class FakeTransport:
    """In-memory transport attached to a ``FakeNetwork``."""

    def __init__(self, network: "FakeNetwork", config: DiscoveryConfig, metrics: MetricsCollector, address):
        self.network = network
        self.config = config
        self.metrics = metrics
        self.address = address
        self.on_query = None
        self.on_response = None
        self.sent: List[dns.message.Message] = []
        self.open_calls = 0
        self.close_calls = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self.open_calls += 1
        if self.network.open_delay:
            await asyncio.sleep(self.network.open_delay)
        if self.network.open_error is not None:
            raise self.network.open_error
        self._open = True

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def send(self, message: dns.message.Message) -> None:
        if not self._open:
            return
        self.sent.append(message)
        self.network.broadcast(self, message.to_wire(want_shuffle=False))

    def receive(self, wire: bytes, source: Tuple[str, int]) -> None:
        if not self._open:
            return
        message = dns.message.from_wire(wire)
        callback = self.on_response if message.flags & dns.flags.QR else self.on_query
        if callback is not None:
            callback(message, source)

    def deliver(self, message: dns.message.Message, source: Tuple[str, int] = ("192.168.1.250", 5353)) -> None:
        """Hand a message to the engine as if it arrived from the network."""
        self.receive(message.to_wire(want_shuffle=False), source)

    def sent_responses(self) -> List[dns.message.Message]:
        return [m for m in self.sent if m.flags & dns.flags.QR]

    def sent_queries(self) -> List[dns.message.Message]:
        return [m for m in self.sent if not m.flags & dns.flags.QR]


class FakeNetwork:
    """
    Shared multicast segment for fake transports.

    Every datagram is delivered on the next loop iteration to every open
    transport, the sender included (multicast loopback).
    """

    def __init__(self, loopback: bool = True):
        self.loopback = loopback
        self.transports: List[FakeTransport] = []
        self.open_error: Optional[Exception] = None
        self.open_delay = 0.0

    def factory(self, config: DiscoveryConfig, metrics: MetricsCollector) -> FakeTransport:
        address = (f"192.168.1.{len(self.transports) + 10}", config.port)
        transport = FakeTransport(self, config, metrics, address)
        self.transports.append(transport)
        return transport

    def broadcast(self, sender: FakeTransport, wire: bytes) -> None:
        loop = asyncio.get_running_loop()
        for transport in list(self.transports):
            if transport is sender and not self.loopback:
                continue
            loop.call_soon(transport.receive, wire, sender.address)


@pytest.fixture
def peer_id_factory() -> Callable[[str], PeerId]:
    """Provide the deterministic peer identity helper."""
    return make_peer_id


@pytest.fixture
def peer_a() -> PeerId:
    return make_peer_id("peer-a")


@pytest.fixture
def peer_b() -> PeerId:
    return make_peer_id("peer-b")


@pytest.fixture
def peer_c() -> PeerId:
    return make_peer_id("peer-c")


@pytest.fixture
def network() -> FakeNetwork:
    """Provide an in-memory multicast segment."""
    return FakeNetwork()


@pytest.fixture
def discovery_config() -> DiscoveryConfig:
    """Configuration whose timer never fires during a unit test."""
    return DiscoveryConfig(interval=60.0)


@pytest.fixture
def settle() -> Callable:
    """Let pending callbacks and tasks run."""
    async def _settle(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


@pytest.fixture
def failing_open(network) -> FakeNetwork:
    network.open_error = TransportError("address already in use", operation="open")
    return network


def _multicast_available(port: int) -> bool:
    """True when a datagram sent to the mDNS group on ``port`` loops back to us."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
        membership = struct.pack("4s4s", socket.inet_aton("224.0.0.251"), socket.inet_aton("0.0.0.0"))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        sock.settimeout(0.5)
        sock.sendto(b"probe", ("224.0.0.251", port))
        data, _ = sock.recvfrom(64)
        return data == b"probe"
    except OSError:
        return False
    finally:
        sock.close()


@pytest.fixture
def free_udp_port() -> int:
    """Provide a UDP port nobody else is bound to."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]


@pytest.fixture
def multicast_port(free_udp_port) -> int:
    """Provide a port for real multicast tests, skipping where multicast is unavailable."""
    if not _multicast_available(free_udp_port):
        pytest.skip("IPv4 multicast is not available in this environment")
    return free_udp_port


@pytest.fixture
def temp_log_file(tmp_path) -> str:
    """Provide a temporary log file path."""
    return str(tmp_path / "test.log")


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration between tests."""
    import logging
    root_logger = logging.getLogger()
    level = root_logger.level
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    yield

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)
