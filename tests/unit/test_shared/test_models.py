"""
Tests for data models.
"""

import hashlib
from datetime import datetime

import base58
import pytest
from multiaddr import Multiaddr

from mdns_discovery.shared.exceptions import PeerIdError, ValidationError
from mdns_discovery.shared.models import DiscoveredPeer, EngineState, PeerId


SHA256_PEER = "QmYyQSo1c1Ym7orWxLYvCrM2EmxFTANf8wXmmE7DWjhx5N"


class TestPeerId:
    """Test PeerId class."""

    def test_from_string_round_trip(self):
        """Test that decoding and re-encoding preserves the canonical form."""
        peer_id = PeerId.from_string(SHA256_PEER)

        assert str(peer_id) == SHA256_PEER
        assert peer_id.to_string() == SHA256_PEER
        assert peer_id.to_bytes() == base58.b58decode(SHA256_PEER)

    def test_equality_is_by_multihash(self):
        """Test identities compare by their decoded bytes."""
        first = PeerId.from_string(SHA256_PEER)
        second = PeerId(base58.b58decode(SHA256_PEER))

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_identity_multihash_accepted(self):
        """Test inlined-key (identity multihash) peer IDs are accepted."""
        key = bytes(range(36))
        raw = bytes([0x00, len(key)]) + key

        peer_id = PeerId(raw)

        assert PeerId.from_string(str(peer_id)) == peer_id

    def test_generate(self):
        """Test generated identities are valid and distinct."""
        first = PeerId.generate()
        second = PeerId.generate()

        assert first != second
        assert first.to_bytes()[:2] == bytes([0x12, 0x20])
        assert str(first).startswith("Qm")

    @pytest.mark.parametrize("value", ["", "not-base58-0OIl", "Qm", 42, None])
    def test_from_string_invalid(self, value):
        """Test invalid strings are rejected."""
        with pytest.raises(PeerIdError):
            PeerId.from_string(value)

    def test_peer_id_error_is_validation_error(self):
        """Test PeerIdError belongs to the validation hierarchy."""
        with pytest.raises(ValidationError):
            PeerId.from_string("")

    def test_unsupported_hash_code(self):
        """Test multihashes other than sha2-256 and identity are rejected."""
        raw = bytes([0x13, 0x40]) + hashlib.sha512(b"x").digest()

        with pytest.raises(PeerIdError, match="Unsupported multihash code"):
            PeerId(raw)

    def test_length_mismatch(self):
        """Test a digest shorter than its header claims is rejected."""
        raw = bytes([0x12, 0x20]) + b"\x00" * 16

        with pytest.raises(PeerIdError, match="length mismatch"):
            PeerId(raw)

    def test_repr(self):
        """Test the repr shows the string form."""
        assert repr(PeerId.from_string(SHA256_PEER)) == f"PeerId('{SHA256_PEER}')"


class TestDiscoveredPeer:
    """Test DiscoveredPeer class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.peer_id = PeerId.from_string(SHA256_PEER)

    def test_defaults(self):
        """Test default values."""
        peer = DiscoveredPeer(id=self.peer_id)

        assert peer.multiaddrs == []
        assert peer.wire_format == "native"
        assert peer.source is None
        assert isinstance(peer.discovered_at, datetime)
        assert peer.address_count == 0

    def test_address_count(self):
        """Test the address count follows the address list."""
        peer = DiscoveredPeer(
            id=self.peer_id,
            multiaddrs=[Multiaddr("/ip4/192.168.1.2/tcp/4001"), Multiaddr("/ip6/::1/tcp/4001")],
        )

        assert peer.address_count == 2

    def test_to_dict(self):
        """Test conversion to a plain dictionary."""
        discovered_at = datetime(2024, 1, 1, 12, 0, 0)
        peer = DiscoveredPeer(
            id=self.peer_id,
            multiaddrs=[Multiaddr("/ip4/192.168.1.2/tcp/4001")],
            wire_format="compat",
            source=("192.168.1.2", 5353),
            discovered_at=discovered_at,
        )

        assert peer.to_dict() == {
            "id": SHA256_PEER,
            "multiaddrs": ["/ip4/192.168.1.2/tcp/4001"],
            "wire_format": "compat",
            "source": "192.168.1.2:5353",
            "discovered_at": "2024-01-01T12:00:00",
        }

    def test_to_dict_without_source(self):
        """Test conversion when the sender is unknown."""
        assert DiscoveredPeer(id=self.peer_id).to_dict()["source"] is None


class TestEngineState:
    """Test EngineState enum."""

    def test_state_values(self):
        """Test lifecycle state values."""
        assert [state.value for state in EngineState] == ["idle", "starting", "running", "stopping", "stopped"]
