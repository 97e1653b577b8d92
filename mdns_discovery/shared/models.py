"""
Data Models

Defines data classes and models used throughout the discovery engine.
"""

import hashlib
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

import base58
from multiaddr import Multiaddr

from .constants import (
    MULTIHASH_IDENTITY,
    MULTIHASH_SHA2_256,
    SHA2_256_DIGEST_LENGTH,
    MAX_IDENTITY_DIGEST_LENGTH,
    NATIVE_FORMAT,
)
from .exceptions import PeerIdError


class EngineState(Enum):
    """Lifecycle states of a discovery engine."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PeerId:
    """
    Identity of a participant, stored as its binary multihash.

    Two identities are equal when their decoded multihashes are equal; the
    base58 string form is only used on the wire.
    """
    multihash: bytes

    def __post_init__(self) -> None:
        _validate_multihash(self.multihash)

    @classmethod
    def from_string(cls, value: str) -> "PeerId":
        """
        Decode a base58btc peer identity.

        Args:
            value: Canonical string form, e.g. ``QmYyQSo1c1Ym7orWxLYvCrM2EmxFTANf8wXmmE7DWjhx5N``.

        Returns:
            The decoded identity.

        Raises:
            PeerIdError: If the string is not a valid base58 multihash.
        """
        if not isinstance(value, str) or not value:
            raise PeerIdError("Peer ID must be a non-empty string", field="peer_id")

        try:
            raw = base58.b58decode(value)
        except ValueError as e:
            raise PeerIdError(f"Peer ID is not valid base58: {e}", field="peer_id", value=value) from e

        return cls(raw)

    @classmethod
    def generate(cls) -> "PeerId":
        """Create a random sha2-256 based identity."""
        digest = hashlib.sha256(os.urandom(32)).digest()
        return cls(bytes([MULTIHASH_SHA2_256, SHA2_256_DIGEST_LENGTH]) + digest)

    def to_bytes(self) -> bytes:
        return self.multihash

    def to_string(self) -> str:
        return base58.b58encode(self.multihash).decode("ascii")

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"PeerId({self.to_string()!r})"


def _validate_multihash(raw: bytes) -> None:
    if not isinstance(raw, bytes) or len(raw) < 2:
        raise PeerIdError("Peer ID multihash is too short", field="peer_id")

    code, length = raw[0], raw[1]
    if len(raw) != length + 2:
        raise PeerIdError(
            f"Peer ID multihash length mismatch: header says {length}, got {len(raw) - 2}",
            field="peer_id"
        )

    if code == MULTIHASH_SHA2_256:
        if length != SHA2_256_DIGEST_LENGTH:
            raise PeerIdError("sha2-256 peer ID must carry a 32 byte digest", field="peer_id")
    elif code == MULTIHASH_IDENTITY:
        if not 0 < length <= MAX_IDENTITY_DIGEST_LENGTH:
            raise PeerIdError("Inlined peer ID key has an invalid length", field="peer_id")
    else:
        raise PeerIdError(f"Unsupported multihash code 0x{code:02x} in peer ID", field="peer_id")


@dataclass
class DiscoveredPeer:
    """A peer observed in an mDNS response."""
    id: PeerId
    multiaddrs: List[Multiaddr] = field(default_factory=list)
    wire_format: str = NATIVE_FORMAT
    source: Optional[Tuple[str, int]] = None
    discovered_at: datetime = field(default_factory=datetime.now)

    @property
    def address_count(self) -> int:
        """Number of addresses the peer advertised."""
        return len(self.multiaddrs)

    def to_dict(self) -> dict:
        """Convert to a plain dictionary (string forms only)."""
        return {
            "id": str(self.id),
            "multiaddrs": [str(addr) for addr in self.multiaddrs],
            "wire_format": self.wire_format,
            "source": f"{self.source[0]}:{self.source[1]}" if self.source else None,
            "discovered_at": self.discovered_at.isoformat(),
        }
