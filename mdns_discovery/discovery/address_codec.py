"""
Address Codec

Converts between the multiaddrs a host application advertises and the forms
carried on the wire: ``dnsaddr=`` TXT strings for the native format and
host/port pairs for the compat format.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from multiaddr import Multiaddr
from multiaddr import exceptions as multiaddr_exceptions
from multiaddr.protocols import P_IP4, P_IP6, P_P2P, P_TCP

from ..shared.constants import DNSADDR_PREFIX, MAX_TXT_STRING_LENGTH
from ..shared.exceptions import AddressEncodingError, PeerIdError
from ..shared.models import PeerId
from ..shared.protocols import AddressLike


logger = logging.getLogger(__name__)

_MULTIADDR_ERRORS = (multiaddr_exceptions.Error, ValueError, TypeError)


@dataclass(frozen=True)
class HostPort:
    """A TCP endpoint representable by A/AAAA + SRV records."""
    family: int
    host: str
    port: int


def to_multiaddr(value: AddressLike) -> Multiaddr:
    """
    Coerce a value into a validated multiaddr.

    Args:
        value: A ``Multiaddr``, its string form or its binary form.

    Returns:
        The parsed multiaddr.

    Raises:
        AddressEncodingError: If the value is empty or cannot be parsed.
    """
    if isinstance(value, Multiaddr):
        addr = value
    elif isinstance(value, (str, bytes)):
        if not value:
            raise AddressEncodingError("Address must not be empty", message_data=repr(value))
        try:
            addr = Multiaddr(value)
        except _MULTIADDR_ERRORS as e:
            raise AddressEncodingError(f"Invalid multiaddr {value!r}: {e}", message_data=repr(value)) from e
    else:
        raise AddressEncodingError(f"Unsupported address type: {type(value).__name__}")

    # Binary input is not validated on construction, rendering it is
    try:
        rendered = str(addr)
    except _MULTIADDR_ERRORS as e:
        raise AddressEncodingError(f"Invalid multiaddr: {e}", message_data=repr(value)) from e

    if not rendered:
        raise AddressEncodingError("Address must not be empty", message_data=repr(value))

    return addr


def normalize_addresses(values: Iterable[AddressLike]) -> List[Multiaddr]:
    """
    Build an address set: parsed, de-duplicated, first occurrence wins.

    Invalid entries are logged and skipped.
    """
    result: List[Multiaddr] = []
    seen = set()

    for value in values:
        try:
            addr = to_multiaddr(value)
        except AddressEncodingError as e:
            logger.warning(f"Skipping invalid address: {e}")
            continue

        key = addr.to_bytes()
        if key in seen:
            continue
        seen.add(key)
        result.append(addr)

    return result


def _same_peer(encoded: str, peer_id: PeerId) -> bool:
    try:
        return PeerId.from_string(encoded) == peer_id
    except PeerIdError:
        return False


def encode_dnsaddr(addr: AddressLike, peer_id: PeerId) -> str:
    """
    Encode an address as a native ``dnsaddr=`` TXT string.

    Args:
        addr: Address to advertise.
        peer_id: Identity of the announcing peer.

    Returns:
        ``dnsaddr=<addr>/p2p/<peer_id>``. The suffix is only appended when the
        address does not already end with this peer's identity.

    Raises:
        AddressEncodingError: If the address names another peer or the
            string would not fit in a single TXT character-string.
    """
    ma = to_multiaddr(addr)
    text = str(ma)

    existing = ma.get_peer_id()
    if existing is None:
        text = f"{text}/p2p/{peer_id}"
    elif not _same_peer(existing, peer_id):
        raise AddressEncodingError(
            f"Address {text} belongs to peer {existing}, not {peer_id}",
            message_data=text
        )

    entry = f"{DNSADDR_PREFIX}{text}"
    if len(entry.encode("utf-8")) > MAX_TXT_STRING_LENGTH:
        raise AddressEncodingError(
            f"dnsaddr entry exceeds {MAX_TXT_STRING_LENGTH} bytes",
            message_data=entry
        )

    return entry


def decode_dnsaddr(text: Union[str, bytes], expected_peer: PeerId) -> Optional[Multiaddr]:
    """
    Decode a native ``dnsaddr=`` TXT string.

    Args:
        text: One TXT character-string.
        expected_peer: Identity the record was announced for.

    Returns:
        The address without its ``/p2p`` suffix, or None when the string is
        not a dnsaddr entry at all.

    Raises:
        AddressEncodingError: If the entry is malformed or names another peer.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AddressEncodingError("dnsaddr entry is not valid UTF-8") from e

    if not text.startswith(DNSADDR_PREFIX):
        return None

    ma = to_multiaddr(text[len(DNSADDR_PREFIX):])

    encoded_peer = ma.get_peer_id()
    if encoded_peer is None:
        return ma

    if not _same_peer(encoded_peer, expected_peer):
        raise AddressEncodingError(
            f"dnsaddr entry names peer {encoded_peer}, expected {expected_peer}",
            message_data=text
        )

    stripped = ma.decapsulate_code(P_P2P)
    if not stripped.to_bytes():
        raise AddressEncodingError("dnsaddr entry carries no transport address", message_data=text)
    return stripped


def to_host_port(addr: AddressLike, peer_id: Optional[PeerId] = None) -> HostPort:
    """
    Down-convert an address to a host/port pair.

    Only ``/ip4|ip6/<host>/tcp/<port>`` is representable, optionally followed
    by ``/p2p/<peer_id>`` of the announcing peer, which is stripped.

    Raises:
        AddressEncodingError: For every other transport (DNS names, UDP,
            websockets, relays, ...).
    """
    ma = to_multiaddr(addr)
    try:
        parts = list(ma.items())
    except _MULTIADDR_ERRORS as e:
        raise AddressEncodingError(f"Invalid multiaddr: {e}") from e

    if len(parts) == 3 and parts[2][0].code == P_P2P:
        if peer_id is None or not _same_peer(parts[2][1], peer_id):
            raise AddressEncodingError(f"Address {ma} belongs to another peer", message_data=str(ma))
        parts = parts[:2]

    if len(parts) != 2 or parts[0][0].code not in (P_IP4, P_IP6) or parts[1][0].code != P_TCP:
        raise AddressEncodingError(
            f"Address {ma} is not a plain TCP endpoint",
            message_data=str(ma),
            expected_format="/ip4|ip6/<host>/tcp/<port>"
        )

    family = 4 if parts[0][0].code == P_IP4 else 6
    return HostPort(family=family, host=parts[0][1], port=int(parts[1][1]))


def from_host_port(family: int, host: str, port: int) -> Multiaddr:
    """
    Build ``/ip4|ip6/<host>/tcp/<port>`` from a decoded host/port pair.

    Raises:
        AddressEncodingError: If the pair is not a valid IP endpoint.
    """
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as e:
        raise AddressEncodingError(f"Invalid IP address {host!r}") from e

    if ip.version != family:
        raise AddressEncodingError(f"Address {host} is not IPv{family}")

    if not 0 <= port <= 65535:
        raise AddressEncodingError(f"Port {port} out of range")

    return to_multiaddr(f"/ip{family}/{ip.compressed}/tcp/{port}")
