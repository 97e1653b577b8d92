"""
Native Record Builder

Builds the DNS messages of the native wire format:

    PTR <service>            -> <peer-id>.<service>
    TXT <peer-id>.<service>  "dnsaddr=<multiaddr>/p2p/<peer-id>"   (one per address)

Every address kind is preserved; the format carries each multiaddr verbatim.
"""

import logging
from typing import Iterable, List, Union

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.PTR import PTR
from dns.rdtypes.ANY.TXT import TXT
from multiaddr import Multiaddr

from ..shared.constants import DEFAULT_RECORD_TTL, DEFAULT_SERVICE_TAG, NATIVE_FORMAT
from ..shared.exceptions import AddressEncodingError, ProtocolError
from ..shared.models import PeerId
from .address_codec import encode_dnsaddr


logger = logging.getLogger(__name__)


def make_name(text: Union[str, dns.name.Name]) -> dns.name.Name:
    """Parse an absolute DNS name."""
    if isinstance(text, dns.name.Name):
        return text
    try:
        return dns.name.from_text(text)
    except dns.exception.DNSException as e:
        raise ProtocolError(f"Invalid DNS name {text!r}: {e}") from e


def instance_name(peer_id: PeerId, service_name: dns.name.Name) -> dns.name.Name:
    """Service instance name ``<peer-id>.<service>``."""
    try:
        return dns.name.from_text(str(peer_id), origin=service_name)
    except dns.exception.DNSException as e:
        raise ProtocolError(f"Peer ID {peer_id} cannot be used as a DNS label: {e}") from e


def new_query(message_id: int, service_name: dns.name.Name) -> dns.message.Message:
    """A one-question PTR query for ``service_name``."""
    message = dns.message.Message(id=message_id)
    message.question.append(dns.rrset.RRset(service_name, dns.rdataclass.IN, dns.rdatatype.PTR))
    return message


def new_response(message_id: int = 0) -> dns.message.Message:
    """An empty authoritative response."""
    message = dns.message.Message(id=message_id)
    message.flags = dns.flags.QR | dns.flags.AA
    return message


def ptr_record(owner: dns.name.Name, target: dns.name.Name, ttl: int) -> dns.rrset.RRset:
    rdata = PTR(dns.rdataclass.IN, dns.rdatatype.PTR, target)
    return dns.rrset.from_rdata(owner, ttl, rdata)


def txt_record(owner: dns.name.Name, strings: Iterable[List[str]], ttl: int) -> dns.rrset.RRset:
    """One TXT record per entry of ``strings``, each holding the given character-strings."""
    rdatas = [TXT(dns.rdataclass.IN, dns.rdatatype.TXT, entry) for entry in strings]
    return dns.rrset.from_rdata_list(owner, ttl, rdatas)


class NativeRecordBuilder:
    """Record builder for the native ``_p2p._udp.local`` format."""

    wire_format = NATIVE_FORMAT

    def __init__(self, service_tag: str = DEFAULT_SERVICE_TAG, ttl: int = DEFAULT_RECORD_TTL):
        """
        Initialize the builder.

        Args:
            service_tag: Service label queried and announced.
            ttl: TTL of every emitted record, in seconds.
        """
        self.service_name = make_name(service_tag)
        self.ttl = ttl

    def build_query(self) -> dns.message.Message:
        """Build the PTR query asking native peers to announce themselves."""
        return new_query(0, self.service_name)

    def build_announce(self, peer_id: PeerId, addresses: Iterable[Multiaddr]) -> dns.message.Message:
        """
        Build the announce response for ``peer_id``.

        Args:
            peer_id: Identity of this peer.
            addresses: Address set read for this announce cycle.

        Returns:
            A response holding the PTR record and one TXT record per
            encodable address. With no addresses only the PTR is sent.
        """
        instance = instance_name(peer_id, self.service_name)
        message = new_response()
        message.answer.append(ptr_record(self.service_name, instance, self.ttl))

        entries: List[List[str]] = []
        for addr in addresses:
            try:
                entries.append([encode_dnsaddr(addr, peer_id)])
            except AddressEncodingError as e:
                logger.debug(f"Not announcing {addr}: {e}")

        if entries:
            message.answer.append(txt_record(instance, entries, self.ttl))

        return message
