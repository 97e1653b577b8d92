"""
Native Response Interpreter

Turns inbound native-format responses into ``DiscoveredPeer`` records and
recognizes queries for the native service.
"""

import logging
from typing import Iterator, List, Optional, Tuple

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from ..shared.constants import DEFAULT_SERVICE_TAG, NATIVE_FORMAT
from ..shared.exceptions import AddressEncodingError, MdnsDiscoveryError, PeerIdError
from ..shared.models import DiscoveredPeer, PeerId
from .address_codec import decode_dnsaddr
from .record_builder import make_name


logger = logging.getLogger(__name__)

# mDNS reuses the top bit of the class field (cache-flush / unicast-response)
_MDNS_CLASS_MASK = 0x7FFF

INTERPRET_ERRORS = (dns.exception.DNSException, MdnsDiscoveryError, ValueError, UnicodeError)


def is_class_in(rdclass: int) -> bool:
    return (int(rdclass) & _MDNS_CLASS_MASK) == dns.rdataclass.IN


def is_response(message: dns.message.Message) -> bool:
    return bool(message.flags & dns.flags.QR)


def iter_records(message: dns.message.Message) -> Iterator[dns.rrset.RRset]:
    """Answer records followed by additional records, class IN only."""
    for rrset in list(message.answer) + list(message.additional):
        if is_class_in(rrset.rdclass):
            yield rrset


def find_rrsets(
    message: dns.message.Message,
    name: dns.name.Name,
    rdtype: int
) -> List[dns.rrset.RRset]:
    # dns.name.Name comparison is case-insensitive
    return [rrset for rrset in iter_records(message) if rrset.rdtype == rdtype and rrset.name == name]


def asks_for_service(message: dns.message.Message, service_name: dns.name.Name) -> bool:
    """True for a query carrying a PTR (or ANY) question for ``service_name``."""
    if is_response(message):
        return False
    return any(
        question.name == service_name and question.rdtype in (dns.rdatatype.PTR, dns.rdatatype.ANY)
        for question in message.question
    )


def find_instance(
    message: dns.message.Message,
    service_name: dns.name.Name
) -> Optional[Tuple[dns.name.Name, str]]:
    """
    Locate the announced service instance.

    Returns:
        ``(instance_name, instance_label)`` from the first PTR record owned by
        the service whose target is a direct child of it, or None.
    """
    for rrset in find_rrsets(message, service_name, dns.rdatatype.PTR):
        for rdata in rrset:
            target = rdata.target
            if len(target) == len(service_name) + 1 and target.is_subdomain(service_name):
                label = target.labels[0].decode("utf-8")
                return target, label
    return None


def parse_peer_id(value: str) -> Optional[PeerId]:
    try:
        return PeerId.from_string(value)
    except PeerIdError:
        return None


class NativeResponseInterpreter:
    """Interpreter for the native ``_p2p._udp.local`` format."""

    wire_format = NATIVE_FORMAT

    def __init__(self, own_peer_id: PeerId, service_tag: str = DEFAULT_SERVICE_TAG):
        """
        Initialize the interpreter.

        Args:
            own_peer_id: Identity of the local peer, never reported.
            service_tag: Service label to match.
        """
        self.own_peer_id = own_peer_id
        self.service_name = make_name(service_tag)

    def is_service_query(self, message: dns.message.Message) -> bool:
        return asks_for_service(message, self.service_name)

    def interpret(
        self,
        message: dns.message.Message,
        source: Optional[Tuple[str, int]] = None
    ) -> Optional[DiscoveredPeer]:
        """
        Decode a native announce.

        Args:
            message: Parsed inbound message.
            source: Sender address, informational only.

        Returns:
            The discovered peer, or None for unrelated traffic, unparseable
            identities and this peer's own announces.
        """
        if not is_response(message):
            return None

        try:
            return self._interpret(message, source)
        except INTERPRET_ERRORS as e:
            logger.debug(f"Discarding malformed native response from {source}: {e}")
            return None

    def _interpret(
        self,
        message: dns.message.Message,
        source: Optional[Tuple[str, int]]
    ) -> Optional[DiscoveredPeer]:
        found = find_instance(message, self.service_name)
        if found is None:
            return None

        instance, label = found
        peer_id = parse_peer_id(label)
        if peer_id is None:
            logger.debug(f"Ignoring native announce with unparseable identity {label!r}")
            return None

        if peer_id == self.own_peer_id:
            return None

        multiaddrs = []
        seen = set()
        for rrset in find_rrsets(message, instance, dns.rdatatype.TXT):
            for rdata in rrset:
                for entry in rdata.strings:
                    try:
                        addr = decode_dnsaddr(entry, peer_id)
                    except AddressEncodingError as e:
                        logger.debug(f"Skipping address record of {peer_id}: {e}")
                        continue
                    if addr is None or addr.to_bytes() in seen:
                        continue
                    seen.add(addr.to_bytes())
                    multiaddrs.append(addr)

        return DiscoveredPeer(
            id=peer_id,
            multiaddrs=multiaddrs,
            wire_format=NATIVE_FORMAT,
            source=source,
        )
