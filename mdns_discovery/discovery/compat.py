"""
Compat Wire Format

Record layout of the go-libp2p mDNS discovery service, reproduced so that
peers running either implementation find each other:

    PTR _ipfs-discovery._udp.local   -> <peer-id>._ipfs-discovery._udp.local
    SRV <instance>  10 1 <port> <hostname>
    TXT <instance>  "<peer-id>"
    A / AAAA <hostname>  <ip>          (one per TCP address)

Only plain TCP endpoints can be expressed, and SRV carries a single port.
"""

import ipaddress
import itertools
import logging
from typing import List, Optional, Tuple

import dns.exception
import dns.message
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA
from dns.rdtypes.IN.SRV import SRV
from multiaddr import Multiaddr

from ..shared.config import DiscoveryConfig
from ..shared.constants import (
    COMPAT_FORMAT,
    COMPAT_SERVICE_TAG_LOCAL,
    COMPAT_SRV_PRIORITY,
    COMPAT_SRV_WEIGHT,
    DEFAULT_RECORD_TTL,
)
from ..shared.exceptions import AddressEncodingError
from ..shared.models import DiscoveredPeer, PeerId
from ..shared.utils import get_hostname
from .address_codec import HostPort, from_host_port, to_host_port
from .pipeline import DiscoveryPipeline
from .record_builder import (
    instance_name,
    make_name,
    new_query,
    new_response,
    ptr_record,
    txt_record,
)
from .response_interpreter import (
    INTERPRET_ERRORS,
    asks_for_service,
    find_instance,
    find_rrsets,
    is_response,
    parse_peer_id,
)


logger = logging.getLogger(__name__)


def representable_endpoints(peer_id: PeerId, addresses) -> List[HostPort]:
    """
    Select the addresses the compat format can carry.

    Non-TCP transports are dropped, and so is every endpoint whose port
    differs from the first one kept.
    """
    endpoints: List[HostPort] = []
    for addr in addresses:
        try:
            endpoint = to_host_port(addr, peer_id)
        except AddressEncodingError as e:
            logger.debug(f"Not announcing {addr} in compat format: {e}")
            continue

        if endpoints and endpoint.port != endpoints[0].port:
            logger.debug(f"Not announcing {addr} in compat format: SRV already carries port {endpoints[0].port}")
            continue

        if endpoint not in endpoints:
            endpoints.append(endpoint)

    return endpoints


class CompatRecordBuilder:
    """Record builder for the ``_ipfs-discovery._udp.local`` format."""

    wire_format = COMPAT_FORMAT

    def __init__(self, ttl: int = DEFAULT_RECORD_TTL, hostname: Optional[str] = None):
        """
        Initialize the builder.

        Args:
            ttl: TTL of every emitted record, in seconds.
            hostname: SRV target and owner of the address records. Defaults
                to the operating system host name.
        """
        self.service_name = make_name(COMPAT_SERVICE_TAG_LOCAL)
        self.hostname = make_name(hostname or get_hostname())
        self.ttl = ttl
        self._query_ids = itertools.count(1)

    def build_query(self) -> dns.message.Message:
        """Build a PTR query; every query carries a fresh message id."""
        return new_query(next(self._query_ids) & 0xFFFF, self.service_name)

    def build_announce(self, peer_id: PeerId, addresses) -> dns.message.Message:
        """
        Build the announce response for ``peer_id``.

        Returns:
            PTR, SRV, TXT and one A/AAAA record per representable address.
            Without representable addresses only PTR and TXT are sent.
        """
        instance = instance_name(peer_id, self.service_name)
        message = new_response()
        message.answer.append(ptr_record(self.service_name, instance, self.ttl))

        endpoints = representable_endpoints(peer_id, addresses)
        if endpoints:
            srv = SRV(
                dns.rdataclass.IN, dns.rdatatype.SRV,
                COMPAT_SRV_PRIORITY, COMPAT_SRV_WEIGHT, endpoints[0].port, self.hostname
            )
            message.answer.append(dns.rrset.from_rdata(instance, self.ttl, srv))

        message.answer.append(txt_record(instance, [[str(peer_id)]], self.ttl))

        v4 = [A(dns.rdataclass.IN, dns.rdatatype.A, e.host) for e in endpoints if e.family == 4]
        v6 = [AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, e.host) for e in endpoints if e.family == 6]
        if v4:
            message.answer.append(dns.rrset.from_rdata_list(self.hostname, self.ttl, v4))
        if v6:
            message.answer.append(dns.rrset.from_rdata_list(self.hostname, self.ttl, v6))

        return message


def _address_of(rdata, family: int) -> Optional[str]:
    # Records sent with the cache-flush bit arrive as generic rdata
    if isinstance(rdata, dns.rdata.GenericRdata):
        try:
            ip = ipaddress.ip_address(rdata.data)
        except ValueError:
            return None
        return ip.compressed if ip.version == family else None
    return rdata.address


def _srv_of(rdata) -> Optional[SRV]:
    if isinstance(rdata, dns.rdata.GenericRdata):
        try:
            return dns.rdata.from_wire(dns.rdataclass.IN, dns.rdatatype.SRV, rdata.data, 0, len(rdata.data))
        except dns.exception.DNSException:
            # Compressed target names cannot be decoded out of context
            return None
    return rdata


class CompatResponseInterpreter:
    """Interpreter for the ``_ipfs-discovery._udp.local`` format."""

    wire_format = COMPAT_FORMAT

    def __init__(self, own_peer_id: PeerId):
        self.own_peer_id = own_peer_id
        self.service_name = make_name(COMPAT_SERVICE_TAG_LOCAL)

    def is_service_query(self, message: dns.message.Message) -> bool:
        return asks_for_service(message, self.service_name)

    def interpret(
        self,
        message: dns.message.Message,
        source: Optional[Tuple[str, int]] = None
    ) -> Optional[DiscoveredPeer]:
        """
        Decode a compat announce.

        The identity is the first TXT string of the instance, falling back to
        the instance label. Addresses are the A/AAAA records of the SRV target
        combined with the SRV port.
        """
        if not is_response(message):
            return None

        try:
            return self._interpret(message, source)
        except INTERPRET_ERRORS as e:
            logger.debug(f"Discarding malformed compat response from {source}: {e}")
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
        peer_id = self._identity(message, instance, label)
        if peer_id is None:
            return None

        if peer_id == self.own_peer_id:
            return None

        return DiscoveredPeer(
            id=peer_id,
            multiaddrs=self._addresses(message, instance),
            wire_format=COMPAT_FORMAT,
            source=source,
        )

    def _identity(self, message: dns.message.Message, instance: dns.name.Name, label: str) -> Optional[PeerId]:
        for rrset in find_rrsets(message, instance, dns.rdatatype.TXT):
            for rdata in rrset:
                if rdata.strings:
                    text = rdata.strings[0].decode("utf-8")
                    peer_id = parse_peer_id(text)
                    if peer_id is None:
                        logger.debug(f"Ignoring compat announce with unparseable identity {text!r}")
                    return peer_id

        return parse_peer_id(label)

    def _addresses(self, message: dns.message.Message, instance: dns.name.Name) -> List[Multiaddr]:
        srv = None
        for rrset in find_rrsets(message, instance, dns.rdatatype.SRV):
            for rdata in rrset:
                srv = _srv_of(rdata)
                if srv is not None:
                    break
            if srv is not None:
                break

        if srv is None:
            return []

        addresses: List[Multiaddr] = []
        for rdtype, family in ((dns.rdatatype.A, 4), (dns.rdatatype.AAAA, 6)):
            for rrset in find_rrsets(message, srv.target, rdtype):
                for rdata in rrset:
                    host = _address_of(rdata, family)
                    if host is None:
                        continue
                    try:
                        addr = from_host_port(family, host, srv.port)
                    except AddressEncodingError as e:
                        logger.debug(f"Skipping compat address record: {e}")
                        continue
                    if addr not in addresses:
                        addresses.append(addr)

        return addresses


class CompatAdapter:
    """Compat builder and interpreter, wired as a discovery pipeline."""

    def __init__(self, own_peer_id: PeerId, ttl: int = DEFAULT_RECORD_TTL, hostname: Optional[str] = None):
        self.builder = CompatRecordBuilder(ttl=ttl, hostname=hostname)
        self.interpreter = CompatResponseInterpreter(own_peer_id)

    def as_pipeline(self) -> DiscoveryPipeline:
        return DiscoveryPipeline(name=COMPAT_FORMAT, builder=self.builder, interpreter=self.interpreter)


def create_compat_pipeline(
    peer_id: PeerId,
    config: DiscoveryConfig,
    hostname: Optional[str] = None
) -> DiscoveryPipeline:
    """Pipeline for the compat format."""
    return CompatAdapter(peer_id, ttl=config.ttl, hostname=hostname).as_pipeline()
