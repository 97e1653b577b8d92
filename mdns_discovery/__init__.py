"""
mDNS Peer Discovery

Finds peers on the local network segment by announcing an identity and its
multiaddrs over multicast DNS, in the native format and in the format of the
go-libp2p implementation.
"""

from .discovery.multicast_dns import MulticastDNS
from .shared.config import DiscoveryConfig
from .shared.models import DiscoveredPeer, EngineState, PeerId

__version__ = "1.0.0"

__all__ = ["MulticastDNS", "DiscoveryConfig", "DiscoveredPeer", "EngineState", "PeerId", "__version__"]
