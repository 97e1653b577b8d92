"""
Application Constants

Defines constants used throughout the mDNS discovery engine.
"""

# Multicast group settings
MDNS_MULTICAST_ADDRESS = "224.0.0.251"
DEFAULT_MDNS_PORT = 5353
DEFAULT_MULTICAST_TTL = 255

# Service labels
DEFAULT_SERVICE_TAG = "_p2p._udp.local"
COMPAT_SERVICE_TAG = "_ipfs-discovery._udp"
COMPAT_SERVICE_TAG_LOCAL = f"{COMPAT_SERVICE_TAG}.local"

# Wire format names
NATIVE_FORMAT = "native"
COMPAT_FORMAT = "compat"

# Record settings
DEFAULT_RECORD_TTL = 120
DNSADDR_PREFIX = "dnsaddr="
MAX_TXT_STRING_LENGTH = 255
COMPAT_SRV_PRIORITY = 10
COMPAT_SRV_WEIGHT = 1

# Timing constants
DEFAULT_QUERY_INTERVAL = 10.0
MIN_QUERY_INTERVAL = 0.1

# Buffer constants
MAX_DATAGRAM_SIZE = 9000

# Event names
PEER_EVENT = "peer"
QUERY_EVENT = "query"
RESPONSE_EVENT = "response"

# Multihash constants used by peer identities
MULTIHASH_IDENTITY = 0x00
MULTIHASH_SHA2_256 = 0x12
SHA2_256_DIGEST_LENGTH = 32
MAX_IDENTITY_DIGEST_LENGTH = 42

# Log format constants
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
