"""
Discovery Package

Wire formats, transport and the scheduler of the mDNS discovery engine.
"""

from .compat import CompatAdapter, CompatRecordBuilder, CompatResponseInterpreter
from .multicast_dns import MulticastDNS
from .pipeline import DiscoveryPipeline, create_native_pipeline
from .record_builder import NativeRecordBuilder
from .response_interpreter import NativeResponseInterpreter
from .transport import MulticastTransport

__all__ = [
    "CompatAdapter",
    "CompatRecordBuilder",
    "CompatResponseInterpreter",
    "DiscoveryPipeline",
    "MulticastDNS",
    "MulticastTransport",
    "NativeRecordBuilder",
    "NativeResponseInterpreter",
    "create_native_pipeline",
]
