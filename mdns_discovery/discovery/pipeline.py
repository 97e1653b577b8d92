"""
Discovery Pipelines

A pipeline pairs the record builder and response interpreter of one wire
format. The scheduler drives an ordered list of them over a single transport.
"""

from dataclasses import dataclass

from ..shared.config import DiscoveryConfig
from ..shared.constants import NATIVE_FORMAT
from ..shared.models import PeerId
from ..shared.protocols import RecordBuilder, ResponseInterpreter
from .record_builder import NativeRecordBuilder
from .response_interpreter import NativeResponseInterpreter


@dataclass(frozen=True)
class DiscoveryPipeline:
    """Builder and interpreter of one wire format."""
    name: str
    builder: RecordBuilder
    interpreter: ResponseInterpreter


def create_native_pipeline(peer_id: PeerId, config: DiscoveryConfig) -> DiscoveryPipeline:
    """Pipeline for the native format using ``config.service_tag``."""
    return DiscoveryPipeline(
        name=NATIVE_FORMAT,
        builder=NativeRecordBuilder(service_tag=config.service_tag, ttl=config.ttl),
        interpreter=NativeResponseInterpreter(peer_id, service_tag=config.service_tag),
    )
