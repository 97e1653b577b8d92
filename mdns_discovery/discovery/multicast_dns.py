"""
Multicast DNS Discovery Engine

Owns the lifecycle, the periodic announce timer and inbound dispatch. Each
announce cycle reads the address set fresh and sends one announce per wire
format over a single multicast transport; inbound responses are decoded by
every pipeline and surface as ``peer`` events while the engine is running.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

import dns.exception
import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from multiaddr import Multiaddr

from ..shared.config import DiscoveryConfig
from ..shared.constants import PEER_EVENT, QUERY_EVENT, RESPONSE_EVENT
from ..shared.exceptions import (
    EngineStateError,
    MdnsDiscoveryError,
    ProtocolError,
    TransportError,
)
from ..shared.metrics import MetricsCollector
from ..shared.models import DiscoveredPeer, EngineState, PeerId
from ..shared.protocols import AddressProvider, SourceAddress, Transport
from ..shared.utils import format_address
from .address_codec import normalize_addresses
from .compat import create_compat_pipeline
from .events import EventEmitter, Subscription
from .pipeline import DiscoveryPipeline, create_native_pipeline
from .record_builder import make_name
from .transport import MulticastTransport


logger = logging.getLogger(__name__)

TransportFactory = Callable[[DiscoveryConfig, MetricsCollector], Transport]

_SEND_ERRORS = (MdnsDiscoveryError, dns.exception.DNSException, OSError, ValueError)


def build_pipelines(
    peer_id: PeerId,
    config: DiscoveryConfig,
    hostname: Optional[str] = None
) -> List[DiscoveryPipeline]:
    """
    Pipelines selected by the configuration, native first.

    Args:
        peer_id: Identity of the local peer.
        config: Discovery configuration.
        hostname: Host name for compat records; defaults to the OS host name.
    """
    pipelines = [create_native_pipeline(peer_id, config)]
    if config.compat:
        pipelines.append(create_compat_pipeline(peer_id, config, hostname))
    return pipelines


def _default_transport_factory(config: DiscoveryConfig, metrics: MetricsCollector) -> Transport:
    return MulticastTransport(config, metrics)


class MulticastDNS:
    """
    mDNS peer discovery engine.

    Example:
        engine = MulticastDNS(peer_id, ["/ip4/192.168.1.10/tcp/4001"])
        engine.add_listener("peer", lambda peer: print(peer.id, peer.multiaddrs))
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        peer_id: Union[PeerId, str],
        addresses: AddressProvider,
        config: Optional[DiscoveryConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        hostname: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Initialize the engine.

        Args:
            peer_id: Own identity, or its string form.
            addresses: Address set, or a (sync or async) callable returning
                one. Read again on every announce cycle.
            config: Discovery configuration; defaults apply when omitted.
            transport_factory: Creates the transport from ``(config, metrics)``.
            hostname: Host name announced in compat records.
            metrics: Metrics collector; each engine gets its own by default.

        Raises:
            PeerIdError: If ``peer_id`` is not a valid identity.
            ConfigurationError: If ``config`` is invalid.
        """
        self._peer_id = peer_id if isinstance(peer_id, PeerId) else PeerId.from_string(peer_id)
        self._address_provider = addresses
        self._config = config or DiscoveryConfig()
        self._config.validate()
        self._transport_factory = transport_factory or _default_transport_factory
        self._metrics = metrics or MetricsCollector()
        self._pipelines = build_pipelines(self._peer_id, self._config, hostname)

        self._state = EngineState.IDLE
        self._events = EventEmitter(guard=lambda event: self._state is EngineState.RUNNING)
        self._peers: Dict[PeerId, DiscoveredPeer] = {}

        self._transport: Optional[Transport] = None
        self._opening: Optional[asyncio.Future] = None
        self._stopping: Optional[asyncio.Event] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._announce_tasks: Set[asyncio.Task] = set()
        self._pending_announces: Set[str] = set()
        self._send_lock = asyncio.Lock()

    # Introspection

    @property
    def peer_id(self) -> PeerId:
        return self._peer_id

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def pipelines(self) -> Tuple[DiscoveryPipeline, ...]:
        return tuple(self._pipelines)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def get_peers(self) -> List[DiscoveredPeer]:
        """Latest sighting of every peer seen since start."""
        return list(self._peers.values())

    def get_peer(self, peer_id: Union[PeerId, str]) -> Optional[DiscoveredPeer]:
        if not isinstance(peer_id, PeerId):
            peer_id = PeerId.from_string(peer_id)
        return self._peers.get(peer_id)

    def get_stats(self) -> Dict[str, Any]:
        """Engine state, known peers and traffic counters."""
        return {
            "peer_id": str(self._peer_id),
            "state": self._state.value,
            "pipelines": [pipeline.name for pipeline in self._pipelines],
            "known_peers": len(self._peers),
            "metrics": self._metrics.get_metrics_summary(),
        }

    # Events

    def add_listener(self, event: str, callback: Callable[..., None], once: bool = False) -> Subscription:
        """
        Subscribe to ``peer``, ``query`` or ``response`` events.

        Args:
            event: Event name.
            callback: ``peer`` listeners receive a ``DiscoveredPeer``;
                ``query``/``response`` listeners receive ``(message, source)``.
            once: Remove the listener after its first call.

        Returns:
            A cancellable subscription.
        """
        return self._events.add_listener(event, callback, once=once)

    on = add_listener

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        self._events.remove_listener(event, callback)

    off = remove_listener

    # Lifecycle

    async def start(self) -> None:
        """
        Open the transport, announce once and arm the periodic timer.

        A no-op while starting or running. Called while a stop is in
        progress, it waits for that stop to finish first.

        Raises:
            TransportError: If the transport cannot be opened. The engine is
                left idle and ``start()`` may be retried.
        """
        while self._state is EngineState.STOPPING and self._stopping is not None:
            await self._stopping.wait()

        if self._state in (EngineState.STARTING, EngineState.RUNNING):
            return

        self._state = EngineState.STARTING
        logger.info(f"Starting mDNS discovery for {self._peer_id} on port {self._config.port}")

        transport = self._transport_factory(self._config, self._metrics)
        transport.on_query = self._handle_query
        transport.on_response = self._handle_response
        self._transport = transport

        self._opening = asyncio.ensure_future(transport.open())
        try:
            await self._opening
        except (TransportError, OSError) as e:
            if self._state is EngineState.STARTING:
                self._state = EngineState.IDLE
                self._transport = None
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"Failed to open transport: {e}", operation="open") from e
        finally:
            self._opening = None

        if self._state is not EngineState.STARTING:
            # stop() ran while the transport was opening and closed it
            return

        self._state = EngineState.RUNNING
        await self._run_cycle(self._pipelines, query=self._config.broadcast)
        if self._state is not EngineState.RUNNING:
            # stopped during the first cycle
            return

        self._timer_task = asyncio.create_task(self._timer_loop())

        logger.info(
            f"mDNS discovery running ({', '.join(p.name for p in self._pipelines)}; "
            f"broadcast={'on' if self._config.broadcast else 'off'}, interval={self._config.interval}s)"
        )

    async def stop(self) -> None:
        """
        Cancel the timer and pending announces, then close the transport.

        No event is delivered once this has been called. A no-op unless
        starting or running; a second call while stopping waits for the
        first to finish.

        Raises:
            TransportError: If the transport fails to close. The engine is
                still left stopped.
        """
        if self._state is EngineState.STOPPING and self._stopping is not None:
            await self._stopping.wait()
            return

        if self._state not in (EngineState.STARTING, EngineState.RUNNING):
            return

        self._state = EngineState.STOPPING
        stopping = self._stopping = asyncio.Event()
        # Taken before any await so a later start() cannot swap it out
        transport, self._transport = self._transport, None
        logger.info(f"Stopping mDNS discovery for {self._peer_id}")

        try:
            if self._opening is not None:
                try:
                    await self._opening
                except (TransportError, OSError) as e:
                    logger.debug(f"Transport failed to open while stopping: {e}")

            tasks = list(self._announce_tasks)
            if self._timer_task is not None:
                tasks.append(self._timer_task)
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            self._timer_task = None
            self._announce_tasks.clear()
            self._pending_announces.clear()

            self._peers.clear()
            self._metrics.set_gauge("known_peers", 0)

            if transport is not None:
                await transport.close()
        finally:
            self._state = EngineState.STOPPED
            self._stopping = None
            stopping.set()

        logger.info("mDNS discovery stopped")

    async def __aenter__(self) -> "MulticastDNS":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # Diagnostics

    def query(
        self,
        message_or_questions: Union[dns.message.Message, Sequence[Tuple[str, Union[str, int]]]]
    ) -> dns.message.Message:
        """
        Send a raw query through the transport.

        Args:
            message_or_questions: A prepared message, or ``(name, rdtype)``
                pairs to ask for.

        Returns:
            The message that was sent.

        Raises:
            EngineStateError: If the engine is not running.
            ProtocolError: If a question cannot be built.
        """
        if self._state is not EngineState.RUNNING or self._transport is None:
            raise EngineStateError("Cannot query: discovery engine is not running", state=self._state.value)

        if isinstance(message_or_questions, dns.message.Message):
            message = message_or_questions
        else:
            message = dns.message.Message(id=0)
            for name, rdtype in message_or_questions:
                try:
                    rdtype = dns.rdatatype.RdataType.make(rdtype)
                except (dns.exception.DNSException, ValueError) as e:
                    raise ProtocolError(f"Unknown record type {rdtype!r}") from e
                message.question.append(dns.rrset.RRset(make_name(name), dns.rdataclass.IN, rdtype))

        self._transport.send(message)
        self._metrics.increment_counter("queries_sent", labels={"format": "manual"})
        return message

    # Announce cycle

    async def _timer_loop(self) -> None:
        while self._state is EngineState.RUNNING:
            await asyncio.sleep(self._config.interval)
            if self._state is not EngineState.RUNNING:
                break
            await self._run_cycle(self._pipelines, query=self._config.broadcast)

    async def _run_cycle(self, pipelines: Sequence[DiscoveryPipeline], query: bool = False) -> None:
        """Announce on ``pipelines`` (and query when asked); sends never interleave."""
        async with self._send_lock:
            if self._state is not EngineState.RUNNING:
                return

            with self._metrics.start_timer("announce_cycle"):
                addresses = await self._read_addresses()

                # The provider may have awaited past a stop()
                if self._state is not EngineState.RUNNING:
                    return

                for pipeline in pipelines:
                    if addresses is not None:
                        self._send_announce(pipeline, addresses)
                    if query:
                        self._send_query(pipeline)

    async def _read_addresses(self) -> Optional[List[Multiaddr]]:
        provider = self._address_provider
        try:
            values = provider() if callable(provider) else provider
            if inspect.isawaitable(values):
                values = await values
            return normalize_addresses(values or [])
        except Exception as e:
            self._metrics.increment_counter("announce_errors")
            logger.error(f"Address provider failed, skipping announce: {e}")
            return None

    def _send_announce(self, pipeline: DiscoveryPipeline, addresses: List[Multiaddr]) -> None:
        try:
            message = pipeline.builder.build_announce(self._peer_id, addresses)
            self._transport.send(message)
        except _SEND_ERRORS as e:
            self._metrics.increment_counter("announce_errors")
            logger.warning(f"Failed to send {pipeline.name} announce: {e}")
            return

        self._metrics.increment_counter("announces_sent", labels={"format": pipeline.name})
        logger.debug(f"Sent {pipeline.name} announce with {len(addresses)} address(es)")

    def _send_query(self, pipeline: DiscoveryPipeline) -> None:
        try:
            self._transport.send(pipeline.builder.build_query())
        except _SEND_ERRORS as e:
            logger.warning(f"Failed to send {pipeline.name} query: {e}")
            return

        self._metrics.increment_counter("queries_sent", labels={"format": pipeline.name})

    def _schedule_announce(self, pipeline: DiscoveryPipeline) -> None:
        if pipeline.name in self._pending_announces:
            logger.debug(f"{pipeline.name} announce already pending, coalescing query")
            return

        self._pending_announces.add(pipeline.name)
        task = asyncio.get_running_loop().create_task(self._query_announce(pipeline))
        self._announce_tasks.add(task)
        task.add_done_callback(self._announce_tasks.discard)

    async def _query_announce(self, pipeline: DiscoveryPipeline) -> None:
        try:
            await self._run_cycle([pipeline])
        finally:
            self._pending_announces.discard(pipeline.name)

    # Inbound

    def _handle_query(self, message: dns.message.Message, source: SourceAddress) -> None:
        if self._state is not EngineState.RUNNING:
            return

        self._metrics.increment_counter("queries_received")
        self._events.emit(QUERY_EVENT, message, source)

        for pipeline in self._pipelines:
            if self._state is not EngineState.RUNNING:
                return
            try:
                asked = pipeline.interpreter.is_service_query(message)
            except Exception as e:
                logger.warning(f"{pipeline.name} pipeline failed to inspect query: {e}")
                continue
            if asked:
                logger.debug(f"{pipeline.name} query from {format_address(source)}, re-announcing")
                self._schedule_announce(pipeline)

    def _handle_response(self, message: dns.message.Message, source: SourceAddress) -> None:
        if self._state is not EngineState.RUNNING:
            return

        self._metrics.increment_counter("responses_received")
        self._events.emit(RESPONSE_EVENT, message, source)

        for pipeline in self._pipelines:
            if self._state is not EngineState.RUNNING:
                return
            try:
                peer = pipeline.interpreter.interpret(message, source)
            except Exception as e:
                # One pipeline's failure never reaches the other
                logger.warning(f"{pipeline.name} pipeline failed to decode response: {e}")
                continue
            if peer is not None:
                self._record_peer(peer)

    def _record_peer(self, peer: DiscoveredPeer) -> None:
        is_new = peer.id not in self._peers
        self._peers[peer.id] = peer
        self._metrics.set_gauge("known_peers", len(self._peers))
        self._metrics.increment_counter("peers_discovered", labels={"format": peer.wire_format})

        if is_new:
            logger.info(f"Discovered peer {peer.id} ({peer.wire_format}, {peer.address_count} address(es))")
        else:
            logger.debug(f"Peer {peer.id} seen again ({peer.wire_format})")

        self._events.emit(PEER_EVENT, peer)

    def __repr__(self) -> str:
        return f"MulticastDNS(peer_id={self._peer_id}, state={self._state.value})"
