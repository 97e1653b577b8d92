"""
Command Line Entry Point

Runs a discovery engine, prints peers as they are found and a summary table
on exit.
"""

import argparse
import asyncio
import sys
from dataclasses import asdict
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .. import __version__
from ..discovery.multicast_dns import MulticastDNS
from ..shared.config import ConfigurationLoader, DiscoveryConfig
from ..shared.exceptions import ConfigurationError, MdnsDiscoveryError, ValidationError
from ..shared.logging_config import LOG_LEVELS, LoggingOptions, get_logger, setup_logging
from ..shared.models import DiscoveredPeer, PeerId
from ..shared.utils import get_interface_addresses


DEFAULT_TCP_PORT = 4001


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser. Options left unset fall back to file and environment configuration."""
    parser = argparse.ArgumentParser(
        prog="mdns-discovery",
        description="Discover libp2p peers on the local network over multicast DNS",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--port", type=int, help="Multicast UDP port (all peers must agree)")
    parser.add_argument("--interval", type=float, help="Seconds between announce cycles")
    parser.add_argument(
        "--no-broadcast",
        action="store_true",
        help="Do not query other peers; only answer and announce"
    )
    parser.add_argument("--no-compat", action="store_true", help="Disable the go-libp2p compatible format")
    parser.add_argument("--peer-id", help="Own peer ID (base58). A random one is generated when omitted")
    parser.add_argument(
        "--address",
        action="append",
        default=[],
        metavar="MULTIADDR",
        help="Address to announce; repeatable. Defaults to local interface addresses"
    )
    parser.add_argument(
        "--tcp-port",
        type=int,
        default=DEFAULT_TCP_PORT,
        help="TCP port used for addresses derived from local interfaces"
    )
    parser.add_argument("--duration", type=float, help="Stop after this many seconds; runs until Ctrl+C when unset")
    parser.add_argument("--config-file", help="JSON or YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Log file path")
    parser.add_argument("--version", action="version", version=f"mdns-discovery {__version__}")

    return parser


def load_config(args: argparse.Namespace) -> DiscoveryConfig:
    """
    Merge file, environment and command line configuration.

    Raises:
        ConfigurationError: If the result is invalid.
    """
    config = ConfigurationLoader.load_discovery_config(args.config_file)

    overrides: Dict[str, object] = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.interval is not None:
        overrides["interval"] = args.interval
    if args.no_broadcast:
        overrides["broadcast"] = False
    if args.no_compat:
        overrides["compat"] = False

    return config.with_overrides(**overrides) if overrides else config


def interface_address_provider(tcp_port: int) -> Callable[[], List[str]]:
    """Provider deriving ``/ip4|ip6/<addr>/tcp/<port>`` from the current interfaces."""
    if not 0 < tcp_port <= 65535:
        raise ConfigurationError(f"--tcp-port must be between 1 and 65535, got {tcp_port}")

    def provide() -> List[str]:
        addresses = []
        for host in get_interface_addresses():
            family = "ip6" if ":" in host else "ip4"
            addresses.append(f"/{family}/{host}/tcp/{tcp_port}")
        return addresses

    return provide


def render_summary(console: Console, peers: List[DiscoveredPeer]) -> None:
    table = Table(title=f"Discovered peers ({len(peers)})")
    table.add_column("Peer ID", style="cyan", no_wrap=True)
    table.add_column("Format", style="magenta")
    table.add_column("Addresses", style="green")
    table.add_column("Last seen")

    for peer in sorted(peers, key=lambda p: str(p.id)):
        table.add_row(
            str(peer.id),
            peer.wire_format,
            "\n".join(str(addr) for addr in peer.multiaddrs) or "-",
            peer.discovered_at.strftime("%H:%M:%S"),
        )

    console.print(table)


async def run_discovery(engine: MulticastDNS, console: Console, duration: Optional[float] = None) -> None:
    """Run ``engine`` for ``duration`` seconds (forever when None) and print what it finds."""
    seen = set()

    def on_peer(peer: DiscoveredPeer) -> None:
        if peer.id in seen:
            return
        seen.add(peer.id)
        addresses = ", ".join(str(addr) for addr in peer.multiaddrs) or "no addresses"
        console.print(f"[bold green]peer[/] {peer.id} [dim]({peer.wire_format})[/] {addresses}")

    engine.add_listener("peer", on_peer)

    await engine.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        peers = engine.get_peers()
        await engine.stop()
        render_summary(console, peers)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the discovery tool.

    Returns:
        Exit code (0 for success, 2 for configuration errors, 3 for
        discovery errors, 1 for anything else).
    """
    args = build_parser().parse_args(argv)

    try:
        options = LoggingOptions.from_env()
        if args.log_level:
            options.level = args.log_level
        if args.log_file:
            options.log_file = args.log_file
        setup_logging(**asdict(options))
        logger = get_logger(__name__)
    except Exception as e:
        print(f"Failed to set up logging: {e}", file=sys.stderr)
        return 1

    console = Console()

    try:
        config = load_config(args)
        peer_id = PeerId.from_string(args.peer_id) if args.peer_id else PeerId.generate()
        addresses = list(args.address) if args.address else interface_address_provider(args.tcp_port)

        engine = MulticastDNS(peer_id, addresses, config)
        console.print(f"[bold]mdns-discovery[/] peer [cyan]{peer_id}[/] on port {config.port}")

        asyncio.run(run_discovery(engine, console, args.duration))
        return 0

    except KeyboardInterrupt:
        logger.info("Discovery interrupted by user")
        return 0

    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        return 2

    except MdnsDiscoveryError as e:
        logger.error(f"Discovery error: {e}")
        return 3

    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
