"""UDP DNS server loop, event controller and command-line entry point."""

from __future__ import annotations

import argparse
import datetime
import logging
import socket
import sys
import threading
import time
import urllib.request
from typing import Callable, Iterable, Optional

from omamori.cache import LRUCache
from omamori.config import (
    Config,
    ConfigError,
    default_config,
    ensure_default_config,
    load_blocked_sites,
    load_config,
    update_config,
    update_site_list,
)
from omamori.dns_config import SystemDNSError, SystemDNSManager
from omamori.events import Event, EventBus, EventType
from omamori.packet import PacketError, decode_query
from omamori.radix import RadixTree
from omamori.resolver import Resolver
from omamori.sysdns_helpers import DNSState

logger = logging.getLogger(__name__)

BUFFER_SIZE = 512
POLL_INTERVAL = 1.0
DEFAULT_HOST = "127.0.0.1"


def handle_datagram(resolver: Resolver, data: bytes) -> Optional[bytes]:
    """Answer one query datagram; None for malformed packets."""
    try:
        query = decode_query(data)
    except PacketError as exc:
        logger.warning("Failed to decode DNS packet: %s", exc)
        return None
    response = resolver.lookup(query)
    try:
        return response.encode()
    except PacketError as exc:
        logger.warning("Error encoding DNS response: %s", exc)
        return None


def serve_udp(
    resolver: Resolver,
    stop_event: threading.Event,
    host: str = DEFAULT_HOST,
    port: int = 53,
    events: Optional[EventBus] = None,
) -> None:
    """Serve DNS over UDP until ``stop_event`` is set."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        logger.error("Failed to start UDP server: %s", exc)
        if events is not None:
            events.error(OSError(f"failed to create socket: {exc}"))
        return
    with sock:
        try:
            sock.bind((host, port))
        except OSError as exc:
            logger.error("Failed to start UDP server: %s", exc)
            if events is not None:
                events.error(OSError(f"failed to bind to address: {exc}"))
            return

        sock.settimeout(POLL_INTERVAL)
        bound_host, bound_port = sock.getsockname()[:2]
        logger.info("Listening on %s:%d", bound_host, bound_port)
        if events is not None:
            events.log(f"🚀 DNS Server started on port {bound_port}")
            events.log("🎯 DNS Server ready to receive queries...")

        while not stop_event.is_set():
            try:
                data, source = sock.recvfrom(BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                logger.error("Error receiving data: %s", exc)
                return
            response = handle_datagram(resolver, data)
            if response is None:
                continue
            try:
                sock.sendto(response, source)
            except OSError as exc:
                logger.warning("Failed to send response: %s", exc)

        logger.info("Shutting down udp server gracefully")
        if events is not None:
            events.log("🛑 DNS Server stopped")


class Controller:
    """Reacts to control events: server start and stop, config and site list updates."""

    def __init__(
        self,
        config: Config,
        resolver: Resolver,
        dns_manager: Optional[SystemDNSManager] = None,
        events: Optional[EventBus] = None,
        host: str = DEFAULT_HOST,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.dns_manager = dns_manager
        self.events = events if events is not None else EventBus()
        self.host = host
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def dispatch(self, event: Event) -> None:
        """Act on one event; event types without a handler are ignored."""
        handlers: dict[EventType, Callable[[object], None]] = {
            EventType.START_DNS_SERVER: self._start_dns,
            EventType.STOP_DNS_SERVER: self._stop_dns,
            EventType.UPDATE_CONFIG: self._update_config,
            EventType.UPDATE_SITE_LIST: self._update_site_list,
        }
        handler = handlers.get(event.type)
        if handler is not None:
            handler(event.payload)

    def _start_dns(self, _payload: object = None) -> None:
        if self._thread is not None:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=serve_udp,
            args=(self.resolver, self._stop, self.host, self.config.udp_server_port, self.events),
            daemon=True,
        )
        self._thread.start()

        if self.dns_manager is not None:
            try:
                self.dns_manager.configure()
            except SystemDNSError as exc:
                self.events.error(f"Failed to configure system DNS: {exc}")

    def _stop_dns(self, _payload: object = None) -> None:
        if self._thread is not None and self._stop is not None:
            self._stop.set()
            self._thread.join(POLL_INTERVAL * 3)
            self._thread = None
            self._stop = None

        if self.dns_manager is not None:
            try:
                self.dns_manager.restore()
            except SystemDNSError as exc:
                self.events.error(f"Failed to restore system DNS: {exc}")

    def _update_config(self, payload: object) -> None:
        if not isinstance(payload, Config):
            return
        try:
            update_config(self.config, payload)
        except (ConfigError, OSError) as exc:
            logger.warning("Failed to save config: %s", exc)
            self.events.error(exc)

    def _update_site_list(self, payload: object) -> None:
        operation = payload["operation"]
        site = payload["site_data"]
        try:
            update_site_list(self.config, self.resolver.blocked, operation, site)
        except (ConfigError, OSError) as exc:
            logger.warning("Failed to update site list: %s", exc)
            self.events.error(exc)

    def shutdown(self) -> None:
        """Stop the server and restore the system DNS settings."""
        self._stop_dns()


def _downloader(url: str) -> Callable[[], bytes]:
    def download() -> bytes:
        with urllib.request.urlopen(url, timeout=30) as response:
            if response.status != 200:
                raise ConfigError(f"download of {url} failed with status {response.status}")
            return response.read()

    return download


def _print_events(events: Iterable[Event]) -> None:
    for event in events:
        stamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        if event.type is EventType.ERROR:
            print(f"[{stamp}] ERROR: {event.payload}", file=sys.stderr, flush=True)
        else:
            print(f"[{stamp}] {event.payload}", flush=True)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the blocking DNS server until interrupted."""
    parser = argparse.ArgumentParser(prog="omamori", description="Local blocking DNS server.")
    parser.add_argument("--host", default=DEFAULT_HOST, help="address to listen on")
    parser.add_argument("--config-dir", help="directory that holds the omamori config folder")
    parser.add_argument("--blocklist-url", help="hosts file to download when the site map is missing")
    parser.add_argument(
        "--no-system-dns", action="store_true", help="leave the system resolver settings alone"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    events = EventBus(maxsize=100)

    try:
        config = ensure_default_config(default_config(args.config_dir))
    except (OSError, ConfigError) as exc:
        print(f"Failed to ensure default config: {exc}", file=sys.stderr)
        return 1

    download = _downloader(args.blocklist_url) if args.blocklist_url else None
    try:
        blocked = load_blocked_sites(config, download)
    except (OSError, ConfigError) as exc:
        logger.warning("Failed to reload blocked sites: %s", exc)
        blocked = RadixTree()
    try:
        load_config(config)
    except (OSError, ConfigError) as exc:
        logger.warning("Failed to reload upstream conf: %s", exc)

    cache = LRUCache()
    cache.start_cleanup()
    resolver = Resolver(config, blocked, cache, events)
    dns_manager = None
    if not args.no_system_dns:
        dns_manager = SystemDNSManager(DNSState(port=config.udp_server_port, events=events))
    controller = Controller(config, resolver, dns_manager, events, args.host)

    controller.dispatch(Event(EventType.START_DNS_SERVER))
    try:
        while controller.is_running:
            _print_events(events.drain())
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        controller.shutdown()
        cache.close()
        _print_events(events.drain())
    return 0


if __name__ == "__main__":
    sys.exit(main())