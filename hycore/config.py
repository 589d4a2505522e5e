"""Client configuration with validation and defaults.

Durations are in seconds; bandwidth is in bytes per second.
"""

from __future__ import annotations

import socket
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from hycore.errors import ConfigError

UDP_BUFFER_SIZE = 4096
DEFAULT_STREAM_RECEIVE_WINDOW = 8388608  # 8 MiB
DEFAULT_CONN_RECEIVE_WINDOW = DEFAULT_STREAM_RECEIVE_WINDOW * 5 // 2  # 20 MiB
DEFAULT_MAX_IDLE_TIMEOUT = 30.0
DEFAULT_KEEP_ALIVE_PERIOD = 10.0

MIN_RECEIVE_WINDOW = 16384

# Path MTU discovery only sets the don't-fragment bit on these platforms;
# elsewhere probe packets would be fragmented, so it stays off.
DISABLE_PATH_MTU_DISCOVERY = not sys.platform.startswith(("linux", "win32", "darwin"))


class ConnFactory(Protocol):
    def new(self, addr: tuple[str, int]) -> socket.socket: ...


class UDPConnFactory:
    """Creates an unconnected UDP socket bound to an ephemeral port."""

    def new(self, addr: tuple[str, int]) -> socket.socket:
        """Return a UDP socket suitable for talking to addr."""
        family = socket.AF_INET6 if ":" in addr[0] else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(("", 0))
        except OSError:
            sock.close()
            raise
        return sock


@dataclass
class TLSConfig:
    """The TLS settings exposed to the user."""

    server_name: str = ""
    insecure_skip_verify: bool = False
    verify_peer_certificate: Callable[[list[bytes]], None] | None = None
    root_cas: str | None = None  # path to a PEM bundle of trusted roots


@dataclass
class QUICConfig:
    """The QUIC settings exposed to the user; zero means use the default."""

    initial_stream_receive_window: int = 0
    max_stream_receive_window: int = 0
    initial_connection_receive_window: int = 0
    max_connection_receive_window: int = 0
    max_idle_timeout: float = 0
    keep_alive_period: float = 0
    disable_path_mtu_discovery: bool = False


@dataclass
class BandwidthConfig:
    """Maximum bandwidth in bytes per second; zero means unknown."""

    max_tx: int = 0
    max_rx: int = 0


_WINDOW_FIELDS = (
    ("initial_stream_receive_window", "InitialStreamReceiveWindow", DEFAULT_STREAM_RECEIVE_WINDOW),
    ("max_stream_receive_window", "MaxStreamReceiveWindow", DEFAULT_STREAM_RECEIVE_WINDOW),
    (
        "initial_connection_receive_window",
        "InitialConnectionReceiveWindow",
        DEFAULT_CONN_RECEIVE_WINDOW,
    ),
    ("max_connection_receive_window", "MaxConnectionReceiveWindow", DEFAULT_CONN_RECEIVE_WINDOW),
)

_DURATION_FIELDS = (
    ("max_idle_timeout", "MaxIdleTimeout", DEFAULT_MAX_IDLE_TIMEOUT, 4, 120),
    ("keep_alive_period", "KeepAlivePeriod", DEFAULT_KEEP_ALIVE_PERIOD, 2, 60),
)


@dataclass
class Config:
    """Everything the client needs to connect to a server."""

    server_addr: tuple[str, int] | None = None
    auth: str = ""
    conn_factory: ConnFactory | None = None
    tls_config: TLSConfig = field(default_factory=TLSConfig)
    quic_config: QUICConfig = field(default_factory=QUICConfig)
    bandwidth_config: BandwidthConfig = field(default_factory=BandwidthConfig)
    fast_open: bool = False
    filled: bool = field(default=False, repr=False)

    def verify_and_fill(self) -> None:
        """Fill unset fields with defaults; raise ConfigError for missing or invalid ones."""
        if self.filled:
            return
        if self.conn_factory is None:
            self.conn_factory = UDPConnFactory()
        if self.server_addr is None:
            raise ConfigError("ServerAddr", "must be set")
        quic = self.quic_config
        for attr, name, default in _WINDOW_FIELDS:
            value = getattr(quic, attr)
            if value == 0:
                setattr(quic, attr, default)
            elif value < MIN_RECEIVE_WINDOW:
                raise ConfigError(f"QUICConfig.{name}", f"must be at least {MIN_RECEIVE_WINDOW}")
        for attr, name, default, low, high in _DURATION_FIELDS:
            value = getattr(quic, attr)
            if value == 0:
                setattr(quic, attr, default)
            elif not low <= value <= high:
                raise ConfigError(f"QUICConfig.{name}", f"must be between {low}s and {high}s")
        quic.disable_path_mtu_discovery = (
            quic.disable_path_mtu_discovery or DISABLE_PATH_MTU_DISCOVERY
        )
        self.filled = True