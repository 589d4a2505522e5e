"""The client side of an established proxy connection.

The QUIC transport itself is supplied by the caller as a connection object.
This module performs the handshake bookkeeping, opens proxied TCP streams
and multiplexes UDP sessions over datagrams.
"""

from __future__ import annotations

import contextlib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from hycore.config import Config
from hycore.errors import AuthError, ClosedError, DialError
from hycore.protocol import (
    AuthRequest,
    AuthResponse,
    UDPMessage,
    auth_request_to_headers,
    auth_response_from_headers,
    parse_udp_message,
    read_tcp_response,
    write_tcp_request,
)
from hycore.udp import UDPConn, UDPSessionManager

CLOSE_ERR_CODE_OK = 0x100  # HTTP/3 no error
CLOSE_ERR_CODE_PROTOCOL_ERROR = 0x101  # HTTP/3 general protocol error

STATUS_AUTH_OK = 233
MAX_UDP_SIZE = 4096

_TEMPORARY_ERRORS = (TimeoutError, BlockingIOError, InterruptedError)


class Stream(Protocol):
    def read(self, size: int = -1) -> bytes: ...

    def write(self, data: bytes) -> int | None: ...

    def close(self) -> None: ...


class Connection(Protocol):
    """The transport connection the client runs over."""

    local_address: Any
    remote_address: Any

    def open_stream(self) -> Stream: ...

    def receive_datagram(self) -> bytes: ...

    def send_datagram(self, data: bytes) -> None: ...

    def close_with_error(self, code: int, reason: str) -> None: ...


@dataclass(frozen=True)
class HandshakeInfo:
    """What the server agreed to during authentication."""

    udp_enabled: bool
    tx: int  # 0 when bandwidth is probed instead of fixed


def auth_headers(config: Config) -> dict[str, str]:
    """Return the headers of the authentication request for a configuration."""
    headers: dict[str, str] = {}
    auth_request_to_headers(headers, AuthRequest(config.auth, config.bandwidth_config.max_rx))
    return headers


def negotiate_tx(auth_response: AuthResponse, max_tx: int) -> int:
    """Return the send rate to use, or 0 when the rate must be probed."""
    if auth_response.rx_auto:
        return 0
    tx = auth_response.rx
    if tx == 0 or tx > max_tx:
        # The server has no limit, or ours is the smaller one.
        tx = max_tx
    return tx


def complete_handshake(
    config: Config, status_code: int, headers: Mapping[str, str]
) -> HandshakeInfo:
    """Interpret the server's reply to the authentication request."""
    if status_code != STATUS_AUTH_OK:
        raise AuthError(status_code)
    auth_response = auth_response_from_headers(headers)
    return HandshakeInfo(
        udp_enabled=auth_response.udp_enabled,
        tx=negotiate_tx(auth_response, config.bandwidth_config.max_tx),
    )


def _is_temporary(err: BaseException) -> bool:
    flag = getattr(err, "temporary", None)
    if flag is not None:
        return bool(flag)
    return isinstance(err, _TEMPORARY_ERRORS)


def wrap_if_connection_closed(err: BaseException) -> BaseException:
    """Return err as a ClosedError unless it is only a temporary failure."""
    if isinstance(err, ClosedError) or _is_temporary(err):
        return err
    return ClosedError(err)


def _normalize_addr(addr: str) -> str:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr!r}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"address {addr!r}: too many colons")
    port_number = int(port) % 0x10000
    if ":" in host:
        return f"[{host}]:{port_number}"
    return f"{host}:{port_number}"


class TCPConn:
    """A proxied TCP connection carried by one stream.

    When the server's response has not been read yet, the first read
    consumes it and raises DialError if the server refused the request.
    """

    def __init__(
        self, stream: Stream, local_address: Any, remote_address: Any, established: bool
    ) -> None:
        self._stream = stream
        self.local_address = local_address
        self.remote_address = remote_address
        self.established = established

    def __enter__(self) -> TCPConn:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes from the remote end."""
        if not self.established:
            ok, message = read_tcp_response(self._stream)
            if not ok:
                raise DialError(message)
            self.established = True
        return self._stream.read(size)

    def write(self, data: bytes) -> int:
        """Send data to the remote end; return the number of bytes written."""
        written = self._stream.write(data)
        return len(data) if written is None else written

    def close(self) -> None:
        """Close the stream in both directions."""
        self._stream.close()


class DatagramIO:
    """Carries UDP messages as datagrams of a connection."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    def receive_message(self) -> UDPMessage:
        """Return the next valid message; invalid datagrams are skipped."""
        while True:
            data = self._connection.receive_datagram()
            try:
                return parse_udp_message(data)
            except Exception:
                continue

    def send_message(self, message: UDPMessage) -> None:
        """Send a message; one larger than the UDP buffer is silently dropped."""
        if message.size() > MAX_UDP_SIZE:
            return
        self._connection.send_datagram(message.serialize())


class ClientOutbound:
    """Opens TCP streams and UDP sessions over an authenticated connection."""

    def __init__(
        self, config: Config, connection: Connection, handshake_info: HandshakeInfo
    ) -> None:
        self.config = config
        self.handshake_info = handshake_info
        self._connection = connection
        self._udp_sessions = (
            UDPSessionManager(DatagramIO(connection)) if handshake_info.udp_enabled else None
        )

    def __enter__(self) -> ClientOutbound:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def tcp(self, addr: str) -> TCPConn:
        """Open a proxied TCP connection to "host:port"."""
        target = _normalize_addr(addr)
        try:
            stream = self._connection.open_stream()
        except Exception as err:
            raise wrap_if_connection_closed(err) from err
        try:
            write_tcp_request(stream, target)
        except Exception as err:
            with contextlib.suppress(Exception):
                stream.close()
            raise wrap_if_connection_closed(err) from err
        if self.config.fast_open:
            # The response is read by the first read() instead.
            return TCPConn(
                stream, self._connection.local_address, self._connection.remote_address, False
            )
        try:
            ok, message = read_tcp_response(stream)
        except Exception as err:
            with contextlib.suppress(Exception):
                stream.close()
            raise wrap_if_connection_closed(err) from err
        if not ok:
            with contextlib.suppress(Exception):
                stream.close()
            raise DialError(message)
        return TCPConn(
            stream, self._connection.local_address, self._connection.remote_address, True
        )

    def udp(self) -> UDPConn:
        """Open a new UDP session; raise DialError if the server disabled UDP."""
        if self._udp_sessions is None:
            raise DialError("UDP not enabled")
        return self._udp_sessions.new_udp()

    def close(self) -> None:
        """Close the connection to the server."""
        self._connection.close_with_error(CLOSE_ERR_CODE_OK, "")