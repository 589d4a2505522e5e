"""UDP sessions multiplexed over one datagram channel to the server."""

from __future__ import annotations

import random
import threading
from collections import deque
from collections.abc import Callable
from typing import Protocol

from hycore.errors import ClosedError
from hycore.frag import Defragger, frag_udp_message
from hycore.protocol import UDPMessage

UDP_MESSAGE_QUEUE_SIZE = 1024


class DatagramTooLargeError(Exception):
    """A datagram exceeds what the connection can carry."""

    def __init__(self, max_data_len: int) -> None:
        self.max_data_len = max_data_len
        super().__init__(f"DATAGRAM frame too large (max {max_data_len} bytes)")


class _DatagramIO(Protocol):
    def receive_message(self) -> UDPMessage: ...

    def send_message(self, message: UDPMessage) -> None: ...


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr!r}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"address {addr!r}: too many colons")
    return host, int(port)


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class UDPConn:
    """One UDP session. Reads reassemble fragments; writes fragment when needed."""

    def __init__(
        self,
        session_id: int,
        send: Callable[[UDPMessage], None],
        on_close: Callable[[UDPConn], None],
    ) -> None:
        self.session_id = session_id
        self._send = send
        self._on_close = on_close
        self._defragger = Defragger()
        self._inbox: deque[UDPMessage] = deque()
        self._cond = threading.Condition()
        self.closed = False

    def __enter__(self) -> UDPConn:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _deliver(self, message: UDPMessage) -> None:
        with self._cond:
            if self.closed or len(self._inbox) >= UDP_MESSAGE_QUEUE_SIZE:
                return  # queue full: drop
            self._inbox.append(message)
            self._cond.notify()

    def _shutdown(self) -> None:
        with self._cond:
            self.closed = True
            self._cond.notify_all()

    def receive(self) -> tuple[bytes, str]:
        """Block until a whole datagram arrives; return its data and source address.

        Raises EOFError once the session is closed and no messages remain.
        """
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._inbox or self.closed)
                if not self._inbox:
                    raise EOFError("UDP session closed")
                message = self._inbox.popleft()
            whole = self._defragger.feed(message)
            if whole is not None:
                return bytes(whole.data), whole.addr

    def read_from(self) -> tuple[bytes, tuple[str, int]]:
        """Receive a datagram; return its data and (host, port) source."""
        data, addr = self.receive()
        return data, _split_host_port(addr)

    def write_to(self, data: bytes, addr: tuple[str, int]) -> int:
        """Send data to (host, port); return the number of bytes sent."""
        host, port = addr
        self.send(data, _join_host_port(host, port))
        return len(data)

    def send(self, data: bytes, addr: str) -> None:
        """Send data to an address, fragmenting it if the channel requires."""
        message = UDPMessage(
            session_id=self.session_id,
            packet_id=0,
            frag_id=0,
            frag_count=1,
            addr=addr,
            data=bytes(data),
        )
        try:
            self._send(message)
        except DatagramTooLargeError as err:
            message.packet_id = random.randint(1, 0xFFFF)
            for fragment in frag_udp_message(message, err.max_data_len):
                self._send(fragment)

    def close(self) -> None:
        """Close the session; pending and future reads raise EOFError."""
        self._on_close(self)


class UDPSessionManager:
    """Routes incoming messages to sessions by session ID.

    A background thread reads messages from io until it raises, after which
    every session is closed and no new ones can be created.
    """

    def __init__(self, io: _DatagramIO) -> None:
        self._io = io
        self._lock = threading.Lock()
        self._sessions: dict[int, UDPConn] = {}
        self._next_id = 1
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="udp-session-manager", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            while True:
                message = self._io.receive_message()
                self._feed(message)
        except Exception:
            pass
        finally:
            self._close_all()

    def _close_all(self) -> None:
        with self._lock:
            self._closed = True
            for conn in list(self._sessions.values()):
                self._close_locked(conn)

    def _feed(self, message: UDPMessage) -> None:
        with self._lock:
            conn = self._sessions.get(message.session_id)
            if conn is not None:
                conn._deliver(message)

    def new_udp(self) -> UDPConn:
        """Open a new UDP session; raise ClosedError if the channel is gone."""
        with self._lock:
            if self._closed:
                raise ClosedError()
            session_id = self._next_id
            self._next_id += 1
            conn = UDPConn(session_id, self._io.send_message, self._close_conn)
            self._sessions[session_id] = conn
            return conn

    def _close_conn(self, conn: UDPConn) -> None:
        with self._lock:
            self._close_locked(conn)

    def _close_locked(self, conn: UDPConn) -> None:
        if not conn.closed:
            conn._shutdown()
            self._sessions.pop(conn.session_id, None)

    def count(self) -> int:
        """Return the number of open sessions."""
        with self._lock:
            return len(self._sessions)