"""Wire protocol: authentication headers, TCP request/response frames and UDP messages."""

from __future__ import annotations

import random
import string
import struct
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import BinaryIO

from hycore.errors import ProtocolError

URL_HOST = "hysteria"
URL_PATH = "/auth"

REQUEST_HEADER_AUTH = "Hysteria-Auth"
RESPONSE_HEADER_UDP_ENABLED = "Hysteria-UDP"
COMMON_HEADER_CC_RX = "Hysteria-CC-RX"
COMMON_HEADER_PADDING = "Hysteria-Padding"

STATUS_AUTH_OK = 233

FRAME_TYPE_TCP_REQUEST = 0x401

MAX_ADDRESS_LENGTH = 2048
MAX_MESSAGE_LENGTH = 2048
MAX_PADDING_LENGTH = 4096
MAX_UDP_SIZE = 4096

MAX_VARINT_1 = 63
MAX_VARINT_2 = 16383
MAX_VARINT_4 = 1073741823
MAX_VARINT_8 = 4611686018427387903

_MAX_UINT64 = (1 << 64) - 1

PADDING_CHARS = string.ascii_lowercase + string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class Padding:
    """A half-open range [min, max) of random padding lengths."""

    min: int
    max: int

    def generate(self) -> str:
        """Return a random alphanumeric string with a length in the range."""
        n = random.randrange(self.min, self.max)
        return "".join(random.choices(PADDING_CHARS, k=n))


AUTH_REQUEST_PADDING = Padding(256, 2048)
AUTH_RESPONSE_PADDING = Padding(256, 2048)
TCP_REQUEST_PADDING = Padding(64, 512)
TCP_RESPONSE_PADDING = Padding(128, 1024)


@dataclass
class AuthRequest:
    """What the client sends to the server to authenticate."""

    auth: str = ""
    rx: int = 0  # 0 = unknown, the server should use bandwidth detection


@dataclass
class AuthResponse:
    """What the server sends back when authentication passes."""

    udp_enabled: bool = False
    rx: int = 0  # 0 = unlimited
    rx_auto: bool = False  # the server asks the client to use bandwidth detection


_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})


def _parse_uint(text: str | None) -> int:
    if not text or not text.isascii() or not text.isdigit():
        return 0
    value = int(text)
    return value if value <= _MAX_UINT64 else 0


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def auth_request_from_headers(headers: Mapping[str, str]) -> AuthRequest:
    """Read an authentication request from HTTP headers."""
    return AuthRequest(
        auth=headers.get(REQUEST_HEADER_AUTH, "") or "",
        rx=_parse_uint(headers.get(COMMON_HEADER_CC_RX)),
    )


def auth_request_to_headers(headers: MutableMapping[str, str], request: AuthRequest) -> None:
    """Write an authentication request into HTTP headers."""
    headers[REQUEST_HEADER_AUTH] = request.auth
    headers[COMMON_HEADER_CC_RX] = str(request.rx)
    headers[COMMON_HEADER_PADDING] = AUTH_REQUEST_PADDING.generate()


def auth_response_from_headers(headers: Mapping[str, str]) -> AuthResponse:
    """Read an authentication response from HTTP headers."""
    response = AuthResponse()
    response.udp_enabled = headers.get(RESPONSE_HEADER_UDP_ENABLED) in _TRUE_STRINGS
    rx_text = headers.get(COMMON_HEADER_CC_RX)
    if rx_text == "auto":
        response.rx_auto = True
    else:
        response.rx = _parse_uint(rx_text)
    return response


def auth_response_to_headers(headers: MutableMapping[str, str], response: AuthResponse) -> None:
    """Write an authentication response into HTTP headers."""
    headers[RESPONSE_HEADER_UDP_ENABLED] = _format_bool(response.udp_enabled)
    headers[COMMON_HEADER_CC_RX] = "auto" if response.rx_auto else str(response.rx)
    headers[COMMON_HEADER_PADDING] = AUTH_RESPONSE_PADDING.generate()


def varint_len(value: int) -> int:
    """Return the number of bytes a QUIC variable-length integer takes."""
    if value < 0:
        raise ValueError(f"{value} is negative")
    if value <= MAX_VARINT_1:
        return 1
    if value <= MAX_VARINT_2:
        return 2
    if value <= MAX_VARINT_4:
        return 4
    if value <= MAX_VARINT_8:
        return 8
    raise ValueError(f"{value:#x} doesn't fit into 62 bits")


_VARINT_PREFIX = {1: 0x00, 2: 0x40, 4: 0x80, 8: 0xC0}


def varint_encode(value: int) -> bytes:
    """Encode a QUIC variable-length integer."""
    length = varint_len(value)
    encoded = bytearray(value.to_bytes(length, "big"))
    encoded[0] |= _VARINT_PREFIX[length]
    return bytes(encoded)


def _read_exact(reader: BinaryIO, n: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < n:
        chunk = reader.read(n - len(chunks))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(chunks)}")
        chunks += chunk
    return bytes(chunks)


def read_varint(reader: BinaryIO) -> int:
    """Read a QUIC variable-length integer from a binary stream."""
    first = _read_exact(reader, 1)[0]
    length = 1 << (first >> 6)
    value = first & 0x3F
    for byte in _read_exact(reader, length - 1):
        value = (value << 8) | byte
    return value


def _encode_text(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def _skip_padding(reader: BinaryIO) -> None:
    padding_len = read_varint(reader)
    if padding_len > MAX_PADDING_LENGTH:
        raise ProtocolError("invalid padding length")
    if padding_len:
        _read_exact(reader, padding_len)


def read_tcp_request(reader: BinaryIO) -> str:
    """Read a TCP request whose frame type has already been consumed; return the address."""
    addr_len = read_varint(reader)
    if addr_len == 0 or addr_len > MAX_ADDRESS_LENGTH:
        raise ProtocolError("invalid address length")
    addr = _read_exact(reader, addr_len)
    _skip_padding(reader)
    return _decode_text(addr)


def write_tcp_request(writer: BinaryIO, addr: str) -> None:
    """Write a TCP request frame, including its frame type, for the given address."""
    addr_bytes = _encode_text(addr)
    padding = TCP_REQUEST_PADDING.generate().encode("ascii")
    writer.write(
        varint_encode(FRAME_TYPE_TCP_REQUEST)
        + varint_encode(len(addr_bytes))
        + addr_bytes
        + varint_encode(len(padding))
        + padding
    )


def read_tcp_response(reader: BinaryIO) -> tuple[bool, str]:
    """Read a TCP response; return whether it succeeded and the server's message."""
    status = _read_exact(reader, 1)[0]
    msg_len = read_varint(reader)
    if msg_len > MAX_MESSAGE_LENGTH:
        raise ProtocolError("invalid message length")
    message = _read_exact(reader, msg_len) if msg_len else b""
    _skip_padding(reader)
    return status == 0, _decode_text(message)


def write_tcp_response(writer: BinaryIO, ok: bool, message: str) -> None:
    """Write a TCP response frame."""
    msg_bytes = _encode_text(message)
    padding = TCP_RESPONSE_PADDING.generate().encode("ascii")
    writer.write(
        bytes([0 if ok else 1])
        + varint_encode(len(msg_bytes))
        + msg_bytes
        + varint_encode(len(padding))
        + padding
    )


_UDP_HEADER = struct.Struct(">IHBB")


@dataclass
class UDPMessage:
    """A UDP datagram, or a fragment of one, relayed through the proxy."""

    session_id: int = 0
    packet_id: int = 0
    frag_id: int = 0
    frag_count: int = 1
    addr: str = ""
    data: bytes = b""

    def header_size(self) -> int:
        """Return the size of everything before the payload."""
        addr_len = len(_encode_text(self.addr))
        return _UDP_HEADER.size + varint_len(addr_len) + addr_len

    def size(self) -> int:
        """Return the size of the serialized message."""
        return self.header_size() + len(self.data)

    def serialize(self) -> bytes:
        """Return the wire form of the message."""
        addr_bytes = _encode_text(self.addr)
        return (
            _UDP_HEADER.pack(self.session_id, self.packet_id, self.frag_id, self.frag_count)
            + varint_encode(len(addr_bytes))
            + addr_bytes
            + bytes(self.data)
        )


def parse_udp_message(data: bytes) -> UDPMessage:
    """Parse a UDP message from its wire form."""
    if len(data) < _UDP_HEADER.size:
        raise EOFError("truncated UDP message header")
    session_id, packet_id, frag_id, frag_count = _UDP_HEADER.unpack_from(data)
    view = memoryview(data)[_UDP_HEADER.size:]
    first = view[0] if view else None
    if first is None:
        raise EOFError("truncated UDP message address length")
    length = 1 << (first >> 6)
    if len(view) < length:
        raise EOFError("truncated UDP message address length")
    addr_len = int.from_bytes(view[:length], "big") & ((1 << (8 * length - 2)) - 1)
    if addr_len == 0 or addr_len > MAX_MESSAGE_LENGTH:
        raise ProtocolError("invalid address length")
    rest = bytes(view[length:])
    # At least one byte of data is expected after the address.
    if len(rest) <= addr_len:
        raise ProtocolError("invalid message length")
    return UDPMessage(
        session_id=session_id,
        packet_id=packet_id,
        frag_id=frag_id,
        frag_count=frag_count,
        addr=_decode_text(rest[:addr_len]),
        data=rest[addr_len:],
    )