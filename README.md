# hycore

`hycore` holds the core pieces of a QUIC-based proxy client. It has no
runtime dependencies.

## What is in it

- **Wire protocol** (`hycore.protocol`): QUIC variable-length integers
  (`varint_len`, `varint_encode`, `read_varint`), TCP request and response
  frames (`write_tcp_request`, `read_tcp_request`, `write_tcp_response`,
  `read_tcp_response`), UDP messages (`UDPMessage`, `parse_udp_message`) and
  the HTTP header form of the authentication handshake (`AuthRequest`,
  `AuthResponse` and the `auth_*_headers` functions).
- **Fragmentation** (`hycore.frag`): `frag_udp_message` splits a UDP
  message into fragments of at most a given size; `Defragger` joins them
  back together, one packet ID at a time.
- **UDP sessions** (`hycore.udp`): `UDPSessionManager` runs a background
  thread that routes incoming messages to `UDPConn` sessions by session ID.
  A send that raises `DatagramTooLargeError` is retried as fragments.
- **Client configuration** (`hycore.config`): `Config`, `TLSConfig`,
  `QUICConfig` and `BandwidthConfig`. `Config.verify_and_fill` fills in
  defaults and raises `ConfigError` for missing or out-of-range fields.
- **Handshake and outbound** (`hycore.client`): `auth_headers` builds the
  authentication request headers, `complete_handshake` checks the server's
  status and headers and returns a `HandshakeInfo`, and `negotiate_tx`
  picks the send rate. `ClientOutbound` opens proxied TCP streams
  (`TCPConn`) and UDP sessions over a connection object you supply.
- **Congestion control** (`hycore.congestion`): a token-bucket `Pacer`,
  the fixed-rate `BrutalSender`, and the parts of a BBR bandwidth estimator
  in `hycore.congestion.bbr` (`WindowedFilter`, `RingBuffer`,
  `PacketNumberIndexedQueue`, `MaxAckHeightTracker`, `RecentAckPoints`,
  `BandwidthSampler`). Times are integer nanoseconds.
- **Errors** (`hycore.errors`): `ConfigError`, `ConnectError`, `AuthError`,
  `DialError`, `ClosedError` and `ProtocolError`, all derived from
  `CoreError`.

## What it does not do

- It has no QUIC or HTTP/3 transport. `ClientOutbound` works over any
  object that provides `open_stream`, `receive_datagram`, `send_datagram`
  and `close_with_error`; opening that connection and sending the
  authentication request is up to the caller.
- It does not reconnect after the connection closes.
- It has a BBR bandwidth sampler but no complete BBR sender.
- It has no command-line program and no server side.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Encode a TCP request and read it back:

```python
import io
from hycore.protocol import FRAME_TYPE_TCP_REQUEST, read_tcp_request, read_varint, write_tcp_request

buf = io.BytesIO()
write_tcp_request(buf, "example.com:443")
buf.seek(0)
assert read_varint(buf) == FRAME_TYPE_TCP_REQUEST
assert read_tcp_request(buf) == "example.com:443"
```

Fragment a UDP message and reassemble it:

```python
from hycore.frag import Defragger, frag_udp_message
from hycore.protocol import UDPMessage

msg = UDPMessage(session_id=1, packet_id=7, addr="test:123", data=b"abcdefgh")
parts = frag_udp_message(msg, 19)
assert len(parts) == 4

defragger = Defragger()
results = [defragger.feed(part) for part in parts]
assert results[-1].data == b"abcdefgh"
```

Check a configuration:

```python
from hycore.config import Config

config = Config(server_addr=("127.0.0.1", 443))
config.verify_and_fill()
assert config.quic_config.max_idle_timeout == 30.0
```

Interpret the server's reply to the authentication request:

```python
from hycore.client import complete_handshake
from hycore.config import BandwidthConfig, Config

config = Config(server_addr=("127.0.0.1", 443),
                bandwidth_config=BandwidthConfig(max_tx=123456))
info = complete_handshake(config, 233, {"Hysteria-UDP": "true", "Hysteria-CC-RX": "100000"})
assert info.udp_enabled and info.tx == 100000
```

A status other than 233 raises `AuthError`.