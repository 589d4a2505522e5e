"""Wire protocol, UDP sessions, client handshake and congestion-control components of a QUIC proxy client."""

__version__ = "0.1.0"