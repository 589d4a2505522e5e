"""Fragmentation and reassembly of UDP messages."""

from __future__ import annotations

import dataclasses

from hycore.protocol import UDPMessage

_MAX_FRAGMENTS = 255


def frag_udp_message(message: UDPMessage, max_size: int) -> list[UDPMessage]:
    """Split a message into fragments that each fit within max_size bytes."""
    if message.size() <= max_size:
        return [dataclasses.replace(message)]
    payload = message.data
    max_payload = max_size - message.header_size()
    if max_payload <= 0:
        raise ValueError(f"max size {max_size} leaves no room for payload")
    frag_count = -(-len(payload) // max_payload)
    if frag_count > _MAX_FRAGMENTS:
        raise ValueError(f"message needs {frag_count} fragments, at most {_MAX_FRAGMENTS} allowed")
    return [
        dataclasses.replace(
            message,
            frag_id=frag_id,
            frag_count=frag_count,
            data=payload[offset : offset + max_payload],
        )
        for frag_id, offset in enumerate(range(0, len(payload), max_payload))
    ]


class Defragger:
    """Reassembles fragmented messages, one packet ID at a time.

    A fragment of a different packet arriving before the current one is
    complete discards the incomplete state.
    """

    def __init__(self) -> None:
        self._packet_id = 0
        self._frags: list[UDPMessage | None] = []
        self._count = 0

    def feed(self, message: UDPMessage) -> UDPMessage | None:
        """Take a fragment; return the whole message once every fragment has arrived."""
        if message.frag_count <= 1:
            return message
        if message.frag_id >= message.frag_count:
            return None
        if message.packet_id != self._packet_id or message.frag_count != len(self._frags):
            self._packet_id = message.packet_id
            self._frags = [None] * message.frag_count
            self._frags[message.frag_id] = message
            self._count = 1
        elif self._frags[message.frag_id] is None:
            self._frags[message.frag_id] = message
            self._count += 1
            if self._count == len(self._frags):
                data = b"".join(bytes(frag.data) for frag in self._frags if frag is not None)
                return dataclasses.replace(message, data=data, frag_id=0, frag_count=1)
        return None