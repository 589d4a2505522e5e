"""A queue of mostly contiguous entries indexed by packet number.

Entries are added at or past the end and removed in any order. Removing the
front entry also drops any absent entries behind it. Inserting two far-apart
packet numbers allocates every slot in between, so this is not a
general-purpose container.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from hycore.congestion.bbr.ringbuffer import RingBuffer

INVALID_PACKET_NUMBER = -1

T = TypeVar("T")


@dataclass
class _Slot(Generic[T]):
    present: bool = False
    entry: T | None = None


class PacketNumberIndexedQueue(Generic[T]):
    """Entries keyed by packet number, stored as a contiguous run of slots."""

    def __init__(self, size: int = 0) -> None:
        self._slots: RingBuffer[_Slot[T]] = RingBuffer(size)
        self._present = 0
        self._first_packet = INVALID_PACKET_NUMBER

    def emplace(self, packet_number: int, entry: T | None) -> bool:
        """Insert an entry at or past the end; return False if invalid or out of order."""
        if packet_number == INVALID_PACKET_NUMBER or entry is None:
            return False
        if self.is_empty():
            self._slots.push_back(_Slot(True, entry))
            self._present = 1
            self._first_packet = packet_number
            return True
        if packet_number <= self.last_packet:
            return False
        gap = packet_number - self._first_packet - len(self._slots)
        for _ in range(gap):
            self._slots.push_back(_Slot())
        self._slots.push_back(_Slot(True, entry))
        self._present += 1
        return True

    def get_entry(self, packet_number: int) -> T | None:
        """Return the entry for a packet number, or None if there is none."""
        slot = self._slot(packet_number)
        return None if slot is None else slot.entry

    def remove(self, packet_number: int, callback: Callable[[T], None] | None = None) -> bool:
        """Remove an entry, first passing it to callback; return whether it existed."""
        slot = self._slot(packet_number)
        if slot is None:
            return False
        if callback is not None:
            callback(slot.entry)
        slot.present = False
        slot.entry = None
        self._present -= 1
        if packet_number == self._first_packet:
            self._drop_absent_front()
        return True

    def remove_up_to(self, packet_number: int) -> None:
        """Remove every entry below packet_number, and absent slots after them."""
        while (
            self._slots
            and self._first_packet != INVALID_PACKET_NUMBER
            and self._first_packet < packet_number
        ):
            if self._slots.front().present:
                self._present -= 1
            self._slots.pop_front()
            self._first_packet += 1
        self._drop_absent_front()

    def is_empty(self) -> bool:
        """Return whether no entries are present."""
        return self._present == 0

    @property
    def number_of_present_entries(self) -> int:
        """The number of entries present."""
        return self._present

    @property
    def entry_slots_used(self) -> int:
        """The number of slots allocated, present or not."""
        return len(self._slots)

    @property
    def first_packet(self) -> int:
        """The packet number of the first slot, or INVALID_PACKET_NUMBER."""
        return self._first_packet

    @property
    def last_packet(self) -> int:
        """The packet number of the last slot, or INVALID_PACKET_NUMBER when empty."""
        if self.is_empty():
            return INVALID_PACKET_NUMBER
        return self._first_packet + len(self._slots) - 1

    def _drop_absent_front(self) -> None:
        while self._slots and not self._slots.front().present:
            self._slots.pop_front()
            self._first_packet += 1
        if not self._slots:
            self._first_packet = INVALID_PACKET_NUMBER

    def _slot(self, packet_number: int) -> _Slot[T] | None:
        if (
            packet_number == INVALID_PACKET_NUMBER
            or self.is_empty()
            or packet_number < self._first_packet
        ):
            return None
        offset = packet_number - self._first_packet
        if offset >= len(self._slots):
            return None
        slot = self._slots[offset]
        return slot if slot.present else None