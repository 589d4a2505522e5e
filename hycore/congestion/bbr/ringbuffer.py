"""A first-in first-out queue with indexed access."""

from __future__ import annotations

from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """A growable FIFO queue supporting access by offset from the front."""

    def __init__(self, size: int = 0) -> None:
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        self._items: deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __getitem__(self, index: int) -> T:
        if not 0 <= index < len(self._items):
            raise IndexError(f"offset {index} out of range")
        return self._items[index]

    def push_back(self, item: T) -> None:
        """Append an element at the back."""
        self._items.append(item)

    def pop_front(self) -> T:
        """Remove and return the front element."""
        if not self._items:
            raise IndexError("pop from an empty queue")
        return self._items.popleft()

    def front(self) -> T:
        """Return the front element."""
        if not self._items:
            raise IndexError("front from an empty queue")
        return self._items[0]

    def back(self) -> T:
        """Return the back element."""
        if not self._items:
            raise IndexError("back from an empty queue")
        return self._items[-1]

    def clear(self) -> None:
        """Remove all elements."""
        self._items.clear()