"""A windowed min/max filter over a stream of timestamped samples.

Tracks the best, second best and third best estimates over a fixed window,
keeping the invariant that the n'th best was measured no earlier than the
(n-1)'th best. A new best replaces all three estimates. When the best
expires it is replaced by the second best, which in turn is replaced by
the third best.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")
T = TypeVar("T", int, float)


def max_filter(a, b) -> int:
    """Compare for a max filter: 1 if a is better (greater), -1 if worse, 0 if equal."""
    return (a > b) - (a < b)


def min_filter(a, b) -> int:
    """Compare for a min filter: 1 if a is better (smaller), -1 if worse, 0 if equal."""
    return (a < b) - (a > b)


def _fraction(value, divisor: int):
    if isinstance(value, int):
        return value // divisor
    return value / divisor


class WindowedFilter(Generic[V, T]):
    """Tracks the best samples seen within a window of time.

    comparator(a, b) returns a positive number when a is better than b,
    a negative one when it is worse, and zero when they are equal. zero is
    the value of an unset estimate.
    """

    def __init__(self, window_length: T, comparator: Callable[[V, V], int], zero: V) -> None:
        self.window_length = window_length
        self._comparator = comparator
        self._zero = zero
        self._estimates: list[tuple[V, T]] = self._unset()

    def _unset(self) -> list[tuple[V, T]]:
        return [(self._zero, 0)] * 3

    @property
    def best(self) -> V:
        """The best estimate in the window."""
        return self._estimates[0][0]

    @property
    def second_best(self) -> V:
        """The second best estimate in the window."""
        return self._estimates[1][0]

    @property
    def third_best(self) -> V:
        """The third best estimate in the window."""
        return self._estimates[2][0]

    def update(self, sample: V, time: T) -> None:
        """Add a sample, expiring and promoting estimates as necessary."""
        better = self._comparator
        est = self._estimates
        if (
            better(est[0][0], self._zero) == 0
            or better(sample, est[0][0]) >= 0
            or time - est[2][1] > self.window_length
        ):
            self.reset(sample, time)
            return

        if better(sample, est[1][0]) >= 0:
            est[1] = (sample, time)
            est[2] = est[1]
        elif better(sample, est[2][0]) >= 0:
            est[2] = (sample, time)

        if time - est[0][1] > self.window_length:
            # The best estimate has not been renewed for a whole window.
            est[0] = est[1]
            est[1] = est[2]
            est[2] = (sample, time)
            if time - est[0][1] > self.window_length:
                est[0] = est[1]
                est[1] = est[2]
            return

        if better(est[1][0], est[0][0]) == 0 and time - est[1][1] > _fraction(
            self.window_length, 4
        ):
            # A quarter of the window passed without a better sample.
            est[1] = (sample, time)
            est[2] = est[1]
            return

        if better(est[2][0], est[1][0]) == 0 and time - est[2][1] > _fraction(
            self.window_length, 2
        ):
            # Half of the window passed without a better estimate.
            est[2] = (sample, time)

    def reset(self, sample: V, time: T) -> None:
        """Set all three estimates to the given sample."""
        self._estimates = [(sample, time)] * 3

    def clear(self) -> None:
        """Forget all estimates."""
        self._estimates = self._unset()