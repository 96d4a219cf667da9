"""Epoch clock - fixed-duration accounting periods."""

from typing import Iterator, Protocol

from .errors import InvalidEpochTime


class EpochClock:
    """Epoch arithmetic for a fixed epoch length (seconds)."""

    def __init__(self, epoch_length: int):
        if epoch_length <= 0:
            raise ValueError("epoch_length must be positive")
        self.epoch_length = epoch_length

    def epoch_number(self, t: int) -> int:
        return t // self.epoch_length

    def epoch_start(self, n: int) -> int:
        return n * self.epoch_length

    def epoch_end(self, n: int) -> int:
        return (n + 1) * self.epoch_length

    def is_epoch_aligned(self, t: int) -> bool:
        return t % self.epoch_length == 0

    def require_aligned(self, t: int) -> None:
        """Raise InvalidEpochTime unless t sits on an epoch boundary."""
        if not self.is_epoch_aligned(t):
            raise InvalidEpochTime(
                f"Timestamp {t} is not aligned to epoch length {self.epoch_length}"
            )

    def current_epoch_start(self, t: int) -> int:
        return self.epoch_start(self.epoch_number(t))

    def next_epoch_start(self, t: int) -> int:
        return self.epoch_end(self.epoch_number(t))

    def remaining_epochs(self, expiry: int, now: int) -> int:
        """
        Whole epochs between the end of the current epoch and expiry.

        The epoch containing `now` is never counted, so a lock expiring at
        the end of the current epoch has zero remaining epochs.
        """
        remaining = expiry - self.next_epoch_start(now)
        if remaining <= 0:
            return 0
        return remaining // self.epoch_length

    def boundaries(self, after: int, upto: int) -> Iterator[int]:
        """Epoch starts in the half-open interval (after, upto]."""
        e = self.next_epoch_start(after)
        while e <= upto:
            yield e
            e += self.epoch_length


class Clock(Protocol):
    """Time source read by the escrow."""

    def now(self) -> int: ...


class ManualClock:
    """Settable time source; the escrow only needs `now()`."""

    def __init__(self, now: int = 0, epoch_length: int = None):
        self._now = now
        self.epoch_length = epoch_length

    def now(self) -> int:
        return self._now

    def set(self, t: int) -> None:
        if t < self._now:
            raise ValueError(f"Clock cannot move backwards ({t} < {self._now})")
        self._now = t

    def advance(self, seconds: int) -> int:
        self.set(self._now + seconds)
        return self._now

    def advance_epochs(self, n: int = 1) -> int:
        """Advance by whole epochs (requires epoch_length)."""
        if self.epoch_length is None:
            raise ValueError("advance_epochs needs an epoch_length")
        return self.advance(n * self.epoch_length)
