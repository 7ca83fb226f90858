"""Seeded pseudo-random source shared by every random choice of a session."""
from typing import Sequence, TypeVar

T = TypeVar("T")


class SeededRandom:
    """Linear congruential generator returning floats in [0, 1).

    The constants are fixed so that a seed replays the exact same stream
    on every platform; golden snapshots depend on it.
    """

    MULTIPLIER = 9301
    INCREMENT = 49297
    MODULUS = 233280

    def __init__(self, seed: int) -> None:
        self.seed = int(seed)
        self._state = self.seed

    def __call__(self) -> float:
        self._state = (self._state * self.MULTIPLIER + self.INCREMENT) % self.MODULUS
        return self._state / self.MODULUS

    def next_int(self, upper: int) -> int:
        """Return an int in [0, upper)."""
        if upper <= 0:
            raise ValueError(f"upper must be positive; got {upper}")
        return int(self() * upper)

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("cannot choose from an empty sequence")
        return items[self.next_int(len(items))]

    def __repr__(self) -> str:
        """Human-readable representation."""
        return f"SeededRandom(seed={self.seed})"
