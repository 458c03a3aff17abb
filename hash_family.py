import random
from abc import ABC, abstractmethod
from typing import Callable, Final, Optional

import numpy as np

p: Final[int] = 0x1FFFFFFFFFFFFFFF  # Mersenne prime (2^61 - 1)

WORD_SIZE: Final[int] = 64  # word size
WORD_MASK: Final[int] = (1 << WORD_SIZE) - 1


def gen_multiplier_increment_pair(
    count: int, multiplier_gen: Callable[[], int], increment_gen: Callable[[], int]
) -> tuple[tuple[int, ...], tuple[int, ...]]:
    pairs: set[tuple[int, int]] = set()
    while len(pairs) != count:
        pairs.add((multiplier_gen(), increment_gen()))
    multipliers, increments = zip(*sorted(pairs))
    return multipliers, increments


class HashFamily(ABC):
    """
    A family of ``size`` hash functions over 64-bit integer keys

    Each function maps a key to a non-negative integer of at most ``WORD_SIZE`` bits.
    Tables only ever look at the low-order bits of a hash value, so the low bits have
    to be as well mixed as the high ones.
    """

    def __init__(self, size: int, seed: Optional[int] = None):
        self._size = size
        self._seed = seed
        self._random = random.Random(seed)

    @abstractmethod
    def gen(self):
        pass

    @abstractmethod
    def __call__(self, table_index: int, key: int) -> int:
        pass

    def size(self):
        return self._size


class HashFamilyModular(HashFamily):
    def __init__(self, size: int, seed: Optional[int] = None):
        super().__init__(size, seed)
        self.a = None
        self.b = None

    def __call__(self, table_index, key):
        a, b = self.a[table_index], self.b[table_index]
        return (a * key + b) % p

    def gen(self):
        self.a, self.b = gen_multiplier_increment_pair(
            self.size(),
            lambda: self._random.randint(1, p - 1),
            lambda: self._random.randint(0, p - 1),
        )


class HashFamilyShift(HashFamily):
    """
    Multiply-add-shift (Dietzfelbinger, 1996) producing a full word

    h(x) = ((a * x + b) mod 2^(2w)) >> w, where a and b are random 2w-bit integers
    """

    def __init__(self, size: int, seed: Optional[int] = None):
        super().__init__(size, seed)
        self.a = None
        self.b = None

    def get_rand_odd(self, w: int) -> int:
        x = self._random.getrandbits(w)
        while not (x & 1):
            x = self._random.getrandbits(w)
        return x

    def __call__(self, table_index, key):
        mask = (1 << (2 * WORD_SIZE)) - 1
        a, b = self.a[table_index], self.b[table_index]
        return ((a * key + b) & mask) >> WORD_SIZE

    def gen(self):
        self.a, self.b = gen_multiplier_increment_pair(
            self.size(),
            lambda: self.get_rand_odd(2 * WORD_SIZE),
            lambda: self._random.getrandbits(2 * WORD_SIZE),
        )


class HashFamilyTabulation(HashFamily):
    def __init__(self, size: int, seed: Optional[int] = None):
        super().__init__(size, seed)
        self.tables = None

    def __call__(self, table_index: int, key: int) -> int:
        x = key
        h0 = x & 0xFF
        h1 = (x >> 8) & 0xFF
        h2 = (x >> 16) & 0xFF
        h3 = (x >> 24) & 0xFF
        h4 = (x >> 32) & 0xFF
        h5 = (x >> 40) & 0xFF
        h6 = (x >> 48) & 0xFF
        h7 = (x >> 56) & 0xFF
        t = self.tables[table_index]
        return int(
            t[0][h0]
            ^ t[1][h1]
            ^ t[2][h2]
            ^ t[3][h3]
            ^ t[4][h4]
            ^ t[5][h5]
            ^ t[6][h6]
            ^ t[7][h7]
        )

    def gen(self):
        rng = np.random.default_rng(self._random.getrandbits(WORD_SIZE))
        self.tables = rng.integers(
            0, WORD_MASK, size=(self.size(), 8, 256), dtype=np.uint64, endpoint=True
        )


class HashFamilyFixed(HashFamily):
    """
    A family built from plain deterministic functions, one per table

    Useful when the hash functions are dictated by the environment, or in tests:

        >>> family = HashFamilyFixed(lambda k: k, lambda k: k + 1)
        >>> family(1, 41)
        42
    """

    def __init__(self, *functions: Callable[[int], int]):
        super().__init__(len(functions))
        self._functions = functions

    def __call__(self, table_index: int, key: int) -> int:
        return self._functions[table_index](key) & WORD_MASK

    def gen(self):
        # the functions are fixed, there is nothing to draw
        pass
