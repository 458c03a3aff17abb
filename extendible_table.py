import logging
from array import array
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

# these are used to check which int size to use for representing bucket handles in the slots
type_codes, item_sizes = ("b", "h", "l", "q"), (
    0x7F,
    0x7FFF,
    0x7FFFFFFF,
    0x7FFFFFFFFFFFFFFF,
)

Slots = array


def rightmost_bits(n: int, x: int) -> int:
    # the rightmost n bits of x
    return x & ((1 << n) - 1)


class TableOverflowError(RuntimeError):
    """
    Raised when a directory table would have to grow past its maximum size

    This is not a recoverable condition: the insertion that triggered it is abandoned
    half way, and the xuckoo table it came from refuses any further use.
    """


@dataclass(slots=True)
class Bucket:
    """
    A bucket holds at most one key

    Attributes
    ----------
    id : int
        the smallest slot address in the owning table which references this bucket
    local_depth : int
        the number of low-order hash bits shared by every key this bucket can hold
    occupied : bool
        whether a key is stored
    key : int, optional
        the stored key, only meaningful when ``occupied`` is true
    """

    id: int
    local_depth: int
    occupied: bool = False
    key: Optional[int] = None

    def clear(self) -> Optional[int]:
        key, self.key, self.occupied = self.key, None, False
        return key

    def store(self, key: int) -> None:
        self.key, self.occupied = key, True


class DirectoryTable:
    """
    An extendible hash table whose buckets hold a single key

    Notes
    -----
        * ``self._buckets`` is an arena of every bucket created by this table. Buckets are never
          removed from it until the table is released.

        * ``self._slots`` holds handles (indices into ``self._buckets``), ``2 ** global_depth`` of them.
          Several slots share a bucket whenever the bucket's local depth is below the global depth.

        * A slot address is the rightmost ``global_depth`` bits of a key's hash value.
    """

    __slots__ = (
        "_buckets",
        "_slots",
        "_global_depth",
        "_key_count",
        "_hash_function",
        "_max_table_size",
    )

    def __init__(self, hash_function: Callable[[int], int], max_table_size: int):
        self._hash_function = hash_function
        self._max_table_size = max_table_size
        self._buckets: list[Bucket] = [Bucket(0, 0)]
        self._global_depth: int = 0
        self._key_count: int = 0
        self._slots: Slots = array(self._get_correct_type_code(1), [0])

    @property
    def global_depth(self) -> int:
        return self._global_depth

    @property
    def key_count(self) -> int:
        return self._key_count

    @property
    def size(self) -> int:
        # the number of slots, always 2 ** global_depth
        return len(self._slots)

    def __len__(self) -> int:
        return len(self._buckets)

    @staticmethod
    def _get_correct_type_code(capacity: int) -> str:
        index = 0
        while capacity >= item_sizes[index]:
            index += 1
        return type_codes[index]

    def address_of(self, hash_value: int) -> int:
        return rightmost_bits(self._global_depth, hash_value)

    def address_for(self, key: int) -> int:
        return self.address_of(self._hash_function(key))

    def bucket_at(self, address: int) -> Bucket:
        return self._buckets[self._slots[address]]

    def contains(self, key: int) -> bool:
        bucket = self.bucket_at(self.address_for(key))
        return bucket.occupied and bucket.key == key

    def place(self, address: int, key: int) -> None:
        """
        Store ``key`` in the empty bucket referenced by ``address``
        """
        bucket = self.bucket_at(address)
        if bucket.occupied:
            raise RuntimeError(f"bucket {bucket.id} at address {address} is occupied")
        bucket.store(key)
        self._key_count += 1

    def grow(self) -> None:
        """
        Double the number of slots, copying slot ``i`` to slot ``i + old_size``

        Raises
        ------
        TableOverflowError
            If the doubled table would be larger than the maximum table size.
            Nothing is modified in that case.
        """
        size = self.size * 2
        if size > self._max_table_size:
            raise TableOverflowError(
                f"table has grown too large: {size} slots exceeds the maximum of {self._max_table_size}"
            )

        type_code = self._get_correct_type_code(size)
        if type_code != self._slots.typecode:
            # handles may soon need a wider item size
            self._slots = array(type_code, self._slots.tolist())
        self._slots = self._slots * 2
        self._global_depth += 1
        logger.debug("grew directory to %d slots (depth %d)", size, self._global_depth)

    def split(self, address: int) -> Bucket:
        """
        Split the bucket referenced at ``address``, growing the table if necessary

        Parameters
        ----------
        address : int
            A slot address referencing the bucket to split

        Returns
        -------
        Bucket
            The newly created bucket

        Notes
        -----
        The new bucket takes over every second slot that referenced the old one: the slots
        whose rightmost ``local_depth + 1`` bits equal the new bucket's id. The old bucket's key
        (if any) is then filtered into whichever of the two buckets it now belongs to.
        """
        # this bucket is down to its last slot, there are no more to share
        if self.bucket_at(address).local_depth == self._global_depth:
            self.grow()

        bucket = self.bucket_at(address)
        depth = bucket.local_depth
        new_depth = depth + 1
        bucket.local_depth = new_depth

        # the new bucket's first address is the old one with a 1 bit in front
        new_id = (1 << depth) | rightmost_bits(depth, bucket.id)
        new_bucket = Bucket(new_id, new_depth)
        self._buckets.append(new_bucket)
        handle = len(self._buckets) - 1

        # every slot whose address ends in new_id, one per prefix of the remaining bits
        for prefix in range(1 << (self._global_depth - new_depth)):
            self._slots[(prefix << new_depth) | new_id] = handle

        if bucket.occupied:
            self.reinsert(bucket.clear())

        logger.debug(
            "split bucket %d into %d at local depth %d", bucket.id, new_id, new_depth
        )
        return new_bucket

    def reinsert(self, key: int) -> None:
        # only called right after a split made room, so the target is known to be empty
        self.bucket_at(self.address_for(key)).store(key)

    def iter_buckets(self) -> Iterator[Bucket]:
        # each distinct bucket once, in order of its first address
        for address, handle in enumerate(self._slots):
            bucket = self._buckets[handle]
            if bucket.id == address:
                yield bucket

    def iter_slots(self) -> Iterator[tuple[int, Bucket]]:
        for address, handle in enumerate(self._slots):
            yield address, self._buckets[handle]

    def references(self, bucket: Bucket) -> int:
        return sum(1 for _, other in self.iter_slots() if other is bucket)

    def occupied_count(self) -> int:
        return sum(1 for bucket in self.iter_buckets() if bucket.occupied)

    def release_buckets(self) -> Iterator[Bucket]:
        """
        Release every bucket of this table exactly once

        Slots are scanned backwards and a bucket is released only when reaching its first
        address, which is its ``id``. Scanning forwards would not tell us which reference is last.
        The table is empty afterwards and must not be used again.
        """
        for address in range(self.size - 1, -1, -1):
            bucket = self._buckets[self._slots[address]]
            if bucket.id == address:
                yield bucket

        self._buckets = []
        self._slots = array(self._slots.typecode)
        self._key_count = 0

    def __repr__(self):
        return (
            f"{type(self).__name__}(size={self.size}, depth={self._global_depth}, "
            f"buckets={len(self._buckets)}, keys={self._key_count})"
        )
