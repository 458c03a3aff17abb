"""
Extendible cuckoo hashing

A dynamic hash table storing 64-bit keys in two extendible hash tables with a single key per
bucket. Collisions are resolved by moving keys between the two tables (cuckoo hashing), and a
table only grows, one bucket split at a time, once moving keys around goes in circles.
"""

import argparse
import enum
import logging
import operator
import sys
from functools import partial
from io import StringIO
from typing import Final, Iterator, Optional, Sequence

from extendible_table import DirectoryTable, TableOverflowError
from hash_family import (
    WORD_SIZE,
    HashFamily,
    HashFamilyModular,
    HashFamilyShift,
    HashFamilyTabulation,
)
from stats import Stats, timed

__all__ = [
    "XuckooHashTable",
    "TableOverflowError",
    "create",
    "destroy",
    "insert",
    "lookup",
    "dump",
    "report",
]

logger = logging.getLogger(__name__)

MAX_KEY: Final[int] = (1 << WORD_SIZE) - 1


class Outcome(enum.Enum):
    PLACED = enum.auto()
    SPLIT_AND_RESTART = enum.auto()


class XuckooHashTable:
    """
    A set of 64-bit keys stored across two extendible hash tables using cuckoo hashing

    Notes
    -----
        * ``self._tables[0]`` (table A) is addressed with the first function of the hash family,
          ``self._tables[1]`` (table B) with the second.

        * A key is always stored in exactly one bucket of exactly one of the two tables.

        * An insertion starts in the table holding fewer keys (table A on ties) and then bounces
          between the tables, evicting whatever key sits in its way. When the chain brings the
          original key back to where it started, or gets longer than the total number of slots,
          the bucket in the way is split and the insertion starts over.
    """

    # the largest number of slots either table may grow to
    MAX_TABLE_SIZE: Final[int] = 1 << 26
    # a chain must be longer than this before returning to its origin counts as a cycle
    CYCLE_THRESHOLD: Final[int] = 3

    __slots__ = (
        "_tables",
        "_hash_family",
        "_stats",
        "_max_table_size",
        "_cycle_threshold",
        "_destroyed",
        "track_time",
    )

    def __init__(
        self,
        *,
        hash_family: Optional[HashFamily] = None,
        max_table_size: int = MAX_TABLE_SIZE,
        cycle_threshold: int = CYCLE_THRESHOLD,
        track_time: bool = True,
    ):
        """
        Parameters
        ----------
        hash_family : HashFamily, optional
            A hash family of size 2 providing the functions of table A and table B.
            By default it is a tabulation hashing family
        max_table_size : int, optional
            The maximum number of slots in each table. Growing a table past this
            raises a TableOverflowError. The default is 2 ** 26
        cycle_threshold : int, optional
            The minimum chain length before a key returning to its starting slot is
            treated as a cycle. The default is 3
        track_time : bool, optional
            Whether to accumulate the CPU time spent in insert and lookup. True by default
        """
        self._hash_family: HashFamily = hash_family or HashFamilyTabulation(2)
        self._hash_family.gen()
        self._max_table_size = max_table_size
        self._cycle_threshold = cycle_threshold
        self._validate_attributes()

        self._tables: tuple[DirectoryTable, DirectoryTable] = tuple(
            DirectoryTable(partial(self._hash_family, table_index), max_table_size)
            for table_index in range(2)
        )
        self._stats = Stats()
        self._destroyed = False
        self.track_time = track_time

    def _validate_attributes(self):
        self._validate_number_of_tables()
        self._validate_max_table_size()
        self._validate_cycle_threshold()

    def _validate_number_of_tables(self):
        if self._hash_family.size() != 2:
            raise ValueError(
                f"The size of the hash family must be 2: not {self._hash_family.size()}"
            )

    def _validate_max_table_size(self):
        if self._max_table_size < 1:
            raise ValueError(
                f"The maximum table size must be >= 1: not {self._max_table_size}"
            )

    def _validate_cycle_threshold(self):
        if self._cycle_threshold < 1:
            raise ValueError(
                f"The cycle threshold must be >= 1: not {self._cycle_threshold}"
            )

    @staticmethod
    def _validate_key(key) -> int:
        key = operator.index(key)
        if key < 0 or key > MAX_KEY:
            raise ValueError(f"Keys must be unsigned {WORD_SIZE}-bit integers: not {key}")
        return key

    def _check_alive(self):
        if self._destroyed:
            raise RuntimeError("this table has been destroyed or has overflowed")

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def tables(self) -> tuple[DirectoryTable, DirectoryTable]:
        return self._tables

    def _contains(self, key: int) -> bool:
        table_a, table_b = self._tables
        return table_a.contains(key) or table_b.contains(key)

    @timed
    def lookup(self, key: int) -> bool:
        """
        Return True if ``key`` is stored in either table
        """
        self._check_alive()
        return self._contains(self._validate_key(key))

    def __contains__(self, key: int) -> bool:
        return self.lookup(key)

    @timed
    def insert(self, key: int) -> bool:
        """
        Insert ``key`` unless it is already present

        Returns
        -------
        True
            If the key was newly stored
        False
            If it was already there, in which case nothing changes

        Raises
        ------
        TableOverflowError
            If a table has to grow past the maximum table size. The table is discarded:
            every later call raises RuntimeError.
        """
        self._check_alive()
        key = self._validate_key(key)
        if self._contains(key):
            return False

        # every split makes room, so each restart is expected to get further
        try:
            outcome, key = self._displace(key)
            while outcome is Outcome.SPLIT_AND_RESTART:
                logger.debug("restarting insertion of %d after a split", key)
                outcome, key = self._displace(key)
        except TableOverflowError:
            # the chain was abandoned with a key in hand, nothing may read this table again
            logger.error("table overflowed while inserting %d, discarding it", key)
            self._destroyed = True
            raise
        return True

    def _displace(self, key: int) -> tuple[Outcome, int]:
        """
        Run one cuckoo displacement chain for ``key``

        Returns
        -------
        (Outcome.PLACED, key)
            If every key touched by the chain found a home
        (Outcome.SPLIT_AND_RESTART, current_key)
            If the chain cycled. A bucket was split and ``current_key``, the one key
            the chain is still carrying, has to be inserted again from scratch
        """
        table_a, table_b = self._tables
        # the loop counter picks the table: odd counts use table A, even counts table B
        if table_a.key_count <= table_b.key_count:
            loop_count, origin_table = 0, table_a
        else:
            loop_count, origin_table = 1, table_b

        origin_address = origin_table.address_for(key)
        origin_key = current_key = key

        while True:
            loop_count += 1
            table = table_a if loop_count % 2 else table_b
            address = table.address_for(current_key)

            if (
                address == origin_address
                and current_key == origin_key
                and loop_count > self._cycle_threshold
            ) or loop_count > table_a.size + table_b.size:
                table.split(address)
                self._stats.record_split()
                return Outcome.SPLIT_AND_RESTART, current_key

            bucket = table.bucket_at(address)
            if bucket.occupied:
                bucket.key, current_key = current_key, bucket.key
                continue

            table.place(address, current_key)
            self._stats.record_insertion()
            return Outcome.PLACED, current_key

    def destroy(self) -> int:
        """
        Release every bucket of both tables

        Returns
        -------
        int
            The number of buckets released. Each bucket is released exactly once however
            many slots reference it
        """
        self._check_alive()
        released = 0
        for table in self._tables:
            for _ in table.release_buckets():
                released += 1
        self._destroyed = True
        return released

    def dump(self) -> str:
        """
        Render the slots of both tables and the buckets they reference

        A bucket is listed next to its first address only.
        """
        self._check_alive()
        ret = StringIO()
        ret.write("--- table ---\n")
        for table_number, table in enumerate(self._tables, start=1):
            ret.write(f"table {table_number}\n")
            ret.write("  table:               buckets:\n")
            ret.write("  address | bucketid   bucketid [key]\n")
            for address, bucket in table.iter_slots():
                ret.write(f"{address:9d} | {bucket.id:<9d} ")
                if bucket.id == address:
                    ret.write(f"{bucket.id:9d} ")
                    ret.write(f"[{bucket.key}]" if bucket.occupied else "[ ]")
                ret.write("\n")
        ret.write("--- end table ---\n")
        return ret.getvalue()

    def report(self) -> str:
        self._check_alive()
        table_a, table_b = self._tables
        ret = [
            "--- table stats ---\n",
            f"current tab 1 size: {table_a.size}\n",
            f"current tab 2 size: {table_b.size}\n",
            f"    number of keys: {self._stats.nkeys}\n",
            f" number of buckets: {self._stats.nbuckets}\n",
            f"    CPU time spent: {self._stats.time:.6f} sec\n",
            "--- end stats ---\n",
        ]
        return "".join(ret)

    def __len__(self) -> int:
        self._check_alive()
        return self._stats.nkeys

    def __iter__(self) -> Iterator[int]:
        self._check_alive()
        for table in self._tables:
            for bucket in table.iter_buckets():
                if bucket.occupied:
                    yield bucket.key

    def __repr__(self):
        if self._destroyed:
            return f"{type(self).__name__}(<destroyed>)"
        return f"{type(self).__name__}({{{', '.join(map(repr, self))}}})"


def create(**kwargs) -> XuckooHashTable:
    return XuckooHashTable(**kwargs)


def destroy(table: XuckooHashTable) -> int:
    return table.destroy()


def insert(table: XuckooHashTable, key: int) -> bool:
    return table.insert(key)


def lookup(table: XuckooHashTable, key: int) -> bool:
    return table.lookup(key)


def dump(table: XuckooHashTable) -> str:
    return table.dump()


def report(table: XuckooHashTable) -> str:
    return table.report()


HASH_FAMILIES: Final[dict[str, type[HashFamily]]] = {
    "tabulation": HashFamilyTabulation,
    "shift": HashFamilyShift,
    "modular": HashFamilyModular,
}


def read_keys(path: str) -> Iterator[int]:
    # "-" reads from stdin
    if path == "-":
        yield from _parse_keys(sys.stdin)
        return
    with open(path) as stream:
        yield from _parse_keys(stream)


def _parse_keys(stream) -> Iterator[int]:
    for line in stream:
        for token in line.split():
            yield int(token)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Insert keys into an extendible cuckoo hash table and inspect it."
    )
    parser.add_argument(
        "keys",
        nargs="?",
        default="-",
        help="file of whitespace-separated keys to insert (default: stdin)",
    )
    parser.add_argument(
        "--lookup",
        help="file of keys to look up after inserting",
    )
    parser.add_argument(
        "-p", "--print", dest="print_table", action="store_true",
        help="print the table contents",
    )
    parser.add_argument(
        "-s", "--stats", action="store_true", help="print table statistics"
    )
    parser.add_argument(
        "--hash-family", choices=sorted(HASH_FAMILIES), default="tabulation"
    )
    parser.add_argument("--seed", type=int, help="seed for the hash functions")
    parser.add_argument(
        "--max-table-size", type=int, default=XuckooHashTable.MAX_TABLE_SIZE
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    table = create(
        hash_family=HASH_FAMILIES[args.hash_family](2, args.seed),
        max_table_size=args.max_table_size,
    )
    inserted = duplicates = 0
    for key in read_keys(args.keys):
        if table.insert(key):
            inserted += 1
        else:
            duplicates += 1
    logger.info("inserted %d keys, skipped %d duplicates", inserted, duplicates)

    if args.lookup is not None:
        for key in read_keys(args.lookup):
            print(f"{key} {'found' if table.lookup(key) else 'not found'}")
    if args.print_table:
        print(table.dump(), end="")
    if args.stats:
        print(table.report(), end="")

    destroy(table)
    return 0


if __name__ == "__main__":
    sys.exit(main())
