import itertools
from collections import Counter

import numpy as np
import pytest

import stats
import xuckoo_hash_table
from extendible_table import TableOverflowError
from hash_family import HashFamilyFixed, HashFamilyTabulation
from xuckoo_hash_table import XuckooHashTable


def stub_table(**kwargs) -> XuckooHashTable:
    return XuckooHashTable(
        hash_family=HashFamilyFixed(lambda k: k, lambda k: k + 1), **kwargs
    )


class TestXuckooHashTable:
    num_items = 2_000
    random_ints = np.unique(
        np.random.default_rng(2017).integers(0, 1 << 62, num_items, dtype=np.int64)
    )

    @staticmethod
    def _assert_invariants(table: XuckooHashTable, expected_keys: int):
        occupied = 0
        for directory in table.tables:
            assert directory.size == 1 << directory.global_depth
            references = Counter(id(bucket) for _, bucket in directory.iter_slots())
            for bucket in directory.iter_buckets():
                assert bucket.local_depth <= directory.global_depth
                assert references[id(bucket)] == 1 << (
                    directory.global_depth - bucket.local_depth
                )
            occupied += directory.occupied_count()
        assert occupied == expected_keys == len(table)

    def _test_with_random_insertions(self, table: XuckooHashTable):
        for key in self.random_ints:
            assert table.insert(key), key
            assert key in table, key
        for key in self.random_ints:
            assert table.lookup(key), key
        self._assert_invariants(table, len(self.random_ints))

    def test_example_scenario(self):
        table = stub_table()
        assert table.insert(5)
        assert table.tables[0].bucket_at(0).key == 5
        assert table.stats.nkeys == 1

        assert table.insert(9)
        assert table.tables[1].bucket_at(0).key == 9
        assert table.stats.nkeys == 2

        assert table.lookup(5)
        assert table.lookup(9)
        assert not table.lookup(7)

    def test_cycle_splits_and_restarts(self):
        table = stub_table()
        for key in (5, 9, 7):
            assert table.insert(key)

        table_a, table_b = table.tables
        assert (table_a.size, table_b.size) == (4, 2)
        assert table.stats.nbuckets == 3
        assert table_a.bucket_at(1).key == 5
        assert table_a.bucket_at(3).key == 7
        assert table_b.bucket_at(0).key == 9
        assert all(table.lookup(key) for key in (5, 9, 7))
        self._assert_invariants(table, 3)

    def test_insert_is_idempotent(self):
        table = stub_table()
        assert table.insert(42)
        nkeys, nbuckets = table.stats.nkeys, table.stats.nbuckets
        assert not table.insert(42)
        assert table.stats.nkeys == nkeys == 1
        assert table.stats.nbuckets == nbuckets
        assert len(table) == 1

    def test_with_random_insertions(self):
        self._test_with_random_insertions(
            XuckooHashTable(hash_family=HashFamilyTabulation(2, seed=1))
        )

    def test_negative_lookups(self):
        table = XuckooHashTable(hash_family=HashFamilyTabulation(2, seed=2))
        for key in range(0, 2000, 2):
            table.insert(key)
        assert not any(table.lookup(key) for key in range(1, 2000, 2))
        assert all(table.lookup(key) for key in range(0, 2000, 2))

    def test_duplicates_are_not_counted(self):
        table = XuckooHashTable(hash_family=HashFamilyTabulation(2, seed=3))
        keys = [key % 300 for key in range(1000)]
        inserted = sum(table.insert(key) for key in keys)
        assert inserted == 300
        self._assert_invariants(table, 300)
        assert sorted(table) == list(range(300))

    @pytest.mark.parametrize(
        "functions",
        [
            (lambda k: k, lambda k: k),
            (lambda k: k << 3, lambda k: k << 3),
            (lambda k: k, lambda k: k ^ 1),
        ],
    )
    def test_adversarial_hashes_terminate(self, functions):
        table = XuckooHashTable(
            hash_family=HashFamilyFixed(*functions), max_table_size=1 << 16
        )
        for key in range(64):
            assert table.insert(key)
        assert all(table.lookup(key) for key in range(64))
        self._assert_invariants(table, 64)

    def test_growing_past_maximum_size(self):
        table = XuckooHashTable(
            hash_family=HashFamilyFixed(lambda k: 0, lambda k: 0), max_table_size=4
        )
        assert table.insert(1)
        assert table.insert(2)
        with pytest.raises(TableOverflowError):
            table.insert(3)

        # the chain was abandoned half way, so the table refuses any further use
        with pytest.raises(RuntimeError):
            table.lookup(1)
        with pytest.raises(RuntimeError):
            table.lookup(2)
        with pytest.raises(RuntimeError):
            table.insert(4)
        with pytest.raises(RuntimeError):
            len(table)
        with pytest.raises(RuntimeError):
            list(table)

    def test_destroy_releases_every_bucket(self):
        table = XuckooHashTable(hash_family=HashFamilyTabulation(2, seed=4))
        for key in range(500):
            table.insert(key)
        # each table starts with one bucket and every split adds one
        assert table.destroy() == 2 + table.stats.nbuckets
        with pytest.raises(RuntimeError):
            table.insert(1)
        with pytest.raises(RuntimeError):
            table.lookup(1)
        with pytest.raises(RuntimeError):
            len(table)

    def test_rejects_keys_outside_64_bits(self):
        table = stub_table()
        with pytest.raises(ValueError):
            table.insert(-1)
        with pytest.raises(ValueError):
            table.insert(1 << 64)
        with pytest.raises(TypeError):
            table.insert(1.5)
        assert table.insert((1 << 64) - 1)

    def test_rejects_bad_configuration(self):
        with pytest.raises(ValueError):
            XuckooHashTable(hash_family=HashFamilyFixed(lambda k: k))
        with pytest.raises(ValueError):
            stub_table(max_table_size=0)
        with pytest.raises(ValueError):
            stub_table(cycle_threshold=0)

    def test_time_tracking(self, monkeypatch):
        table = stub_table(track_time=False)
        for key in range(100):
            table.insert(key)
            table.lookup(key)
        assert table.stats.time == 0.0

        # every reading of the clock advances it by half a second
        clock = itertools.count(0.0, 0.5)
        monkeypatch.setattr(stats.time, "process_time", lambda: next(clock))
        table = stub_table()
        for key in range(10):
            table.insert(key)
        assert table.stats.time == 5.0
        assert table.lookup(3)
        assert table.stats.time == 5.5
        assert not table.insert(3)
        assert table.stats.time == 6.0

    def test_dump_and_report(self):
        table = stub_table()
        table.insert(5)
        out = table.dump()
        assert out.startswith("--- table ---\n")
        assert out.endswith("--- end table ---\n")
        assert "table 1\n" in out and "table 2\n" in out
        assert "[5]" in out
        assert "[ ]" in out

        summary = table.report()
        assert "current tab 1 size: 1" in summary
        assert "number of keys: 1" in summary
        assert "number of buckets: 0" in summary

    def test_functional_interface(self):
        table = xuckoo_hash_table.create(
            hash_family=HashFamilyFixed(lambda k: k, lambda k: k + 1)
        )
        assert xuckoo_hash_table.insert(table, 5)
        assert not xuckoo_hash_table.insert(table, 5)
        assert xuckoo_hash_table.lookup(table, 5)
        assert not xuckoo_hash_table.lookup(table, 6)
        assert "[5]" in xuckoo_hash_table.dump(table)
        assert "number of keys: 1" in xuckoo_hash_table.report(table)
        assert xuckoo_hash_table.destroy(table) == 2

    def test_main(self, tmp_path, capsys):
        keys = tmp_path / "keys.txt"
        keys.write_text("5 9\n7\n9\n")
        queries = tmp_path / "queries.txt"
        queries.write_text("5\n8\n")

        assert (
            xuckoo_hash_table.main(
                [str(keys), "--lookup", str(queries), "--stats", "--print", "--seed", "0"]
            )
            == 0
        )
        out = capsys.readouterr().out
        assert "5 found" in out
        assert "8 not found" in out
        assert "number of keys: 3" in out
        assert "--- end table ---" in out
