import os
import pickle
import stat
import tempfile

import pytest

from haplomap.association.phylogeny import (
    PhylogenyInterval,
    PhylogenyTestResult,
    infer_perfect_phylogeny,
)
from haplomap.association.phylogeny_significance import PhylogenySignificanceTester
from haplomap.utils.bitsets import from_binary_string
from haplomap.utils.cache import _HEADER, CACHE_MAGIC, ResultCache, make_cache_key
from haplomap.utils.data_types import BasePairInterval
from haplomap.utils.errors import CacheCorrupt


class CountingProducer:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


def _results():
    strains = ["A", "B", "C", "D"]
    tree = infer_perfect_phylogeny([from_binary_string("0011"), from_binary_string("0001")], strains)
    tester = PhylogenySignificanceTester({"A": [1.0, 1.1], "B": [1.2], "C": [5.0], "D": [5.4]})
    return tester.test_intervals([
        PhylogenyInterval(tree, BasePairInterval(1, 100, 200)),
        PhylogenyInterval(tree, BasePairInterval(1, 250, 10)),
    ])


def test_key_sorts_strains() -> None:
    assert make_cache_key("hdl", "mouse", ["C", "A", "B"], 2) == ("hdl", "mouse", ("A", "B", "C"), 2)


def test_second_call_reads_back_without_producer(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C", "D"], 1)
    producer = CountingProducer(_results())

    first = cache.get_or_compute(key, producer)
    second = cache.get_or_compute(key, producer)
    third = cache.get_or_compute(key, producer)

    assert producer.calls == 1
    assert second == first
    assert pickle.dumps(second) == pickle.dumps(third)
    assert cache.contains(key)
    path = cache.path_for(key)
    assert path.name.startswith("ham-cache-") and path.suffix == ".bahm"
    assert path.read_bytes()[:4] == CACHE_MAGIC


def test_round_trip_preserves_trees_and_pvalues(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C", "D"], 1)
    original = _results()
    cache.get_or_compute(key, lambda: original)

    restored = cache.get_or_compute(key, lambda: pytest.fail("producer called twice"))

    assert restored == original
    for before, after in zip(original, restored):
        assert isinstance(after, PhylogenyTestResult)
        assert after.p_value == before.p_value
        assert after.phylogeny_interval.tree.to_newick() == before.phylogeny_interval.tree.to_newick()
        assert [e.value for e in after.phylogeny_interval.tree.all_edges()] == \
            [e.value for e in before.phylogeny_interval.tree.all_edges()]


def test_distinct_keys_get_distinct_files(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key1 = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)
    key2 = make_cache_key("hdl", "mouse", ["A", "B", "C"], 2)

    assert cache.get_or_compute(key1, lambda: [1]) == [1]
    assert cache.get_or_compute(key2, lambda: [2]) == [2]
    assert cache.path_for(key1) != cache.path_for(key2)


def test_corrupt_entry_is_not_regenerated(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)
    cache.get_or_compute(key, lambda: [0.5])
    cache.path_for(key).write_bytes(b"junk")
    producer = CountingProducer([0.5])

    with pytest.raises(CacheCorrupt):
        cache.get_or_compute(key, producer)
    assert producer.calls == 0


def test_foreign_key_digest_is_corrupt(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)
    other = make_cache_key("ldl", "mouse", ["A", "B", "C"], 1)
    cache.get_or_compute(other, lambda: [1.0])
    os.replace(cache.path_for(other), cache.path_for(key))

    with pytest.raises(CacheCorrupt, match="different key"):
        cache.get_or_compute(key, lambda: [2.0])


def test_failing_producer_leaves_no_entry(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)

    def explode():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get_or_compute(key, explode)
    assert not cache.contains(key)
    assert cache.get_or_compute(key, lambda: [3.0]) == [3.0]


def test_clear_removes_created_files(tmp_path) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)
    cache.get_or_compute(key, lambda: [1.0])

    cache.clear()

    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("payload", [b"\x80\xff", b"\x80\x04K", b"\x80\x04\x95\x03\x00\x00\x00\x00\x00\x00\x00h\x07."])
def test_damaged_payload_behind_valid_header_is_corrupt(tmp_path, payload) -> None:
    cache = ResultCache(tmp_path, delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)
    cache.get_or_compute(key, lambda: [0.5, 0.25])
    path = cache.path_for(key)
    path.write_bytes(path.read_bytes()[:_HEADER.size] + payload)
    producer = CountingProducer([0.5])

    with pytest.raises(CacheCorrupt, match="could not be decoded"):
        cache.get_or_compute(key, producer)
    assert producer.calls == 0


def test_default_directory_is_private_temp_subdirectory(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    cache = ResultCache(delete_on_exit=False)
    key = make_cache_key("hdl", "mouse", ["A", "B", "C"], 1)

    assert cache.cache_dir.parent == tmp_path
    assert cache.cache_dir.name.startswith("haplomap-cache-")
    if os.name == "posix":
        assert stat.S_IMODE(cache.cache_dir.stat().st_mode) == 0o700
    assert cache.get_or_compute(key, lambda: [1.0]) == [1.0]
    assert cache.path_for(key).parent == cache.cache_dir

    cache.remove_directory()

    assert not cache.cache_dir.exists()


def test_explicit_directory_survives_remove_directory(tmp_path) -> None:
    cache = ResultCache(tmp_path / "cache", delete_on_exit=False)
    cache.get_or_compute(make_cache_key("hdl", "mouse", ["A", "B", "C"], 1), lambda: [1.0])

    cache.remove_directory()

    assert (tmp_path / "cache").is_dir()
    assert list((tmp_path / "cache").iterdir()) == []
