import numpy as np
import pytest

from conftest import genotypes_from_sdps
from haplomap.association.maxk import (
    CompatibleTest,
    compatible,
    leftmost_compatible_starts,
    maxk_scan,
    scan_chromosome,
)
from haplomap.data.sdp_stream import FORWARD, REVERSE, SdpStream
from haplomap.utils.bitsets import from_binary_string
from haplomap.utils.data_types import IndexedSnpInterval
from haplomap.utils.errors import IoError


def _b(text):
    return from_binary_string(text)


def _pairwise_compatible(sdps, n_strains, start, end):
    window = sdps[start:end + 1]
    return all(compatible(a, b, n_strains) for i, a in enumerate(window) for b in window[i + 1:])


def _brute_force_maximal(sdps, n_strains):
    n = len(sdps)
    found = []
    for start in range(n):
        for end in range(start, n):
            if not _pairwise_compatible(sdps, n_strains, start, end):
                break
            left_blocked = start == 0 or not _pairwise_compatible(sdps, n_strains, start - 1, end)
            right_blocked = end == n - 1 or not _pairwise_compatible(sdps, n_strains, start, end + 1)
            if left_blocked and right_blocked:
                found.append(IndexedSnpInterval(start, end - start + 1))
    return found


def test_four_gamete_rule() -> None:
    assert compatible(_b("0011"), _b("0001"), 4)
    assert not compatible(_b("0011"), _b("0101"), 4)
    # trivial SDPs never conflict
    assert compatible(0, _b("0101"), 4)
    test = CompatibleTest(4)
    assert test(_b("0101"), _b("0011")) is False
    assert test(_b("0011"), _b("0101")) is False


def test_overlapping_maximal_intervals() -> None:
    """0011 and 0101 conflict; 0001 is compatible with both."""
    genotypes = genotypes_from_sdps({1: ["0011", "0001", "0101"]})

    intervals = scan_chromosome(SdpStream(genotypes, 1))

    assert intervals == [IndexedSnpInterval(0, 2), IndexedSnpInterval(1, 2)]


def test_incompatible_neighbours_give_singletons() -> None:
    genotypes = genotypes_from_sdps({1: ["0011", "0101", "0011"]})

    intervals = scan_chromosome(SdpStream(genotypes, 1))

    assert intervals == [IndexedSnpInterval(0, 1), IndexedSnpInterval(1, 1), IndexedSnpInterval(2, 1)]


def test_fully_compatible_chromosome_is_one_interval() -> None:
    genotypes = genotypes_from_sdps({1: ["000111", "000011", "011000", "000111"]})

    assert scan_chromosome(SdpStream(genotypes, 1)) == [IndexedSnpInterval(0, 4)]


def test_leftmost_starts_are_monotone() -> None:
    genotypes = genotypes_from_sdps({1: ["0011", "0001", "0101", "0100", "0011"]})

    starts = leftmost_compatible_starts(SdpStream(genotypes, 1))

    assert starts == [0, 0, 1, 1, 3]


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_intervals_are_maximal_and_compatible(seed) -> None:
    rng = np.random.RandomState(seed)
    n_strains = 6
    sdps = ["".join(rng.choice(["0", "1"], size=n_strains)) for _ in range(40)]
    genotypes = genotypes_from_sdps({1: sdps})
    stream_sdps = list(SdpStream(genotypes, 1))

    intervals = scan_chromosome(SdpStream(genotypes, 1))

    assert intervals == _brute_force_maximal(stream_sdps, n_strains)
    for interval in intervals:
        assert _pairwise_compatible(stream_sdps, n_strains, interval.start_index, interval.end_index)


def test_stream_validation() -> None:
    genotypes = genotypes_from_sdps({1: ["0011", "0001"]})
    forward = SdpStream(genotypes, 1)

    with pytest.raises(ValueError):
        maxk_scan(forward, forward.reopen(direction=FORWARD), forward.reopen(direction=FORWARD))

    reverse_before = SdpStream(genotypes, 1, strain_subset=["A", "B", "C", "D"], direction=REVERSE)
    genotypes[1].calls[0, 0] = 0.5
    shorter = SdpStream(genotypes, 1, direction=FORWARD)
    with pytest.raises(IoError):
        maxk_scan(forward.reopen(), reverse_before, shorter)


def test_partly_consumed_third_stream_ends_early() -> None:
    genotypes = genotypes_from_sdps({1: ["0011", "0001", "0101"]})
    forward = SdpStream(genotypes, 1)
    third = forward.reopen(direction=FORWARD)
    third.next_sdp()

    with pytest.raises(IoError, match="ended early"):
        maxk_scan(forward, forward.reopen(direction=REVERSE), third)


def test_empty_chromosome() -> None:
    genotypes = genotypes_from_sdps({1: ["0011"]})
    genotypes[1].calls[0, 0] = np.nan

    assert scan_chromosome(SdpStream(genotypes, 1)) == []
