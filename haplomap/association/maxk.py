"""
MAX-K scan: maximal SNP intervals that admit a perfect phylogeny.

Two SDPs are compatible when the four gametes (0,0), (0,1), (1,0) and (1,1)
do not all occur among the strains. An interval admits a perfect phylogeny
exactly when its SDPs are pairwise compatible, so the scan tracks, for every
SNP ``r``, the smallest ``l`` such that ``[l, r]`` is pairwise compatible.
Because that left bound never moves backwards, only the SDPs of the current
window are held in memory.
"""

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from ..data.sdp_stream import FORWARD, REVERSE, SdpStream
from ..utils.bitsets import full_mask
from ..utils.data_types import IndexedSnpInterval
from ..utils.errors import IoError


def compatible(sdp1: int, sdp2: int, n_strains: int) -> bool:
    """Four-gamete test for two SDPs over ``n_strains`` strains"""
    mask = full_mask(n_strains)
    not1 = ~sdp1 & mask
    not2 = ~sdp2 & mask
    return not (sdp1 & sdp2 and sdp1 & not2 and not1 & sdp2 and not1 & not2)


def is_trivial(sdp: int, n_strains: int) -> bool:
    """All-0 and all-1 SDPs are compatible with everything"""
    return sdp == 0 or sdp == full_mask(n_strains)


class CompatibleTest:
    """Memoising four-gamete test keyed on unordered SDP pairs"""

    def __init__(self, n_strains: int):
        self.n_strains = n_strains
        self._cache: Dict[Tuple[int, int], bool] = {}

    def __call__(self, sdp1: int, sdp2: int) -> bool:
        if sdp1 == sdp2:
            return True
        key = (sdp1, sdp2) if sdp1 < sdp2 else (sdp2, sdp1)
        result = self._cache.get(key)
        if result is None:
            result = compatible(sdp1, sdp2, self.n_strains)
            self._cache[key] = result
        return result


def leftmost_compatible_starts(stream: SdpStream, test: Optional[CompatibleTest] = None) -> List[int]:
    """For each SNP ``k`` in stream order, the smallest ``j`` with ``[j, k]`` pairwise compatible

    Indices are in the stream's own order, so on a reverse stream they count
    from the last SNP.
    """
    n_strains = stream.strain_count
    test = test or CompatibleTest(n_strains)
    starts: List[int] = []
    window: Deque[Tuple[int, int]] = deque()
    left = 0
    index = 0
    for sdp in stream:
        if not is_trivial(sdp, n_strains):
            # The newest incompatible SNP in the window bounds the new start
            for j, other in reversed(window):
                if not test(sdp, other):
                    left = j + 1
                    break
            while window and window[0][0] < left:
                window.popleft()
            window.append((index, sdp))
        starts.append(left)
        index += 1
    return starts


def maxk_scan(forward: SdpStream, reverse: SdpStream, forward_again: SdpStream) -> List[IndexedSnpInterval]:
    """
    Compute the maximal compatible intervals of one chromosome.

    Args:
        forward: Forward stream; gives the leftmost start for every end
        reverse: Reverse stream; gives the rightmost end for every start
        forward_again: Forward stream consumed once more while emitting; it
            only confirms that the chromosome still yields every SNP, its
            SDPs are not re-tested

    Returns:
        Sorted, non-nested list of IndexedSnpInterval. Every interval is
        pairwise compatible and cannot be extended on either side.

    Raises:
        ValueError: If the streams are not in the expected directions
        IoError: If the streams disagree on the number of SNPs, or
            ``forward_again`` runs out before the last SNP
    """
    if forward.direction != FORWARD or forward_again.direction != FORWARD or reverse.direction != REVERSE:
        raise ValueError("maxk_scan expects (forward, reverse, forward) streams")
    n_snps = forward.snp_count()
    if reverse.snp_count() != n_snps or forward_again.snp_count() != n_snps:
        raise IoError("SDP streams disagree on SNP count")
    if n_snps == 0:
        return []

    test = CompatibleTest(forward.strain_count)
    left_starts = leftmost_compatible_starts(forward, test)
    reverse_starts = leftmost_compatible_starts(reverse, test)
    # Map the reverse scan back to forward coordinates: rightmost end per start
    right_ends = [n_snps - 1 - reverse_starts[n_snps - 1 - start] for start in range(n_snps)]

    intervals: List[IndexedSnpInterval] = []
    for end in range(n_snps):
        if forward_again.next_sdp() is None:
            raise IoError(f"SDP stream ended early at SNP {end}")
        start = left_starts[end]
        if right_ends[start] == end:
            intervals.append(IndexedSnpInterval(start, end - start + 1))
    return intervals


def scan_chromosome(stream: SdpStream) -> List[IndexedSnpInterval]:
    """Convenience wrapper opening the three streams from one template stream"""
    return maxk_scan(
        stream.reopen(direction=FORWARD),
        stream.reopen(direction=REVERSE),
        stream.reopen(direction=FORWARD),
    )
