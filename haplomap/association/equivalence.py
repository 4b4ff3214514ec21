"""
Haplotype equivalence classes: intervals grouped by the strain bipartition they induce
"""

from collections import defaultdict
from typing import Dict, Iterable, List

from ..utils.bitsets import canonicalize, to_binary_string
from ..utils.data_types import BasePairInterval, EquivalenceClass, PartitionedInterval


def merge_intervals(intervals: Iterable[BasePairInterval]) -> List[BasePairInterval]:
    """Sort by (chromosome, start_bp) and coalesce identical or overlapping intervals"""
    merged: List[BasePairInterval] = []
    for interval in sorted(intervals):
        if merged and merged[-1].chromosome == interval.chromosome and interval.start_bp < merged[-1].end_bp:
            last = merged[-1]
            end_bp = max(last.end_bp, interval.end_bp)
            merged[-1] = BasePairInterval(last.chromosome, last.start_bp, end_bp - last.start_bp)
        else:
            merged.append(interval)
    return merged


def create_equivalence_classes(partitioned_intervals: Iterable[PartitionedInterval],
                               n_strains: int) -> List[EquivalenceClass]:
    """
    Group partitioned intervals by canonical strain bitset.

    Args:
        partitioned_intervals: Blocks from any number of chromosomes
        n_strains: Size of the strain ordering the bitsets refer to

    Returns:
        One EquivalenceClass per distinct bipartition, ordered by the bitset
        written as a binary string with bit 0 leftmost. Bitsets that do not
        split the strains are discarded.
    """
    grouped: Dict[int, List[BasePairInterval]] = defaultdict(list)
    for partitioned in partitioned_intervals:
        bits = canonicalize(partitioned.strain_bits, n_strains)
        if bits is None:
            continue
        grouped[bits].append(partitioned.interval)

    classes = [
        EquivalenceClass(bits, tuple(merge_intervals(intervals)))
        for bits, intervals in grouped.items()
    ]
    classes.sort(key=lambda c: to_binary_string(c.strain_bits, n_strains))
    return classes
