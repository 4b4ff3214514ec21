"""
Haplotype block estimation by running partition refinement.

While scanning SDPs forward, every strain group that has shared identical
calls since some earlier SNP is tracked together with the earliest SNP at
which it started to do so. Each SNP splits the tracked groups along its 0/1
calls; a group that is split ends its block at the previous SNP. Groups are
kept as a laminar family, so when the same strain group is reachable from
several starts the earliest start wins and the longest span is reported.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from ..data.sdp_stream import FORWARD, SdpStream
from ..utils.bitsets import bit_count, full_mask, to_binary_string
from ..utils.data_types import BasePairInterval, PartitionedInterval, MultiPartitionedInterval


def _validate(min_snp_extent: int, min_strain_group_size: int):
    if min_snp_extent < 1:
        raise ValueError(f"min_snp_extent must be >= 1, got {min_snp_extent}")
    if min_strain_group_size < 2:
        raise ValueError(f"min_strain_group_size must be >= 2, got {min_strain_group_size}")


def estimate_blocks(
    stream: SdpStream,
    positions: Sequence[int],
    min_snp_extent: int = 1,
    min_strain_group_size: int = 2,
) -> List[PartitionedInterval]:
    """
    Estimate haplotype blocks for one chromosome.

    Args:
        stream: Forward SDP stream
        positions: Base-pair positions paired with the stream
        min_snp_extent: Minimum number of SNPs a block must span
        min_strain_group_size: Minimum number of strains sharing the block haplotype

    Returns:
        PartitionedInterval list sorted by (start_bp, extent_bp, strain bitset),
        the bitset marking the strains that share identical calls across the block.
    """
    _validate(min_snp_extent, min_strain_group_size)
    if stream.direction != FORWARD:
        raise ValueError("Block estimation requires a forward SDP stream")
    if stream.snp_count() != len(positions):
        raise ValueError("SDP stream and position array disagree on SNP count")

    n_strains = stream.strain_count
    mask = full_mask(n_strains)
    chromosome = stream.chromosome
    blocks: List[PartitionedInterval] = []

    def emit(group: int, start: int, end: int):
        if group == mask or end - start + 1 < min_snp_extent:
            return
        start_bp = int(positions[start])
        blocks.append(PartitionedInterval(
            BasePairInterval(chromosome, start_bp, int(positions[end]) - start_bp + 1),
            group,
        ))

    groups: Dict[int, int] = {}
    index = -1
    for index, sdp in enumerate(stream):
        refined: Dict[int, int] = {}

        def keep(group: int, start: int):
            if bit_count(group) < min_strain_group_size:
                return
            previous = refined.get(group)
            if previous is None or start < previous:
                refined[group] = start

        for group, start in groups.items():
            inside = group & sdp
            outside = group & ~sdp & mask
            if inside and outside:
                emit(group, start, index - 1)
            keep(inside, start)
            keep(outside, start)
        keep(sdp & mask, index)
        keep(~sdp & mask, index)
        groups = refined

    for group, start in groups.items():
        emit(group, start, index)

    return sorted(
        blocks,
        key=lambda b: (b.interval.start_bp, b.interval.extent_bp, to_binary_string(b.strain_bits, n_strains)),
    )


def estimate_multi_group_blocks(
    stream: SdpStream,
    positions: Sequence[int],
    min_snp_extent: int = 1,
    min_strain_group_size: int = 2,
) -> List[MultiPartitionedInterval]:
    """
    Group strains into haplotypes over consecutive runs of SNPs.

    A run is cut whenever fewer than two haplotype groups of at least
    ``min_strain_group_size`` strains would survive the next SNP. Each run of
    at least ``min_snp_extent`` SNPs yields one multi-partition assigning
    every strain the id of its haplotype (ids numbered in order of first
    strain).
    """
    _validate(min_snp_extent, min_strain_group_size)
    if stream.snp_count() != len(positions):
        raise ValueError("SDP stream and position array disagree on SNP count")

    n_strains = stream.strain_count
    chromosome = stream.chromosome
    results: List[MultiPartitionedInterval] = []

    def large_groups(labels: np.ndarray) -> int:
        _, counts = np.unique(labels, return_counts=True)
        return int(np.count_nonzero(counts >= min_strain_group_size))

    def emit(labels: Optional[np.ndarray], start: int, end: int):
        if labels is None or end - start + 1 < min_snp_extent or large_groups(labels) < 2:
            return
        _, first_seen = np.unique(labels, return_index=True)
        relabel = {labels[i]: rank for rank, i in enumerate(sorted(first_seen))}
        start_bp = int(positions[start])
        results.append(MultiPartitionedInterval(
            BasePairInterval(chromosome, start_bp, int(positions[end]) - start_bp + 1),
            tuple(int(relabel[label]) for label in labels),
        ))

    labels: Optional[np.ndarray] = None
    start = 0
    index = -1
    for index, sdp in enumerate(stream):
        calls = np.array([sdp >> i & 1 for i in range(n_strains)], dtype=np.int64)
        if labels is None:
            labels, start = calls, index
            continue
        candidate = np.unique(np.column_stack([labels, calls]), axis=0, return_inverse=True)[1].ravel()
        if large_groups(candidate) >= 2:
            labels = candidate
        else:
            emit(labels, start, index - 1)
            labels, start = calls, index
    emit(labels, start, index)
    return results
