"""
Core data structures for haplotype association mapping
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .bitsets import bit_count, to_binary_string


HAPLOTYPE_COLUMNS = [
    'pvalue', 'chromosome', 'block_start_bp', 'block_extent_bp', 'block_end_bp',
    'block_middle_bp', 'equiv_class_extent_bp', 'strains',
]

MULTI_GROUP_COLUMNS = [
    'pvalue', 'chromosome', 'block_start_bp', 'block_extent_bp', 'block_end_bp', 'groups',
]

MAX_GROUP_ID = 32767


@dataclass(frozen=True, order=True)
class BasePairInterval:
    """Closed-open genomic interval ``[start_bp, start_bp + extent_bp)``.

    Ordering follows ``(chromosome, start_bp, extent_bp)``.
    """

    chromosome: int
    start_bp: int
    extent_bp: int

    def __post_init__(self):
        if self.extent_bp <= 0:
            raise ValueError(f"Interval extent must be positive, got {self.extent_bp}")

    @property
    def end_bp(self) -> int:
        return self.start_bp + self.extent_bp

    @property
    def middle_bp(self) -> float:
        return self.start_bp + self.extent_bp / 2.0

    def overlap_bp(self, other: "BasePairInterval") -> int:
        """Number of base pairs shared with ``other`` (0 when disjoint)"""
        if self.chromosome != other.chromosome:
            return 0
        return max(0, min(self.end_bp, other.end_bp) - max(self.start_bp, other.start_bp))

    def contains(self, other: "BasePairInterval") -> bool:
        return (
            self.chromosome == other.chromosome
            and self.start_bp <= other.start_bp
            and other.end_bp <= self.end_bp
        )

    def touches_or_overlaps(self, other: "BasePairInterval") -> bool:
        if self.chromosome != other.chromosome:
            return False
        return other.start_bp <= self.end_bp and self.start_bp <= other.end_bp


@dataclass(frozen=True, order=True)
class IndexedSnpInterval:
    """Interval of SNP indices ``start_index .. start_index + extent_indices - 1``"""

    start_index: int
    extent_indices: int

    def __post_init__(self):
        if self.extent_indices <= 0:
            raise ValueError(f"Indexed interval extent must be positive, got {self.extent_indices}")

    @property
    def end_index(self) -> int:
        """Inclusive index of the last SNP"""
        return self.start_index + self.extent_indices - 1

    def contains(self, other: "IndexedSnpInterval") -> bool:
        return self.start_index <= other.start_index and other.end_index <= self.end_index

    def to_base_pair_interval(self, chromosome: int, positions: Sequence[int]) -> BasePairInterval:
        """Project through the SNP position array of the same strain subset"""
        start_bp = int(positions[self.start_index])
        end_bp = int(positions[self.end_index])
        return BasePairInterval(chromosome, start_bp, end_bp - start_bp + 1)


@dataclass(frozen=True)
class PartitionedInterval:
    """Base-pair interval plus the bitset of the strains on the inside"""

    interval: BasePairInterval
    strain_bits: int


@dataclass(frozen=True)
class MultiPartitionedInterval:
    """Base-pair interval plus one group id per strain"""

    interval: BasePairInterval
    group_ids: Tuple[int, ...]

    def __post_init__(self):
        for group_id in self.group_ids:
            if group_id < 0 or group_id > MAX_GROUP_ID:
                raise ValueError(f"Group ids must lie in [0, {MAX_GROUP_ID}], got {group_id}")

    @property
    def n_groups(self) -> int:
        return len(set(self.group_ids))


@dataclass(frozen=True)
class EquivalenceClass:
    """Intervals sharing one canonical strain bipartition.

    Intervals are sorted by ``(chromosome, start_bp)`` and pairwise disjoint
    or touching.
    """

    strain_bits: int
    intervals: Tuple[BasePairInterval, ...] = field(default_factory=tuple)

    @property
    def cumulative_extent_bp(self) -> int:
        return sum(interval.extent_bp for interval in self.intervals)

    def strain_count(self) -> int:
        return bit_count(self.strain_bits)


@dataclass(frozen=True)
class HaplotypeTestResult:
    equivalence_class: EquivalenceClass
    p_value: float


@dataclass(frozen=True)
class MultiGroupTestResult:
    partitioned_interval: MultiPartitionedInterval
    p_value: float

    def __str__(self) -> str:
        interval = self.partitioned_interval.interval
        return (
            f"p-value={self.p_value}, interval=chr{interval.chromosome}:"
            f"{interval.start_bp}-{interval.end_bp}"
        )


class HaplotypeAssociationResults:
    """Equivalence-class test results for one test and one strain ordering

    Rows are emitted one per (equivalence class x constituent interval) in
    class order.
    """

    def __init__(self, results: Sequence[HaplotypeTestResult], strains: Sequence[str]):
        self.results = list(results)
        self.strains = list(strains)

    @property
    def n_classes(self) -> int:
        return len(self.results)

    @property
    def pvalues(self) -> np.ndarray:
        return np.array([r.p_value for r in self.results], dtype=np.float64)

    def to_dataframe(self) -> pd.DataFrame:
        n_strains = len(self.strains)
        rows = []
        for result in self.results:
            eq_class = result.equivalence_class
            strain_string = to_binary_string(eq_class.strain_bits, n_strains)
            cumulative = eq_class.cumulative_extent_bp
            for interval in eq_class.intervals:
                rows.append({
                    'pvalue': result.p_value,
                    'chromosome': interval.chromosome,
                    'block_start_bp': interval.start_bp,
                    'block_extent_bp': interval.extent_bp,
                    'block_end_bp': interval.end_bp,
                    'block_middle_bp': interval.middle_bp,
                    'equiv_class_extent_bp': cumulative,
                    'strains': strain_string,
                })
        return pd.DataFrame(rows, columns=HAPLOTYPE_COLUMNS)


class MultiGroupAssociationResults:
    """ANOVA results for multi-group block partitions"""

    def __init__(self, results: Sequence[MultiGroupTestResult], strains: Sequence[str]):
        self.results = list(results)
        self.strains = list(strains)

    @property
    def pvalues(self) -> np.ndarray:
        return np.array([r.p_value for r in self.results], dtype=np.float64)

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for result in self.results:
            interval = result.partitioned_interval.interval
            rows.append({
                'pvalue': result.p_value,
                'chromosome': interval.chromosome,
                'block_start_bp': interval.start_bp,
                'block_extent_bp': interval.extent_bp,
                'block_end_bp': interval.end_bp,
                'groups': ''.join(_group_symbol(g) for g in result.partitioned_interval.group_ids),
            })
        return pd.DataFrame(rows, columns=MULTI_GROUP_COLUMNS)


def _group_symbol(group_id: int) -> str:
    if group_id < 10:
        return str(group_id)
    return f"[{group_id}]"


def sort_partitioned_intervals(intervals: Sequence[PartitionedInterval],
                               n_strains: Optional[int] = None) -> List[PartitionedInterval]:
    """Sort by ``(chromosome, start_bp)`` with the strain bitset as tie-break"""
    def key(p: PartitionedInterval):
        bits = to_binary_string(p.strain_bits, n_strains) if n_strains is not None else p.strain_bits
        return (p.interval.chromosome, p.interval.start_bp, p.interval.extent_bp, bits)
    return sorted(intervals, key=key)
