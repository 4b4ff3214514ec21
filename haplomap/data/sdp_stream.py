"""
Strain distribution pattern (SDP) streams over one chromosome.

A stream yields one bitset per usable SNP, projected onto a sorted strain
subset: bit ``i`` is the call of the ``i``-th strain of the subset, with 1
marking the minor allele within that subset. A SNP is usable for a subset
only when every strain in the subset has a homozygous call; the paired
position stream applies the same filter, so both always agree on SNP count.

Streams are single-cursor and single-pass. Use ``reopen`` for another pass.
"""

from typing import Iterator, List, Optional, Sequence

import numpy as np

from .load_genotype_csv import A_CALL, ChromosomeGenotypes, StrainGenotypes
from ..utils.bitsets import pack_rows
from ..utils.errors import IoError

FORWARD = 'forward'
REVERSE = 'reverse'
DIRECTIONS = (FORWARD, REVERSE)


def _check_direction(direction: str) -> str:
    if direction not in DIRECTIONS:
        raise ValueError(f"Direction must be one of {DIRECTIONS}, got {direction!r}")
    return direction


class SdpStream:
    """Forward or reverse iteration of SDP bitsets for one chromosome"""

    def __init__(self, genotypes: StrainGenotypes, chromosome: int,
                 strain_subset: Optional[Sequence[str]] = None,
                 direction: str = FORWARD):
        self._genotypes = genotypes
        self.chromosome = int(chromosome)
        self.direction = _check_direction(direction)
        subset = genotypes.strains if strain_subset is None else strain_subset
        self.strains: List[str] = sorted(set(subset))
        try:
            self._chromosome_data: ChromosomeGenotypes = genotypes[self.chromosome]
        except KeyError:
            raise IoError(f"Chromosome {chromosome} is not present in the genotype data") from None
        self._columns = genotypes.columns_for(self.strains)
        rows = self._chromosome_data.homozygous_rows(self._columns)
        self._rows = rows[::-1] if direction == REVERSE else rows
        self._cursor = 0
        self._closed = False

    @property
    def strain_count(self) -> int:
        return len(self.strains)

    def snp_count(self) -> int:
        return int(self._rows.size)

    def next_sdp(self) -> Optional[int]:
        """Return the next SDP bitset, or ``None`` at the end of the stream"""
        if self._closed:
            raise IoError("SDP stream has been closed")
        if self._cursor >= self._rows.size:
            return None
        row = self._rows[self._cursor]
        self._cursor += 1
        calls = self._chromosome_data.calls[row, self._columns] == A_CALL
        if 2 * int(np.count_nonzero(calls)) > calls.size:
            calls = ~calls
        return pack_rows(calls[np.newaxis, :])[0]

    def reopen(self, direction: Optional[str] = None,
               strain_subset: Optional[Sequence[str]] = None) -> "SdpStream":
        """Fresh stream over the same chromosome"""
        return SdpStream(
            self._genotypes,
            self.chromosome,
            self.strains if strain_subset is None else strain_subset,
            self.direction if direction is None else direction,
        )

    def close(self):
        self._closed = True

    def __iter__(self) -> Iterator[int]:
        while True:
            sdp = self.next_sdp()
            if sdp is None:
                return
            yield sdp


class SnpPositionStream:
    """Base-pair positions paired with an SDP stream of the same strain subset"""

    def __init__(self, genotypes: StrainGenotypes, chromosome: int,
                 strain_subset: Optional[Sequence[str]] = None,
                 direction: str = FORWARD):
        self.chromosome = int(chromosome)
        self.direction = _check_direction(direction)
        subset = genotypes.strains if strain_subset is None else strain_subset
        try:
            chromosome_data = genotypes[self.chromosome]
        except KeyError:
            raise IoError(f"Chromosome {chromosome} is not present in the genotype data") from None
        rows = chromosome_data.homozygous_rows(genotypes.columns_for(sorted(set(subset))))
        positions = chromosome_data.positions[rows]
        self._positions = positions[::-1] if direction == REVERSE else positions
        self._cursor = 0

    def snp_count(self) -> int:
        return int(self._positions.size)

    def next_position(self) -> Optional[int]:
        if self._cursor >= self._positions.size:
            return None
        position = int(self._positions[self._cursor])
        self._cursor += 1
        return position

    def to_array(self) -> np.ndarray:
        """Remaining positions as an array (consumes the stream)"""
        remaining = self._positions[self._cursor:].copy()
        self._cursor = self._positions.size
        return remaining

    def __iter__(self) -> Iterator[int]:
        while True:
            position = self.next_position()
            if position is None:
                return
            yield position
