#!/usr/bin/env python
"""
Strain genotype CSV loader: builds per-chromosome allele call matrices.

Format highlights:
- Comma-delimited text, one header row, one SNP per subsequent row
- Metadata columns (by header name, case-insensitive): snpId (optional),
  chromosome, bpPosition, aAllele, bAllele
- Strain columns: everything from ``first_genotype_column`` to
  ``last_genotype_column`` (inclusive, 0-based). By default all columns
  after the last metadata column.
- Calls: A-allele -> 1.0, B-allele -> 0.0, H/HH -> 0.5,
  empty/N/NN/- or anything unrecognised -> missing (NaN)

Compressed files (.gz) are supported by extension.
"""
from __future__ import annotations

import gzip
import io
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..utils.errors import FormatError, IoError

A_CALL = 1.0
B_CALL = 0.0
HET_CALL = 0.5
MISSING = np.nan

_METADATA_ALIASES = {
    'snp_id': ('snpid', 'snp', 'snp_id', 'rs#', 'id'),
    'chromosome': ('chromosome', 'chr', 'chrom'),
    'position': ('bpposition', 'position', 'pos', 'bp', 'build37bpposition'),
    'a_allele': ('aallele', 'a_allele', 'allelea'),
    'b_allele': ('ballele', 'b_allele', 'alleleb'),
}

_CHROMOSOME_NAMES = {'X': 20, 'Y': 21, 'M': 22, 'MT': 22}


class ChromosomeGenotypes:
    """Allele calls for one chromosome (SNPs x strains, float64)

    Attributes:
        chromosome: Chromosome number
        positions: Strictly increasing base-pair positions, one per SNP
        calls: Matrix of coded calls aligned with ``positions``
        snp_ids: SNP identifiers (may be empty strings)
    """

    def __init__(self, chromosome: int, positions: np.ndarray, calls: np.ndarray,
                 snp_ids: Optional[Sequence[str]] = None):
        positions = np.asarray(positions, dtype=np.int64)
        calls = np.asarray(calls, dtype=np.float64)
        if calls.ndim != 2 or calls.shape[0] != positions.shape[0]:
            raise ValueError("Call matrix must be (n_snps x n_strains) and aligned with positions")
        if positions.size > 1 and np.any(np.diff(positions) <= 0):
            raise ValueError(f"SNP positions on chromosome {chromosome} must be strictly increasing")
        self.chromosome = int(chromosome)
        self.positions = positions
        self.calls = calls
        self.snp_ids = list(snp_ids) if snp_ids is not None else [''] * positions.size

    @property
    def n_snps(self) -> int:
        return int(self.positions.size)

    def homozygous_rows(self, columns: Sequence[int]) -> np.ndarray:
        """Indices of SNPs where every selected strain has a homozygous call"""
        if self.n_snps == 0:
            return np.zeros(0, dtype=np.int64)
        sub = self.calls[:, list(columns)]
        usable = np.all((sub == A_CALL) | (sub == B_CALL), axis=1)
        return np.flatnonzero(usable)


class StrainGenotypes:
    """Genotypes for a strain panel across chromosomes"""

    def __init__(self, strains: Sequence[str], chromosomes: Dict[int, ChromosomeGenotypes]):
        self.strains = list(strains)
        if len(set(self.strains)) != len(self.strains):
            raise ValueError("Strain names in genotype data must be unique")
        self._columns = {strain: i for i, strain in enumerate(self.strains)}
        self.chromosomes = dict(sorted(chromosomes.items()))

    @property
    def n_strains(self) -> int:
        return len(self.strains)

    @property
    def chromosome_numbers(self) -> List[int]:
        return list(self.chromosomes.keys())

    def columns_for(self, strains: Sequence[str]) -> List[int]:
        """Column indices of ``strains`` in the call matrices"""
        missing = [s for s in strains if s not in self._columns]
        if missing:
            raise ValueError(f"Strains not present in genotype data: {', '.join(missing)}")
        return [self._columns[s] for s in strains]

    def __getitem__(self, chromosome: int) -> ChromosomeGenotypes:
        return self.chromosomes[chromosome]


def _open_text(path: Union[str, Path]):
    p = str(path)
    if p.lower().endswith('.gz'):
        return io.TextIOWrapper(gzip.open(p, 'rb'))
    return open(p, 'r')


def parse_chromosome(value: str, row: Optional[int] = None) -> int:
    text = value.strip()
    if text.lower().startswith('chr'):
        text = text[3:]
    if text.upper() in _CHROMOSOME_NAMES:
        return _CHROMOSOME_NAMES[text.upper()]
    try:
        return int(text)
    except ValueError:
        raise FormatError(f"Unrecognised chromosome {value!r}", row=row, column='chromosome') from None


def _code_cell(cell: str, a_allele: str, b_allele: str) -> float:
    g = cell.strip().upper()
    if not g or g in ('N', 'NN', '-'):
        return MISSING
    if g in ('H', 'HH'):
        return HET_CALL
    # Doubled homozygous calls (e.g. "AA") are accepted alongside single codes
    if len(g) == 2 and g[0] == g[1]:
        g = g[0]
    if g == a_allele:
        return A_CALL
    if g == b_allele:
        return B_CALL
    return MISSING


def _locate_metadata(header: List[str]) -> Dict[str, int]:
    lowered = [h.strip().lower() for h in header]
    located = {}
    for key, aliases in _METADATA_ALIASES.items():
        for alias in aliases:
            if alias in lowered:
                located[key] = lowered.index(alias)
                break
    for required in ('chromosome', 'position', 'a_allele', 'b_allele'):
        if required not in located:
            raise FormatError(
                f"Genotype header is missing the {required} column",
                row=1,
                column=_METADATA_ALIASES[required][0],
            )
    return located


def load_genotype_csv(
    csv_path: Union[str, Path],
    first_genotype_column: Optional[int] = None,
    last_genotype_column: Optional[int] = None,
    chromosomes: Optional[Sequence[int]] = None,
    verbose: bool = False,
) -> StrainGenotypes:
    """
    Load a strain genotype CSV file into per-chromosome call matrices.

    Args:
        csv_path: Path to the genotype CSV
        first_genotype_column: 0-based index of the first strain column
        last_genotype_column: 0-based index of the last strain column (inclusive)
        chromosomes: Optional subset of chromosomes to keep
        verbose: Print a loading summary

    Returns:
        StrainGenotypes with one ChromosomeGenotypes per chromosome

    Raises:
        FormatError: Malformed header or row
        IoError: The file cannot be read
    """
    wanted = set(chromosomes) if chromosomes is not None else None
    per_chromosome: Dict[int, Tuple[List[int], List[np.ndarray], List[str]]] = {}

    try:
        with _open_text(csv_path) as fh:
            header_line = fh.readline()
            if not header_line:
                raise FormatError('Empty genotype file', row=1)
            header = [c.strip() for c in header_line.rstrip('\r\n').split(',')]
            meta = _locate_metadata(header)

            first = first_genotype_column if first_genotype_column is not None else max(meta.values()) + 1
            last = last_genotype_column if last_genotype_column is not None else len(header) - 1
            if first < 0 or last >= len(header) or first > last:
                raise FormatError(
                    f"Genotype columns [{first}, {last}] are outside the {len(header)}-column header",
                    row=1,
                )
            strains = header[first:last + 1]
            n_columns = len(header)

            for row_number, line in enumerate(fh, start=2):
                if not line.strip():
                    continue
                parts = line.rstrip('\r\n').split(',')
                if len(parts) != n_columns:
                    raise FormatError(
                        f"Expected {n_columns} columns but found {len(parts)}", row=row_number
                    )
                chrom = parse_chromosome(parts[meta['chromosome']], row=row_number)
                if wanted is not None and chrom not in wanted:
                    continue
                try:
                    pos = int(float(parts[meta['position']]))
                except ValueError:
                    raise FormatError(
                        f"Invalid base-pair position {parts[meta['position']]!r}",
                        row=row_number,
                        column=header[meta['position']],
                    ) from None

                a_allele = parts[meta['a_allele']].strip().upper()
                b_allele = parts[meta['b_allele']].strip().upper()
                calls = np.array(
                    [_code_cell(cell, a_allele, b_allele) for cell in parts[first:last + 1]],
                    dtype=np.float64,
                )
                snp_id = parts[meta['snp_id']].strip() if 'snp_id' in meta else ''

                positions, rows, ids = per_chromosome.setdefault(chrom, ([], [], []))
                positions.append(pos)
                rows.append(calls)
                ids.append(snp_id)
    except OSError as exc:
        raise IoError(f"Failed to read genotype file {csv_path}: {exc}") from exc

    chromosome_data = {}
    for chrom, (positions, rows, ids) in per_chromosome.items():
        order = np.argsort(np.asarray(positions, dtype=np.int64), kind='stable')
        pos_arr = np.asarray(positions, dtype=np.int64)[order]
        if pos_arr.size > 1 and np.any(np.diff(pos_arr) == 0):
            dup = int(pos_arr[np.flatnonzero(np.diff(pos_arr) == 0)[0]])
            raise FormatError(f"Duplicate SNP position {dup} on chromosome {chrom}")
        chromosome_data[chrom] = ChromosomeGenotypes(
            chrom,
            pos_arr,
            np.vstack(rows)[order] if rows else np.zeros((0, len(strains))),
            [ids[i] for i in order],
        )

    genotypes = StrainGenotypes(strains, chromosome_data)
    if verbose:
        n_snps = sum(c.n_snps for c in chromosome_data.values())
        print(f"Loaded {n_snps} SNPs on {len(chromosome_data)} chromosomes for {len(strains)} strains")
    return genotypes
