"""Shared builders for small strain panels."""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from haplomap.data.load_genotype_csv import ChromosomeGenotypes, StrainGenotypes


def genotypes_from_sdps(sdps_by_chromosome: Dict[int, Sequence[str]],
                        strains: Optional[Sequence[str]] = None,
                        spacing: int = 100) -> StrainGenotypes:
    """Build genotypes from SDP strings ('1' = A allele, bit 0 leftmost)"""
    n_strains = len(next(iter(sdps_by_chromosome.values()))[0])
    if strains is None:
        strains = [chr(ord('A') + i) for i in range(n_strains)]
    chromosomes = {}
    for chromosome, sdps in sdps_by_chromosome.items():
        calls = np.array([[float(c) for c in sdp] for sdp in sdps], dtype=np.float64)
        positions = np.arange(1, len(sdps) + 1, dtype=np.int64) * spacing
        chromosomes[chromosome] = ChromosomeGenotypes(chromosome, positions, calls)
    return StrainGenotypes(strains, chromosomes)


def write_genotype_csv(path: Path, strains: Sequence[str],
                       sdps_by_chromosome: Dict[int, Sequence[str]], spacing: int = 100) -> Path:
    lines = [','.join(['snpId', 'chromosome', 'bpPosition', 'aAllele', 'bAllele'] + list(strains))]
    for chromosome, sdps in sdps_by_chromosome.items():
        for i, sdp in enumerate(sdps):
            calls = ['A' if c == '1' else 'G' for c in sdp]
            lines.append(','.join(
                [f"rs{chromosome}_{i}", str(chromosome), str((i + 1) * spacing), 'A', 'G'] + calls
            ))
    path.write_text('\n'.join(lines) + '\n')
    return path


def write_phenotype_tsv(path: Path, measurements: Dict[str, List[float]],
                        varname: str = 'HDL', sex: str = 'f') -> Path:
    lines = ['# synthetic phenotype', 'strain\tsex\tvarname\tvalue']
    for strain, values in measurements.items():
        for value in values:
            lines.append(f"{strain}\t{sex}\t{varname}\t{value}")
    path.write_text('\n'.join(lines) + '\n')
    return path


@pytest.fixture
def six_strain_panel():
    """Six strains, two chromosomes, one strongly associated bipartition"""
    strains = ['S1', 'S2', 'S3', 'S4', 'S5', 'S6']
    sdps = {
        1: ['000111', '000111', '000011', '011000'],
        2: ['000111', '100100'],
    }
    phenotypes = {
        'S1': [1.0, 1.2],
        'S2': [0.9],
        'S3': [1.1],
        'S4': [5.0],
        'S5': [5.2],
        'S6': [4.8, 5.0],
    }
    return strains, sdps, phenotypes
