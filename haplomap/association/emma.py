"""
Pre- and post-processing around an external EMMA mixed-model engine

The EMMA scan and kinship routines are opaque numerical oracles that take
flattened row-major matrices. This module aligns strains between phenotype
and genotype data, builds those flat inputs and reshapes the oracle's output.
"""

from typing import Dict, Optional, Protocol, Sequence, Tuple

import numpy as np

from ..data.load_genotype_csv import ChromosomeGenotypes, StrainGenotypes
from ..data.loaders import common_strains
from ..utils.stats import strain_means


class EmmaOracle(Protocol):
    """Interface of the native EMMA routines"""

    def emma_scan(self, strain_count: int, phenos: np.ndarray, genos: np.ndarray,
                  kinship: np.ndarray) -> np.ndarray:
        ...

    def calculate_kinship(self, strain_count: int, genos: np.ndarray) -> np.ndarray:
        ...


def flatten_strain_matrix(matrix: np.ndarray, strain_count: int) -> np.ndarray:
    """Row-major flat copy of a (rows x strains) matrix"""
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix[np.newaxis, :]
    if matrix.shape[1] != strain_count:
        raise ValueError(f"Matrix has {matrix.shape[1]} columns, expected {strain_count} strains")
    return np.ascontiguousarray(matrix).ravel()


def prepare_emma_inputs(genotypes: StrainGenotypes, chromosome: int,
                        phenotypes: Dict[str, Sequence[float]],
                        strains: Optional[Sequence[str]] = None
                        ) -> Tuple[list, np.ndarray, np.ndarray, np.ndarray]:
    """
    Align strains and flatten phenotype and genotype matrices.

    Returns:
        Tuple of (strains, flat phenotype means, flat genotypes (SNP-major),
        positions of the SNPs kept). SNPs with any missing or heterozygous
        call among the strains are dropped.
    """
    candidates = strains if strains is not None else genotypes.strains
    strains, _ = common_strains(candidates, phenotypes.keys())
    means = strain_means(strains, phenotypes)
    keep = ~np.isnan(means)
    strains = [s for s, k in zip(strains, keep) if k]
    if len(strains) < 3:
        raise ValueError(f"EMMA needs at least 3 strains with phenotype data, found {len(strains)}")

    data: ChromosomeGenotypes = genotypes[chromosome]
    columns = genotypes.columns_for(strains)
    rows = data.homozygous_rows(columns)
    genos = data.calls[np.ix_(rows, columns)]
    return (
        strains,
        flatten_strain_matrix(means[keep], len(strains)),
        flatten_strain_matrix(genos, len(strains)) if rows.size else np.zeros(0),
        data.positions[rows],
    )


def reshape_kinship(flat: np.ndarray, strain_count: int) -> np.ndarray:
    flat = np.asarray(flat, dtype=np.float64)
    if flat.size != strain_count * strain_count:
        raise ValueError(
            f"Kinship size {flat.size} does not match {strain_count} x {strain_count}"
        )
    return flat.reshape(strain_count, strain_count)


def emma_scan_chromosome(oracle: EmmaOracle, genotypes: StrainGenotypes, chromosome: int,
                         phenotypes: Dict[str, Sequence[float]],
                         kinship: Optional[np.ndarray] = None,
                         strains: Optional[Sequence[str]] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Run the EMMA oracle over one chromosome.

    Args:
        oracle: Object implementing ``emma_scan`` and ``calculate_kinship``
        genotypes: Strain genotypes
        chromosome: Chromosome to scan
        phenotypes: Mapping strain -> measurements
        kinship: Optional (strains x strains) kinship in the aligned strain
            order; computed by the oracle when omitted
        strains: Optional strain subset

    Returns:
        Tuple of (positions, p-values), one entry per scanned SNP
    """
    strains, phenos, genos, positions = prepare_emma_inputs(genotypes, chromosome, phenotypes, strains)
    n_strains = len(strains)
    if positions.size == 0:
        return positions, np.zeros(0, dtype=np.float64)

    if kinship is None:
        kinship_flat = np.asarray(oracle.calculate_kinship(n_strains, genos), dtype=np.float64)
    else:
        kinship_flat = flatten_strain_matrix(kinship, n_strains)
    reshape_kinship(kinship_flat, n_strains)

    pvalues = np.asarray(oracle.emma_scan(n_strains, phenos, genos, kinship_flat), dtype=np.float64)
    if pvalues.size != positions.size:
        raise ValueError(f"EMMA returned {pvalues.size} p-values for {positions.size} SNPs")
    return positions, pvalues
