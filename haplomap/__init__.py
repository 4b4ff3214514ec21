"""
haplomap: Haplotype Association Mapping of inbred strain phenotypes

Haplotype blocks, equivalence classes and perfect phylogenies are inferred
from strain genotypes and tested against per-strain phenotype measurements.
"""

__version__ = "0.1.0"

from .association.maxk import maxk_scan, scan_chromosome
from .association.blocks import estimate_blocks, estimate_multi_group_blocks
from .association.equivalence import create_equivalence_classes
from .association.phylogeny import infer_perfect_phylogeny
from .data.load_genotype_csv import load_genotype_csv
from .data.loaders import load_phenotype_file
from .pipelines.ham import AssociationTest, HAMPipeline

__all__ = [
    'maxk_scan',
    'scan_chromosome',
    'estimate_blocks',
    'estimate_multi_group_blocks',
    'create_equivalence_classes',
    'infer_perfect_phylogeny',
    'load_genotype_csv',
    'load_phenotype_file',
    'AssociationTest',
    'HAMPipeline',
]
