"""
Haplotype inference and association testing methods
"""

from .maxk import maxk_scan
from .blocks import estimate_blocks, estimate_multi_group_blocks
from .equivalence import create_equivalence_classes
from .phylogeny import infer_perfect_phylogeny
from .phylogeny_significance import PhylogenySignificanceTester

__all__ = [
    'maxk_scan',
    'estimate_blocks',
    'estimate_multi_group_blocks',
    'create_equivalence_classes',
    'infer_perfect_phylogeny',
    'PhylogenySignificanceTester',
]
