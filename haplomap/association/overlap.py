"""
Cumulative overlap of one list of SNP blocks against another
"""

from typing import Optional, Sequence

import numpy as np

from ..utils.data_types import BasePairInterval


def calculate_block_overlap(blocks_to_test: Sequence[BasePairInterval],
                            blocks_to_test_against: Sequence[BasePairInterval],
                            calculation_limit: Optional[int] = None) -> np.ndarray:
    """
    Fraction of each block covered by the other list, summed over that list.

    Args:
        blocks_to_test: Blocks to score
        blocks_to_test_against: Blocks to compare with
        calculation_limit: Maximum allowed ``len(blocks_to_test) * len(blocks_to_test_against)``

    Returns:
        Array aligned with ``blocks_to_test``. Each entry adds
        ``overlap_bp / extent_bp`` for every overlapping block, so it can
        exceed 1.0 when the other list itself overlaps.

    Raises:
        ValueError: If the number of comparisons exceeds ``calculation_limit``
    """
    n_calculations = len(blocks_to_test) * len(blocks_to_test_against)
    if calculation_limit is not None and n_calculations > calculation_limit:
        raise ValueError(
            f"Input size exceeds the calculation limit: {len(blocks_to_test)} x "
            f"{len(blocks_to_test_against)} = {n_calculations} > {calculation_limit}"
        )

    overlaps = np.zeros(len(blocks_to_test), dtype=np.float64)
    for i, block in enumerate(blocks_to_test):
        total = 0.0
        for other in blocks_to_test_against:
            shared = block.overlap_bp(other)
            if shared >= 1:
                total += shared / float(block.extent_bp)
        overlaps[i] = total
    return overlaps
