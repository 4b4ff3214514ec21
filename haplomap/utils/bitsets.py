"""
Strain bitset helpers.

A bitset is a plain Python ``int`` where bit ``i`` refers to the strain at
position ``i`` of a sorted strain list. Binary strings put bit 0 leftmost.
"""

from typing import Iterable, List, Optional, Sequence

import numpy as np


def full_mask(n_strains: int) -> int:
    return (1 << n_strains) - 1


def bit_count(bits: int) -> int:
    return bin(bits).count("1")


def bits_from_indices(indices: Iterable[int]) -> int:
    bits = 0
    for index in indices:
        bits |= 1 << int(index)
    return bits


def indices_from_bits(bits: int) -> List[int]:
    indices = []
    index = 0
    while bits:
        if bits & 1:
            indices.append(index)
        bits >>= 1
        index += 1
    return indices


def bits_from_strains(strains: Iterable[str], ordered_strains: Sequence[str]) -> int:
    """Bitset of ``strains`` relative to ``ordered_strains``."""
    lookup = {strain: i for i, strain in enumerate(ordered_strains)}
    try:
        return bits_from_indices(lookup[strain] for strain in strains)
    except KeyError as exc:
        raise ValueError(f"Strain {exc.args[0]!r} is not part of the strain ordering") from None


def strains_from_bits(bits: int, ordered_strains: Sequence[str]) -> List[str]:
    return [ordered_strains[i] for i in indices_from_bits(bits) if i < len(ordered_strains)]


def complement(bits: int, n_strains: int) -> int:
    return ~bits & full_mask(n_strains)


def canonicalize(bits: int, n_strains: int) -> Optional[int]:
    """Return the representative of the bipartition with bit 0 unset.

    ``None`` is returned when the bitset does not split the strains.
    """
    bits &= full_mask(n_strains)
    if bits & 1:
        bits = complement(bits, n_strains)
    if bits == 0:
        return None
    return bits


def to_binary_string(bits: int, n_strains: int) -> str:
    return "".join("1" if bits >> i & 1 else "0" for i in range(n_strains))


def from_binary_string(text: str) -> int:
    bits = 0
    for i, char in enumerate(text.strip()):
        if char == "1":
            bits |= 1 << i
        elif char != "0":
            raise ValueError(f"Invalid character {char!r} in binary string {text!r}")
    return bits


def pack_rows(matrix: np.ndarray) -> List[int]:
    """Pack each boolean row of ``matrix`` into an int (column ``j`` -> bit ``j``)."""
    matrix = np.asarray(matrix, dtype=bool)
    if matrix.ndim != 2:
        raise ValueError("Expected a 2D boolean matrix")
    if matrix.shape[1] == 0:
        return [0] * matrix.shape[0]
    packed = np.packbits(matrix, axis=1, bitorder="little")
    return [int.from_bytes(row.tobytes(), "little") for row in packed]


def bits_to_mask(bits: int, n_strains: int) -> np.ndarray:
    """Boolean vector of length ``n_strains`` with ``True`` where the bit is set."""
    return np.array([bool(bits >> i & 1) for i in range(n_strains)], dtype=bool)
