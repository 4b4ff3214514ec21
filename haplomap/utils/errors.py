"""
Exception types raised by the haplotype association mapping engine.

Every error also derives from the builtin a caller would naturally catch, so
``except ValueError`` around a parser keeps working.
"""

from typing import Optional


class HamError(Exception):
    """Base class for all haplotype association mapping errors."""


class FormatError(HamError, ValueError):
    """Malformed input row or column."""

    def __init__(self, message: str, row: Optional[int] = None, column: Optional[str] = None):
        self.row = row
        self.column = column
        location = []
        if row is not None:
            location.append(f"row {row}")
        if column is not None:
            location.append(f"column {column!r}")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)


class IoError(HamError, OSError):
    """Backing store read/write failure."""


class StrainMismatch(HamError, ValueError):
    """Phenotype and phylogeny strain sets disagree."""


class NoValidPhylogeny(HamError, ValueError):
    """SDP columns do not admit a perfect phylogeny."""


class NumericError(HamError, ArithmeticError):
    """A statistical routine reported ill-conditioned input."""


class CacheCorrupt(HamError, RuntimeError):
    """A cache entry could not be read back."""
