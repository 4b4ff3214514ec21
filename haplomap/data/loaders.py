"""
Data loading utilities for tall per-individual phenotype tables and
whitespace-delimited numeric matrices
"""

import enum
import io
import warnings
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..utils.errors import FormatError, IoError

REQUIRED_PHENOTYPE_COLUMNS = ('strain', 'sex', 'varname', 'value')
COMMENT_PREFIXES = ('#', '//')
MISSING_TOKENS = {'', 'na', 'nan', 'n/a', '.'}


class SexFilter(enum.Enum):
    """Which individuals to keep, matched on the first letter of the sex column"""

    ANY = 'any'
    FEMALE = 'female'
    MALE = 'male'

    @classmethod
    def parse(cls, value: Union[str, "SexFilter", None]) -> "SexFilter":
        if value is None:
            return cls.ANY
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text or (text and member is not cls.ANY and member.value[0] == text):
                return member
        if text in ('agnostic', 'both', 'all'):
            return cls.ANY
        raise ValueError(f"Unknown sex filter {value!r}; expected one of any, female, male")

    def accepts(self, sex: str) -> bool:
        if self is SexFilter.ANY:
            return True
        return sex.strip().lower().startswith(self.value[0])


def _read_tall_table(filepath: Union[str, Path]) -> Tuple[pd.DataFrame, List[int]]:
    """Read a tall tab-separated table, skipping comment lines before the header

    Returns the table (all columns as strings, names lower-cased) and the
    1-based file line number of every data row.
    """
    try:
        with open(filepath, 'r') as handle:
            lines = handle.readlines()
    except OSError as exc:
        raise IoError(f"Failed to read phenotype file {filepath}: {exc}") from exc

    kept: List[str] = []
    line_numbers: List[int] = []
    for number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIXES):
            continue
        kept.append(line if line.endswith('\n') else line + '\n')
        line_numbers.append(number)
    if not kept:
        raise FormatError(f"No header found in phenotype file {filepath}")

    n_fields = len(kept[0].rstrip('\r\n').split('\t'))
    for line, number in zip(kept[1:], line_numbers[1:]):
        extra = len(line.rstrip('\r\n').split('\t')) - n_fields
        if extra > 0:
            raise FormatError(
                f"Expected {n_fields} tab-separated fields, found {n_fields + extra}",
                row=number,
                column=f"field {n_fields + 1}",
            )

    try:
        df = pd.read_csv(
            io.StringIO(''.join(kept)),
            sep='\t',
            dtype=str,
            keep_default_na=False,
        )
    except pd.errors.ParserError as exc:
        raise FormatError(f"Cannot parse phenotype file {filepath}: {exc}") from exc
    df.columns = [str(c).strip().lower() for c in df.columns]
    df = df.fillna('')
    for column in REQUIRED_PHENOTYPE_COLUMNS:
        if column not in df.columns:
            raise FormatError(
                f"Phenotype file {filepath} is missing required column",
                row=line_numbers[0],
                column=column,
            )
    for column in REQUIRED_PHENOTYPE_COLUMNS:
        df[column] = df[column].str.strip()
    return df, line_numbers[1:]


def _parse_value(token: str, row: int) -> float:
    if token.strip().lower() in MISSING_TOKENS:
        return np.nan
    try:
        return float(token)
    except ValueError:
        raise FormatError(f"Cannot parse phenotype value {token!r}", row=row, column='value') from None


def available_phenotypes(filepath: Union[str, Path]) -> List[str]:
    """Sorted distinct variable names in a tall phenotype file"""
    df, _ = _read_tall_table(filepath)
    return sorted(set(df['varname']))


def available_strain_names(filepath: Union[str, Path],
                           phenotype_name: Optional[str] = None) -> List[str]:
    """Sorted distinct strains, optionally restricted to one variable"""
    df, _ = _read_tall_table(filepath)
    if phenotype_name is not None:
        df = df[df['varname'] == phenotype_name]
    return sorted(set(df['strain']))


def load_phenotype_file(filepath: Union[str, Path],
                        phenotype_name: Optional[str] = None,
                        sex_filter: Union[str, SexFilter, None] = SexFilter.ANY,
                        strains: Optional[Iterable[str]] = None) -> Dict[str, List[float]]:
    """Load one phenotype from a tall per-individual table

    Args:
        filepath: Tab-separated file with strain, sex, varname and value columns
        phenotype_name: Variable to extract; optional when the file holds one variable
        sex_filter: 'any', 'female' or 'male' (first letter, case-insensitive)
        strains: Optional allow-list of strains

    Returns:
        Mapping strain -> measurements in file order. Strains without rows
        after filtering are omitted. Missing values are kept as NaN.

    Raises:
        FormatError: Missing columns or unparseable values
        ValueError: Ambiguous or unknown phenotype name
    """
    df, row_numbers = _read_tall_table(filepath)
    sex = SexFilter.parse(sex_filter)

    variables = sorted(set(df['varname']))
    if phenotype_name is None:
        if len(variables) != 1:
            raise ValueError(
                f"phenotype_name is required when the file holds {len(variables)} variables: "
                + ', '.join(variables)
            )
        phenotype_name = variables[0]
    elif phenotype_name not in variables:
        raise ValueError(f"Phenotype {phenotype_name!r} not found. Available: {', '.join(variables)}")

    allowed = set(strains) if strains is not None else None
    phenotypes: Dict[str, List[float]] = {}
    for position, record in enumerate(df.itertuples(index=False)):
        if record.varname != phenotype_name or not sex.accepts(record.sex):
            continue
        if allowed is not None and record.strain not in allowed:
            continue
        value = _parse_value(record.value, row_numbers[position])
        phenotypes.setdefault(record.strain, []).append(value)

    if not phenotypes:
        warnings.warn(f"No measurements for phenotype {phenotype_name!r} after filtering")
    return phenotypes


def common_strains(haplotype_strains: Iterable[str],
                   phenotype_strains: Iterable[str]) -> Tuple[List[str], Dict[str, int]]:
    """Sorted intersection of two strain sets plus a summary of the counts

    Returns:
        Tuple of (common strains sorted, summary dict)
    """
    haplotype_set = set(haplotype_strains)
    phenotype_set = set(phenotype_strains)
    common = sorted(haplotype_set & phenotype_set)
    summary = {
        'n_haplotype_strains': len(haplotype_set),
        'n_phenotype_strains': len(phenotype_set),
        'n_common_strains': len(common),
    }
    return common, summary


def read_double_matrix(filepath: Union[str, Path]) -> np.ndarray:
    """Read a whitespace-delimited numeric matrix ('NA' -> NaN)

    Raises:
        FormatError: If rows have different numbers of columns or a token is not numeric
    """
    rows: List[List[float]] = []
    n_columns = None
    try:
        with open(filepath, 'r') as handle:
            for row_number, line in enumerate(handle, start=1):
                tokens = line.split()
                if not tokens:
                    continue
                if n_columns is None:
                    n_columns = len(tokens)
                elif len(tokens) != n_columns:
                    raise FormatError(
                        f"Expected {n_columns} values but found {len(tokens)}", row=row_number
                    )
                values = []
                for col, token in enumerate(tokens):
                    if token == 'NA':
                        values.append(np.nan)
                        continue
                    try:
                        values.append(float(token))
                    except ValueError:
                        raise FormatError(f"Invalid number {token!r}", row=row_number, column=str(col)) from None
                rows.append(values)
    except OSError as exc:
        raise IoError(f"Failed to read matrix file {filepath}: {exc}") from exc

    if not rows:
        return np.zeros((0, 0), dtype=np.float64)
    return np.asarray(rows, dtype=np.float64)
