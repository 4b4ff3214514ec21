"""
Statistical utilities for strain partition testing
"""

import numpy as np
from typing import Dict, List, Sequence, Tuple
from scipy import stats

from .errors import NumericError


def strain_means(strains: Sequence[str], phenotypes: Dict[str, Sequence[float]]) -> np.ndarray:
    """Arithmetic mean of each strain's measurements, in the given strain order

    Missing measurements (NaN) are ignored. Strains without any usable
    measurement get NaN so callers can exclude them from both sides of a test.
    """
    means = np.full(len(strains), np.nan, dtype=np.float64)
    for i, strain in enumerate(strains):
        values = np.asarray(phenotypes.get(strain, ()), dtype=np.float64)
        values = values[~np.isnan(values)]
        if values.size:
            means[i] = float(np.mean(values))
    return means


def welch_t_test(inside: np.ndarray, outside: np.ndarray, min_group_size: int = 3) -> float:
    """Two-sided Welch t-test p-value between two samples of strain means

    Args:
        inside: Strain means on one side of the partition
        outside: Strain means on the other side
        min_group_size: Sides smaller than this give ``p = 1.0``

    Returns:
        p-value. Samples with no variance on either side are perfectly
        separated when their means differ (``p = 0.0``) and identical otherwise
        (``p = 1.0``).

    Raises:
        NumericError: If the t-test cannot produce a finite p-value
    """
    inside = np.asarray(inside, dtype=np.float64)
    outside = np.asarray(outside, dtype=np.float64)
    if inside.size < min_group_size or outside.size < min_group_size:
        return 1.0
    if not (np.all(np.isfinite(inside)) and np.all(np.isfinite(outside))):
        raise NumericError("Non-finite strain mean passed to t-test")

    if np.ptp(inside) == 0.0 and np.ptp(outside) == 0.0:
        return 0.0 if inside[0] != outside[0] else 1.0

    try:
        with np.errstate(all='ignore'):
            result = stats.ttest_ind(inside, outside, equal_var=False)
    except (ValueError, ZeroDivisionError) as exc:
        raise NumericError(f"Welch t-test failed: {exc}") from exc

    p_value = float(result.pvalue)
    if np.isnan(p_value):
        raise NumericError(
            f"Welch t-test returned NaN (inside n={inside.size}, outside n={outside.size})"
        )
    return p_value


def one_way_anova(groups: Sequence[np.ndarray]) -> Tuple[float, float]:
    """One-way ANOVA F-test

    Args:
        groups: Two or more samples

    Returns:
        Tuple of (F statistic, p-value). Zero within-group variance gives
        ``(inf, 0.0)`` when the group means differ and ``(nan, 1.0)`` otherwise.
    """
    samples: List[np.ndarray] = [np.asarray(g, dtype=np.float64) for g in groups]
    if len(samples) < 2:
        raise ValueError("ANOVA requires at least two groups")
    if any(not np.all(np.isfinite(s)) for s in samples):
        raise NumericError("Non-finite strain mean passed to ANOVA")

    within_ss = sum(float(np.sum((s - s.mean()) ** 2)) for s in samples)
    if within_ss == 0.0:
        group_means = np.array([s.mean() for s in samples])
        if np.ptp(group_means) == 0.0:
            return float('nan'), 1.0
        return float('inf'), 0.0

    try:
        with np.errstate(all='ignore'):
            f_stat, p_value = stats.f_oneway(*samples)
    except (ValueError, ZeroDivisionError) as exc:
        raise NumericError(f"ANOVA failed: {exc}") from exc

    if np.isnan(p_value):
        raise NumericError(f"ANOVA returned NaN over {len(samples)} groups")
    return float(f_stat), float(p_value)
