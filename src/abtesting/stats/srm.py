"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed split of participants across variants deviates
significantly from the configured weights.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats


def srm_chi_square(
    observed: Sequence[int],
    expected_fracs: Sequence[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit test for sample ratio mismatch.

    H0: observed split equals configured split
    H1: observed split differs

    Args:
        observed: Participant count per variant
        expected_fracs: Configured fraction per variant (sums to 1)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    observed = np.asarray(observed, dtype=float)
    fracs = np.asarray(expected_fracs, dtype=float)
    n_total = observed.sum()
    if n_total == 0 or len(observed) < 2:
        return 0.0, 1.0

    # zero-weight arms carry no expectation and no degrees of freedom
    mask = fracs > 0
    if mask.sum() < 2:
        return 0.0, 1.0
    stray = observed[~mask].sum()
    if stray > 0:
        return float("inf"), 0.0

    obs = observed[mask]
    expected = n_total * fracs[mask] / fracs[mask].sum()

    chi2 = np.sum((obs - expected) ** 2 / expected)
    p_value = 1 - stats.chi2.cdf(chi2, df=len(obs) - 1)

    return float(chi2), float(p_value)


def check_srm(
    observed: Sequence[int],
    expected_fracs: Sequence[float],
    alpha: float = 0.01,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Args:
        observed: Participant count per variant
        expected_fracs: Configured fraction per variant
        alpha: Significance threshold (default 0.01)

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, expected_fracs)
    srm_passed = p_value >= alpha
    return srm_passed, chi2, p_value
