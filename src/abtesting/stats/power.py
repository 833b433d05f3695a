"""
Power analysis for conversion-rate experiments.

Required sample size per variant for a relative minimum detectable effect,
and achieved power for a given sample size.
"""

import numpy as np
from scipy import stats


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Sample size per variant for a two-proportion test with equal arms.

    Args:
        baseline: Baseline conversion rate (e.g., 0.04)
        mde_relative: Minimum detectable effect as relative lift (e.g., 0.05 = +5%)
        alpha: Type I error rate
        power: Statistical power (1 - Type II)

    Returns:
        Participants needed in each variant
    """
    p1 = float(np.clip(baseline, 1e-6, 1 - 1e-6))
    p2 = float(np.clip(p1 * (1 + mde_relative), 1e-6, 1 - 1e-6))
    effect = abs(p2 - p1)
    if effect == 0:
        raise ValueError("Minimum detectable effect must be non-zero")

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_bar = (p1 + p2) / 2
    numerator = (
        z_alpha * np.sqrt(2 * p_bar * (1 - p_bar))
        + z_beta * np.sqrt(p1 * (1 - p1) + p2 * (1 - p2))
    ) ** 2
    return int(np.ceil(numerator / effect ** 2))


def power_proportion(
    baseline: float,
    effect_relative: float,
    n_per_arm: int,
    alpha: float = 0.05,
) -> float:
    """
    Achieved power for a given relative lift and sample size per arm.

    Returns:
        Statistical power (0-1)
    """
    if n_per_arm <= 0:
        return 0.0
    p1 = float(np.clip(baseline, 1e-6, 1 - 1e-6))
    p2 = float(np.clip(p1 * (1 + effect_relative), 1e-6, 1 - 1e-6))

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    p_pool = (p1 + p2) / 2
    se = np.sqrt(p_pool * (1 - p_pool) * 2 / n_per_arm)
    effect = abs(p2 - p1)

    if se == 0:
        return 0.0

    z_crit = effect / se
    power = 1 - stats.norm.cdf(z_alpha - z_crit) + stats.norm.cdf(-z_alpha - z_crit)
    return float(np.clip(power, 0, 1))
