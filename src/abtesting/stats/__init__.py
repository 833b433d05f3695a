"""Experiment statistics module."""

from .srm import srm_chi_square, check_srm
from .power import sample_size_proportion, power_proportion
from .hypothesis_tests import z_critical, proportion_confidence_interval, proportions_z_test

__all__ = [
    "srm_chi_square",
    "check_srm",
    "sample_size_proportion",
    "power_proportion",
    "z_critical",
    "proportion_confidence_interval",
    "proportions_z_test",
]
