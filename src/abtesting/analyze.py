"""
Experiment analysis.

Per-variant results for the primary metric (sample size, conversion rate,
confidence interval, z-test vs control, uplift) and the full analysis:
sample ratio mismatch, required sample size and a ship/hold/iterate
recommendation. Always recomputed from participant and event records.
"""

import logging
from typing import List, Optional, Sequence

import pandas as pd

from .assignment import expected_fractions
from .config import MIN_SAMPLE_FOR_SIGNIFICANCE
from .schema import (
    ConfidenceInterval,
    Experiment,
    ExperimentAnalysis,
    ExperimentEvent,
    Participant,
    VariantResult,
)
from .stats import (
    check_srm,
    proportion_confidence_interval,
    proportions_z_test,
    sample_size_proportion,
)

logger = logging.getLogger(__name__)


def participants_frame(participants: Sequence[Participant]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"user_id": p.user_id, "variant_id": p.variant_id} for p in participants],
        columns=["user_id", "variant_id"],
    )


def events_frame(events: Sequence[ExperimentEvent]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"user_id": e.user_id, "variant_id": e.variant_id, "event": e.event} for e in events],
        columns=["user_id", "variant_id", "event"],
    )


def variant_counts(
    experiment: Experiment,
    participants: Sequence[Participant],
    events: Sequence[ExperimentEvent],
) -> pd.DataFrame:
    """
    Sample size and primary-metric conversions per variant, in variant order.

    Returns:
        DataFrame indexed by variant_id with columns sample_size, conversions
    """
    order = [v.id for v in experiment.variants]
    parts = participants_frame(participants)
    evts = events_frame(events)

    sample_size = parts.groupby("variant_id")["user_id"].nunique()
    conv = evts[evts["event"] == experiment.metrics.primary].groupby("variant_id").size()

    counts = pd.DataFrame(index=pd.Index(order, name="variant_id"))
    counts["sample_size"] = sample_size.reindex(order).fillna(0).astype(int)
    counts["conversions"] = conv.reindex(order).fillna(0).astype(int)
    return counts


def compute_variant_results(
    experiment: Experiment,
    participants: Sequence[Participant],
    events: Sequence[ExperimentEvent],
    min_sample: int = MIN_SAMPLE_FOR_SIGNIFICANCE,
) -> List[VariantResult]:
    """
    Compute per-variant statistics for the primary metric.

    The first variant is the control. Each other variant is tested against it
    with a pooled two-proportion z-test; p-value is forced to 1 when either
    side has fewer than `min_sample` participants.

    Args:
        experiment: Experiment definition
        participants: All participants of the experiment
        events: All events of the experiment
        min_sample: Participants required on both sides before testing

    Returns:
        List of VariantResult in variant order
    """
    counts = variant_counts(experiment, participants, events)
    level = experiment.settings.confidence_level
    alpha = 1 - level
    metric = experiment.metrics.primary

    control_id = experiment.control.id
    n_c = int(counts.at[control_id, "sample_size"])
    x_c = int(counts.at[control_id, "conversions"])
    control_rate = x_c / n_c if n_c > 0 else 0.0

    results = []
    for variant in experiment.variants:
        n = int(counts.at[variant.id, "sample_size"])
        x = int(counts.at[variant.id, "conversions"])
        rate = x / n if n > 0 else 0.0
        lower, upper = proportion_confidence_interval(x, n, level)

        if variant.id == control_id or n < min_sample or n_c < min_sample:
            p_value = 1.0
        else:
            _, _, p_value, _, _ = proportions_z_test(n_c, x_c, n, x, level)

        if variant.id != control_id and control_rate > 0:
            uplift = (rate - control_rate) / control_rate * 100
        else:
            uplift = 0.0

        results.append(VariantResult(
            experiment_id=experiment.id,
            variant_id=variant.id,
            metric=metric,
            value=x,
            sample_size=n,
            conversions=x,
            conversion_rate=rate,
            confidence_interval=ConfidenceInterval(lower=lower, upper=upper),
            statistical_significance=p_value < alpha,
            p_value=p_value,
            uplift=float(uplift),
        ))
    return results


def _required_sample_size(
    experiment: Experiment,
    control_rate: float,
    power: float,
) -> Optional[int]:
    if control_rate <= 0 or control_rate >= 1:
        return None
    n = sample_size_proportion(
        baseline=control_rate,
        mde_relative=experiment.settings.min_detectable_effect,
        alpha=1 - experiment.settings.confidence_level,
        power=power,
    )
    return max(n, experiment.duration.min_sample_size)


def analyze_experiment(
    experiment: Experiment,
    participants: Sequence[Participant],
    events: Sequence[ExperimentEvent],
    min_sample: int = MIN_SAMPLE_FOR_SIGNIFICANCE,
    power: float = 0.8,
    srm_alpha: float = 0.01,
) -> ExperimentAnalysis:
    """
    Run full experiment analysis.

    Args:
        experiment: Experiment definition
        participants: All participants of the experiment
        events: All events of the experiment
        min_sample: Participants required before significance testing
        power: Target power for the required sample size
        srm_alpha: Threshold of the sample ratio mismatch test

    Returns:
        ExperimentAnalysis
    """
    results = compute_variant_results(experiment, participants, events, min_sample)

    observed = [r.sample_size for r in results]
    srm_passed, _, srm_p = check_srm(observed, expected_fractions(experiment.variants), srm_alpha)

    control = results[0]
    required = _required_sample_size(experiment, control.conversion_rate, power)
    adequate = required is not None and all(n >= required for n in observed)

    significant = [r for r in results[1:] if r.statistical_significance]
    winners = sorted(
        (r for r in significant if r.uplift > 0),
        key=lambda r: r.conversion_rate,
        reverse=True,
    )

    # Recommendation logic
    winner = None
    if sum(observed) == 0:
        recommendation = "iterate"
        reason = "No participants assigned yet."
    elif not srm_passed:
        recommendation = "hold"
        reason = "SRM detected: traffic split deviates from configured weights. Do not interpret results."
    elif winners:
        winner = winners[0].variant_id
        recommendation = "ship"
        reason = (
            f"Variant {winner} converts {winners[0].uplift:.1f}% better than control "
            f"({winners[0].p_value:.4f} p-value)."
        )
        if not adequate:
            reason += " Planned sample size not yet reached; confirm before rollout."
    elif significant:
        recommendation = "hold"
        reason = "Variants perform significantly worse than control. Keep control."
    elif not adequate:
        recommendation = "iterate"
        reason = "No significant effect yet. Planned sample size not reached."
    else:
        recommendation = "iterate"
        reason = "No significant effect at planned sample size. Consider a different treatment."

    analysis = ExperimentAnalysis(
        experiment_id=experiment.id,
        primary_metric=experiment.metrics.primary,
        confidence_level=experiment.settings.confidence_level,
        results=results,
        srm_passed=srm_passed,
        srm_p_value=srm_p,
        required_sample_size=required,
        sample_size_adequate=adequate,
        winner=winner,
        recommendation=recommendation,
        recommendation_reason=reason,
    )
    logger.info(
        f"Analysis {experiment.id}: participants={sum(observed)}, "
        f"srm_passed={srm_passed}, recommendation={recommendation}"
    )
    return analysis
