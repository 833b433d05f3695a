"""
Synthetic traffic simulator.

Sends synthetic visitors through ExperimentEngine.assign_variant and, for
assigned visitors, tracks a primary-metric conversion with a per-variant
probability. Used by the demo script and the dashboard.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from .engine import ExperimentEngine
from .schema import ExperimentEvent, RequestContext

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42
DEVICE_MIX = (("desktop", 0.55), ("mobile", 0.4), ("tablet", 0.05))


def run_simulation(
    engine: ExperimentEngine,
    experiment_id: str,
    n_users: int = 1000,
    conversion_rates: Optional[Dict[str, float]] = None,
    default_rate: float = 0.1,
    user_prefix: str = "sim_user",
    geo_locations: Optional[Sequence[str]] = None,
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Run a traffic simulation against an active experiment.

    Args:
        engine: Engine to send traffic through
        experiment_id: Active experiment identifier
        n_users: Number of distinct synthetic visitors
        conversion_rates: Conversion probability per variant id
        default_rate: Probability for variants missing from conversion_rates
        user_prefix: Prefix of synthetic user ids
        geo_locations: Optional pool of geo codes attached to requests
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_users, n_assigned, n_excluded, per-variant assigned and conversion counts
    """
    rng = np.random.default_rng(random_seed)
    experiment = engine.get_experiment(experiment_id)
    metric = experiment.metrics.primary
    rates = conversion_rates or {}

    devices = [d for d, _ in DEVICE_MIX]
    device_p = [p for _, p in DEVICE_MIX]

    assigned: Dict[str, int] = {v.id: 0 for v in experiment.variants}
    conversions: Dict[str, int] = {v.id: 0 for v in experiment.variants}
    excluded = 0

    for i in range(n_users):
        user_id = f"{user_prefix}_{i}"
        session_id = f"{user_id}_s0"
        context = RequestContext(
            user_agent="Mozilla/5.0 (simulated)",
            device_type=str(rng.choice(devices, p=device_p)),
            geo_location=str(rng.choice(list(geo_locations))) if geo_locations else None,
        )
        variant_id = engine.assign_variant(experiment_id, user_id, session_id, context)
        if variant_id is None:
            excluded += 1
            continue
        assigned[variant_id] = assigned.get(variant_id, 0) + 1

        if rng.random() < rates.get(variant_id, default_rate):
            engine.track_event(ExperimentEvent(
                experiment_id=experiment_id,
                variant_id=variant_id,
                user_id=user_id,
                session_id=session_id,
                event=metric,
                value=1.0,
            ))
            conversions[variant_id] = conversions.get(variant_id, 0) + 1

    summary = {
        "experiment_id": experiment_id,
        "n_users": n_users,
        "n_assigned": n_users - excluded,
        "n_excluded": excluded,
        "assigned": assigned,
        "conversions": conversions,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
