"""
Deterministic variant assignment for A/B testing.

Uses hashing of (user_id, experiment_id) to ensure stable assignments with
weighted buckets. No random draws: the same user lands in the same variant
of a given experiment in every process, as long as the weights are unchanged.
"""

import hashlib
import logging
from typing import Dict, Iterable, List, Sequence

from .schema import Variant

logger = logging.getLogger(__name__)

BUCKETS = 10000
VARIANT_SALT = ""
TRAFFIC_SALT = "traffic"


def _hash_to_bucket(user_id: str, experiment_id: str, salt: str = "") -> int:
    """
    Deterministic hash to [0, 9999] bucket.

    Same user + experiment (+ salt) always maps to same bucket.
    """
    key = f"{user_id}:{experiment_id}:{salt}"
    h = hashlib.sha256(key.encode()).hexdigest()
    return int(h[:8], 16) % BUCKETS


def bucket_value(user_id: str, experiment_id: str, salt: str = VARIANT_SALT) -> float:
    """Map a user to a stable point in [0, 100) with 0.01 resolution."""
    return _hash_to_bucket(user_id, experiment_id, salt) / (BUCKETS / 100)


def select_variant(variants: Sequence[Variant], point: float) -> str:
    """
    Walk variants in order accumulating weights; first whose cumulative
    weight exceeds `point` wins.

    Args:
        variants: Ordered variants, weights summing to 100
        point: Value in [0, 100)

    Returns:
        Selected variant id
    """
    if not variants:
        raise ValueError("Cannot select from an empty variant list")
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if point < cumulative:
            return variant.id
    # weights summing to 100 - epsilon leave a sliver at the top
    return variants[-1].id


def assign_user(user_id: str, experiment_id: str, variants: Sequence[Variant]) -> str:
    """
    Assign user to a variant deterministically.

    Args:
        user_id: Visitor identifier
        experiment_id: Experiment identifier
        variants: Ordered experiment variants

    Returns:
        Variant id
    """
    return select_variant(variants, bucket_value(user_id, experiment_id))


def traffic_gate_value(user_id: str, experiment_id: str) -> float:
    """Per-user point in [0, 100) for the traffic gate, independent of the variant bucket."""
    return bucket_value(user_id, experiment_id, TRAFFIC_SALT)


def assign_users(
    user_ids: Iterable[str],
    experiment_id: str,
    variants: Sequence[Variant],
) -> Dict[str, str]:
    """
    Assign multiple users without persisting anything.

    Returns:
        Mapping user_id -> variant_id
    """
    assignments = {uid: assign_user(uid, experiment_id, variants) for uid in user_ids}

    counts: Dict[str, int] = {v.id: 0 for v in variants}
    for variant_id in assignments.values():
        counts[variant_id] += 1
    logger.info(
        f"Assignment preview: {len(assignments)} users -> "
        + ", ".join(f"{k}={n}" for k, n in counts.items())
    )
    return assignments


def expected_fractions(variants: Sequence[Variant]) -> List[float]:
    """Configured weights as fractions summing to 1."""
    total = sum(v.weight for v in variants)
    if total <= 0:
        return [1.0 / len(variants)] * len(variants)
    return [v.weight / total for v in variants]
