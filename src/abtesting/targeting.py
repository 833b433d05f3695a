"""
Targeting rule evaluation.

All rules must pass for a user to be bucketed. A rule whose context field is
missing from the request is skipped rather than failed.
"""

import logging
import random
import re
from datetime import datetime
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .assignment import traffic_gate_value
from .schema import Experiment, RequestContext, TimeWindow, parse_datetime

logger = logging.getLogger(__name__)

BOT_PATTERN = re.compile(
    r"bot|crawl|spider|slurp|headless|lighthouse|facebookexternalhit|curl|wget|python-requests",
    re.IGNORECASE,
)


def is_bot(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and BOT_PATTERN.search(user_agent) is not None


def _window_bound(value: Union[str, datetime], tz_name: Optional[str]) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None and tz_name:
        try:
            return dt.replace(tzinfo=ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {tz_name!r} in time window, using UTC")
    return parse_datetime(dt)


def in_time_windows(windows: Sequence[TimeWindow], now: datetime) -> bool:
    """True if `now` falls in at least one [start, end) window."""
    for window in windows:
        start = _window_bound(window.start, window.timezone)
        end = _window_bound(window.end, window.timezone)
        if start <= now < end:
            return True
    return False


def passes_traffic_gate(
    experiment: Experiment,
    user_id: str,
    sticky: bool = True,
    rng: Optional[random.Random] = None,
) -> bool:
    """
    Traffic percentage gate.

    Sticky gate: the user's salted hash point must be below `traffic`, so
    inclusion is stable across calls. Non-sticky gate: a fresh uniform draw
    per call (a user excluded once may be included on retry).
    """
    traffic = experiment.targeting_rules.traffic
    if traffic >= 100:
        return True
    if traffic <= 0:
        return False
    if sticky:
        return traffic_gate_value(user_id, experiment.id) < traffic
    draw = (rng or random).random() * 100
    return draw < traffic


def evaluate_targeting(
    experiment: Experiment,
    user_id: str,
    context: Optional[RequestContext],
    now: datetime,
    sticky_traffic_gate: bool = True,
    rng: Optional[random.Random] = None,
) -> bool:
    """
    Evaluate every targeting rule of the experiment.

    Args:
        experiment: Active experiment
        user_id: Visitor identifier
        context: Request attributes (may be None)
        now: Current time (aware)
        sticky_traffic_gate: Derive the traffic gate from the user hash
        rng: Random source for the non-sticky gate

    Returns:
        True if the user is eligible
    """
    rules = experiment.targeting_rules
    ctx = context or RequestContext()

    if not passes_traffic_gate(experiment, user_id, sticky_traffic_gate, rng):
        return False

    if rules.device_types and ctx.device_type:
        if ctx.device_type not in rules.device_types:
            return False

    if rules.geo_targeting and ctx.geo_location:
        if ctx.geo_location not in rules.geo_targeting:
            return False

    if rules.time_windows:
        if not in_time_windows(rules.time_windows, now):
            return False

    if experiment.settings.exclude_bots and is_bot(ctx.user_agent):
        return False

    return True
