"""Pytest configuration - add project root to path, shared experiment fixtures."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from src.abtesting import (  # noqa: E402
    EngineConfig,
    Experiment,
    ExperimentEngine,
    ExperimentStatus,
    InMemoryExperimentStore,
    Duration,
    Metrics,
    Settings,
    TargetingRules,
    Variant,
)
from src.abtesting.notifications import RecordingListener  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def build_experiment(
    experiment_id="exp_hero_cta",
    weights=(50, 50),
    status=ExperimentStatus.DRAFT,
    traffic=100.0,
    primary="purchase",
    **rules,
):
    variants = [
        Variant(id=chr(ord("A") + i), name=f"Variant {chr(ord('A') + i)}", weight=w,
                content={"headline": f"Headline {i}"})
        for i, w in enumerate(weights)
    ]
    return Experiment(
        id=experiment_id,
        name="Hero CTA",
        description="Consultation button copy",
        status=status,
        variants=variants,
        targeting_rules=TargetingRules(traffic=traffic, **rules),
        metrics=Metrics(primary=primary, secondary=["click"]),
        duration=Duration(start_date=NOW - timedelta(days=1)),
        settings=Settings(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryExperimentStore()


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def engine(store, clock, recorder):
    return ExperimentEngine(store, config=EngineConfig(), clock=clock, listeners=[recorder])


@pytest.fixture
def make_experiment():
    return build_experiment
