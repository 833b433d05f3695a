"""Tests for ExperimentEngine lifecycle, assignment and tracking."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from src.abtesting import (
    EngineConfig,
    ExperimentEngine,
    ExperimentEvent,
    ExperimentNotFound,
    ExperimentStatus,
    InMemoryExperimentStore,
    InvalidStateTransition,
    RequestContext,
    StoreUnavailable,
    TimeWindow,
    ValidationError,
)
from src.abtesting.assignment import assign_user


class FlakyStore(InMemoryExperimentStore):
    """In-memory store whose participant/event operations can be switched off."""

    def __init__(self):
        super().__init__()
        self.down = False

    def _check(self):
        if self.down:
            raise StoreUnavailable("store down")

    def find_participant(self, experiment_id, user_id):
        self._check()
        return super().find_participant(experiment_id, user_id)

    def add_participant(self, participant):
        self._check()
        return super().add_participant(participant)

    def add_event(self, event):
        self._check()
        return super().add_event(event)

    def list_experiments(self, status=None):
        self._check()
        return super().list_experiments(status)


class RacingStore(InMemoryExperimentStore):
    """Store where every lookup misses, as if a concurrent writer got there first."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def find_participant(self, experiment_id, user_id):
        self.lookups += 1
        return None


def _event(variant_id, user_id="u1", event="purchase"):
    return ExperimentEvent(
        experiment_id="exp_hero_cta",
        variant_id=variant_id,
        user_id=user_id,
        session_id="s1",
        event=event,
    )


def test_create_draft_is_not_active(engine, make_experiment, recorder):
    exp_id = engine.create_experiment(make_experiment())
    assert exp_id == "exp_hero_cta"
    assert not engine.is_active(exp_id)
    assert recorder.names() == ["created"]


def test_create_active_is_immediately_assignable(engine, make_experiment):
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    assert engine.assign_variant("exp_hero_cta", "u1", "s1") in ("A", "B")


def test_create_rejects_invalid_before_persisting(engine, store, make_experiment):
    with pytest.raises(ValidationError):
        engine.create_experiment(make_experiment(weights=(60, 60)))
    assert store.get_experiment("exp_hero_cta") is None


def test_lifecycle_transitions(engine, store, clock, make_experiment, recorder):
    engine.create_experiment(make_experiment())

    engine.start_experiment("exp_hero_cta")
    stored = store.get_experiment("exp_hero_cta")
    assert stored.status == ExperimentStatus.ACTIVE
    assert stored.duration.start_date == clock.now
    assert engine.is_active("exp_hero_cta")

    engine.pause_experiment("exp_hero_cta")
    assert store.get_experiment("exp_hero_cta").status == ExperimentStatus.PAUSED
    assert not engine.is_active("exp_hero_cta")

    clock.advance(days=1)
    engine.start_experiment("exp_hero_cta")
    assert store.get_experiment("exp_hero_cta").duration.start_date == clock.now

    clock.advance(days=2)
    engine.complete_experiment("exp_hero_cta")
    stored = store.get_experiment("exp_hero_cta")
    assert stored.status == ExperimentStatus.COMPLETED
    assert stored.duration.end_date == clock.now
    assert not engine.is_active("exp_hero_cta")

    assert recorder.names() == ["created", "started", "paused", "started", "completed"]


@pytest.mark.parametrize("status,action", [
    (ExperimentStatus.DRAFT, "pause_experiment"),
    (ExperimentStatus.DRAFT, "complete_experiment"),
    (ExperimentStatus.ACTIVE, "start_experiment"),
    (ExperimentStatus.PAUSED, "pause_experiment"),
    (ExperimentStatus.PAUSED, "complete_experiment"),
    (ExperimentStatus.COMPLETED, "start_experiment"),
    (ExperimentStatus.COMPLETED, "pause_experiment"),
])
def test_invalid_transitions_rejected(engine, store, make_experiment, status, action):
    engine.create_experiment(make_experiment(status=status))
    before = store.get_experiment("exp_hero_cta")
    with pytest.raises(InvalidStateTransition):
        getattr(engine, action)("exp_hero_cta")
    assert store.get_experiment("exp_hero_cta") == before


def test_transition_unknown_experiment(engine):
    with pytest.raises(ExperimentNotFound):
        engine.start_experiment("nope")


@pytest.mark.parametrize("status", [
    ExperimentStatus.DRAFT, ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED,
])
def test_inactive_experiment_never_assigns(engine, store, make_experiment, status):
    engine.create_experiment(make_experiment(status=status))
    assert all(engine.assign_variant("exp_hero_cta", f"u{i}", "s") is None for i in range(20))
    assert store.list_participants("exp_hero_cta") == []


def test_unknown_experiment_assigns_none(engine):
    assert engine.assign_variant("missing", "u1", "s1") is None


def test_assignment_is_sticky(engine, store, make_experiment, recorder):
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    first = engine.assign_variant("exp_hero_cta", "u1", "s1")
    second = engine.assign_variant("exp_hero_cta", "u1", "s2")
    assert first == second
    assert len(store.list_participants("exp_hero_cta")) == 1
    assert recorder.names().count("assigned") == 1


def test_assignment_matches_bucketing(engine, make_experiment):
    exp = make_experiment(weights=(20, 30, 50), status=ExperimentStatus.ACTIVE)
    engine.create_experiment(exp)
    for i in range(50):
        assert engine.assign_variant(exp.id, f"u{i}", "s") == assign_user(f"u{i}", exp.id, exp.variants)


def test_sticky_across_processes(store, clock, make_experiment):
    """A second engine on the same store returns the stored assignment, not a recomputed one."""
    first = ExperimentEngine(store, clock=clock, listeners=[])
    first.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    variant = first.assign_variant("exp_hero_cta", "u1", "s1")

    # flip weights so recomputation would land elsewhere
    exp = store.get_experiment("exp_hero_cta")
    other = "B" if variant == "A" else "A"
    for v in exp.variants:
        v.weight = 100 if v.id == other else 0
    store.update_experiment(exp)

    second = ExperimentEngine(store, clock=clock, listeners=[])
    assert second.is_active("exp_hero_cta")
    assert second.assign_variant("exp_hero_cta", "u1", "s9") == variant
    assert second.assign_variant("exp_hero_cta", "u2", "s9") == other


def test_zero_traffic_never_assigns(engine, store, make_experiment):
    engine.create_experiment(make_experiment(traffic=0, status=ExperimentStatus.ACTIVE))
    assert all(engine.assign_variant("exp_hero_cta", f"u{i}", "s") is None for i in range(100))
    assert store.list_participants("exp_hero_cta") == []


def test_targeting_failure_persists_nothing(engine, store, make_experiment):
    engine.create_experiment(make_experiment(device_types=["mobile"], status=ExperimentStatus.ACTIVE))
    assert engine.assign_variant("exp_hero_cta", "u1", "s", RequestContext(device_type="desktop")) is None
    assert store.list_participants("exp_hero_cta") == []
    assert engine.assign_variant("exp_hero_cta", "u1", "s", RequestContext(device_type="mobile")) is not None


def test_context_recorded_on_participant(engine, store, make_experiment):
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    ctx = RequestContext(user_agent="Mozilla/5.0", ip_address="10.1.1.1", geo_location="NC", device_type="tablet")
    engine.assign_variant("exp_hero_cta", "u1", "s1", ctx)
    p = store.find_participant("exp_hero_cta", "u1")
    assert (p.session_id, p.geo_location, p.device_type, p.ip_address) == ("s1", "NC", "tablet", "10.1.1.1")


def test_concurrent_first_assignments(store, clock, make_experiment):
    """Many threads assigning the same new user agree and leave one participant."""
    engine = ExperimentEngine(store, clock=clock, listeners=[])
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    barrier = threading.Barrier(16)

    def assign(i):
        barrier.wait()
        return engine.assign_variant("exp_hero_cta", "shared_user", f"s{i}")

    with ThreadPoolExecutor(max_workers=16) as pool:
        variants = list(pool.map(assign, range(16)))

    assert len(set(variants)) == 1 and variants[0] is not None
    assert len(store.list_participants("exp_hero_cta")) == 1


def test_duplicate_conflict_returns_existing(clock, make_experiment):
    """A uniqueness conflict from the store resolves to the stored variant."""
    store = RacingStore()
    engine = ExperimentEngine(store, clock=clock, listeners=[])
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))

    first = engine.assign_variant("exp_hero_cta", "u1", "s1")

    # recomputation on the second engine would now pick the other variant
    exp = store.get_experiment("exp_hero_cta")
    for v in exp.variants:
        v.weight = 0 if v.id == first else 100
    store.update_experiment(exp)

    other = ExperimentEngine(store, clock=clock, listeners=[])
    assert other.assign_variant("exp_hero_cta", "u1", "s2") == first
    assert len(store.list_participants("exp_hero_cta")) == 1


def test_store_outage_degrades_assignment(clock, make_experiment):
    store = FlakyStore()
    engine = ExperimentEngine(store, clock=clock, listeners=[])
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    store.down = True
    assert engine.assign_variant("exp_hero_cta", "u1", "s1") is None
    store.down = False
    assert engine.assign_variant("exp_hero_cta", "u1", "s1") is not None


def test_load_failure_is_not_fatal(clock):
    store = FlakyStore()
    store.down = True
    engine = ExperimentEngine(store, clock=clock, listeners=[])
    assert engine.get_active_experiments() == []
    assert engine.list_experiments() == []


def test_load_active_respects_dates(store, clock, make_experiment):
    running = make_experiment("running", status=ExperimentStatus.ACTIVE)
    running.duration.start_date = clock.now.replace(day=1)
    future = make_experiment("future", status=ExperimentStatus.ACTIVE)
    future.duration.start_date = clock.now.replace(month=4)
    ended = make_experiment("ended", status=ExperimentStatus.ACTIVE)
    ended.duration.start_date = clock.now.replace(month=1)
    ended.duration.end_date = clock.now.replace(month=2)
    draft = make_experiment("draft")
    for exp in (running, future, ended, draft):
        store.create_experiment(exp)

    engine = ExperimentEngine(store, clock=clock, listeners=[])
    assert [e.id for e in engine.get_active_experiments()] == ["running"]


def test_load_on_start_disabled(store, clock, make_experiment):
    store.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    engine = ExperimentEngine(store, config=EngineConfig(load_on_start=False), clock=clock, listeners=[])
    assert engine.get_active_experiments() == []
    assert engine.load_active_experiments() == 1


def test_track_event_appends(engine, store, recorder):
    engine.track_event(_event("A"))
    assert len(store.list_events("exp_hero_cta")) == 1
    assert recorder.names() == ["event:tracked"]


def test_track_event_swallows_store_failure(clock, caplog):
    store = FlakyStore()
    engine = ExperimentEngine(store, clock=clock, listeners=[])
    store.down = True
    engine.track_event(_event("A"))
    assert "Failed to track A/B test event" in caplog.text


def test_failing_listener_does_not_break_engine(engine, make_experiment):
    def broken(name, payload):
        raise RuntimeError("listener bug")

    engine.subscribe(broken)
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE))
    assert engine.assign_variant("exp_hero_cta", "u1", "s1") is not None
    engine.unsubscribe(broken)


def test_variant_content(engine, make_experiment):
    engine.create_experiment(make_experiment())
    assert engine.get_variant_content("exp_hero_cta", "A") is None

    engine.start_experiment("exp_hero_cta")
    assert engine.get_variant_content("exp_hero_cta", "A") == {"headline": "Headline 0"}
    assert engine.get_variant_content("exp_hero_cta", "Z") is None

    engine.pause_experiment("exp_hero_cta")
    assert engine.get_variant_content("exp_hero_cta", "A") is None


def test_list_experiments_newest_first(engine, clock, make_experiment):
    engine.create_experiment(make_experiment("older"))
    engine.create_experiment(make_experiment("newer"))
    engine.start_experiment("older")
    clock.advance(hours=1)
    engine.start_experiment("newer")
    assert [e.id for e in engine.list_experiments()][:2] == ["newer", "older"]
    assert [e.id for e in engine.list_experiments(ExperimentStatus.DRAFT)] == []


def test_assign_with_datetime_time_window(engine, make_experiment):
    window = TimeWindow(
        start=datetime(2026, 1, 1, tzinfo=timezone.utc),
        end=datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE, time_windows=[window]))
    assert engine.assign_variant("exp_hero_cta", "u1", "s1") in ("A", "B")


def test_create_rejects_bad_window_timezone(engine, store, make_experiment):
    window = TimeWindow(start="2026-01-01T00:00:00", end="2027-01-01T00:00:00", timezone="/etc/localtime")
    with pytest.raises(ValidationError, match="timezone"):
        engine.create_experiment(make_experiment(status=ExperimentStatus.ACTIVE, time_windows=[window]))
    assert store.get_experiment("exp_hero_cta") is None
