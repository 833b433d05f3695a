"""
A/B experiment engine.

ExperimentEngine is constructed once per process with a store and passed to
request handlers. It keeps two in-memory maps in front of the store:

- active experiments keyed by id (the only experiments that receive traffic)
- assignment cache user_id -> experiment_id -> variant_id

The maps are not transactionally linked to the store. A stale cache entry
only affects this process; a miss always falls back to the store.
"""

import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from . import notifications as notes
from .analyze import analyze_experiment, compute_variant_results
from .assignment import assign_user
from .config import EngineConfig
from .errors import (
    DuplicateParticipant,
    ExperimentNotFound,
    InvalidStateTransition,
    StoreUnavailable,
)
from .notifications import LoggingListener, NotificationListener, Notifier
from .schema import (
    Experiment,
    ExperimentAnalysis,
    ExperimentEvent,
    ExperimentStatus,
    Participant,
    RequestContext,
    VariantResult,
    utcnow,
)
from .store import ExperimentStore
from .targeting import evaluate_targeting

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
TRANSITIONS = {
    ExperimentStatus.ACTIVE: (ExperimentStatus.DRAFT, ExperimentStatus.PAUSED),
    ExperimentStatus.PAUSED: (ExperimentStatus.ACTIVE,),
    ExperimentStatus.COMPLETED: (ExperimentStatus.ACTIVE,),
}


class ExperimentEngine:
    """Owns experiment lifecycle, variant assignment, event tracking and results."""

    def __init__(
        self,
        store: ExperimentStore,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
        listeners: Optional[List[NotificationListener]] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.clock = clock
        self.rng = rng or random.Random()
        self._lock = threading.Lock()
        self._active: Dict[str, Experiment] = {}
        self._assignments: Dict[str, Dict[str, str]] = {}
        self._notifier = Notifier()
        for listener in listeners if listeners is not None else [LoggingListener()]:
            self._notifier.subscribe(listener)
        if self.config.load_on_start:
            self.load_active_experiments()

    # ------------------------------------------------------------------
    # notifications

    def subscribe(self, listener: NotificationListener) -> None:
        self._notifier.subscribe(listener)

    def unsubscribe(self, listener: NotificationListener) -> None:
        self._notifier.unsubscribe(listener)

    # ------------------------------------------------------------------
    # active set

    def load_active_experiments(self) -> int:
        """
        Load running experiments (active, started, not past end date) into the
        active set. Failures are logged; the engine keeps serving without them.

        Returns:
            Number of experiments loaded
        """
        now = self.clock()
        try:
            stored = self.store.list_experiments(ExperimentStatus.ACTIVE)
        except StoreUnavailable:
            logger.exception("Failed to load active A/B tests")
            return 0

        loaded = {}
        for exp in stored:
            if exp.duration.start_date > now:
                continue
            if exp.duration.end_date is not None and exp.duration.end_date < now:
                continue
            loaded[exp.id] = exp
        with self._lock:
            self._active.update(loaded)
        logger.info(f"Active A/B tests loaded: {len(loaded)}")
        return len(loaded)

    def get_active_experiments(self) -> List[Experiment]:
        with self._lock:
            return list(self._active.values())

    def is_active(self, experiment_id: str) -> bool:
        with self._lock:
            return experiment_id in self._active

    # ------------------------------------------------------------------
    # administration

    def create_experiment(self, config: Experiment) -> str:
        """
        Validate and persist a new experiment.

        Raises:
            ValidationError: invariant violated (nothing persisted)
            StoreUnavailable: store write failed
        """
        config.validate()
        self.store.create_experiment(config)
        if config.status == ExperimentStatus.ACTIVE:
            with self._lock:
                self._active[config.id] = config
        self._notifier.notify(notes.CREATED, {"experiment_id": config.id, "name": config.name})
        logger.info(f"A/B test created: {config.id} ({config.name})")
        return config.id

    def get_experiment(self, experiment_id: str) -> Experiment:
        exp = self.store.get_experiment(experiment_id)
        if exp is None:
            raise ExperimentNotFound(experiment_id)
        return exp

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        """All stored experiments, most recently started first. Empty on store failure."""
        try:
            exps = self.store.list_experiments(status)
        except StoreUnavailable:
            logger.exception("Failed to list A/B tests")
            return []
        return sorted(exps, key=lambda e: e.duration.start_date, reverse=True)

    def _transition(self, experiment_id: str, target: ExperimentStatus) -> Experiment:
        exp = self.get_experiment(experiment_id)
        if exp.status not in TRANSITIONS[target]:
            raise InvalidStateTransition(experiment_id, exp.status.value, target.value)

        now = self.clock()
        exp.status = target
        if target == ExperimentStatus.ACTIVE:
            exp.duration.start_date = now
        elif target == ExperimentStatus.COMPLETED:
            exp.duration.end_date = now
        self.store.update_experiment(exp)

        with self._lock:
            if target == ExperimentStatus.ACTIVE:
                self._active[experiment_id] = exp
            else:
                self._active.pop(experiment_id, None)
        return exp

    def start_experiment(self, experiment_id: str) -> Experiment:
        """draft|paused -> active; start date reset to now."""
        exp = self._transition(experiment_id, ExperimentStatus.ACTIVE)
        self._notifier.notify(notes.STARTED, {"experiment_id": experiment_id})
        logger.info(f"A/B test started: {experiment_id}")
        return exp

    def pause_experiment(self, experiment_id: str) -> Experiment:
        """active -> paused; stops receiving traffic, data retained."""
        exp = self._transition(experiment_id, ExperimentStatus.PAUSED)
        self._notifier.notify(notes.PAUSED, {"experiment_id": experiment_id})
        logger.info(f"A/B test paused: {experiment_id}")
        return exp

    def complete_experiment(self, experiment_id: str) -> Experiment:
        """active -> completed; end date set to now."""
        exp = self._transition(experiment_id, ExperimentStatus.COMPLETED)
        self._notifier.notify(notes.COMPLETED, {"experiment_id": experiment_id})
        logger.info(f"A/B test completed: {experiment_id}")
        return exp

    # ------------------------------------------------------------------
    # assignment

    def _cache_assignment(self, user_id: str, experiment_id: str, variant_id: str) -> None:
        with self._lock:
            self._assignments.setdefault(user_id, {})[experiment_id] = variant_id

    def _existing_assignment(self, experiment_id: str, user_id: str) -> Optional[str]:
        with self._lock:
            cached = self._assignments.get(user_id, {}).get(experiment_id)
        if cached is not None:
            return cached
        participant = self.store.find_participant(experiment_id, user_id)
        if participant is None:
            return None
        self._cache_assignment(user_id, experiment_id, participant.variant_id)
        return participant.variant_id

    def assign_variant(
        self,
        experiment_id: str,
        user_id: str,
        session_id: str,
        context: Optional[RequestContext] = None,
    ) -> Optional[str]:
        """
        Assign a user to a variant of an active experiment.

        Returns the existing assignment when there is one. Returns None when the
        experiment is not active, the user fails targeting, or the store is
        unavailable; nothing is persisted in those cases.
        """
        with self._lock:
            experiment = self._active.get(experiment_id)
        if experiment is None:
            return None

        try:
            existing = self._existing_assignment(experiment_id, user_id)
            if existing is not None:
                return existing

            if not evaluate_targeting(
                experiment,
                user_id,
                context,
                self.clock(),
                sticky_traffic_gate=self.config.sticky_traffic_gate,
                rng=self.rng,
            ):
                return None

            variant_id = assign_user(user_id, experiment_id, experiment.variants)
            ctx = context or RequestContext()
            participant = Participant(
                experiment_id=experiment_id,
                user_id=user_id,
                session_id=session_id,
                variant_id=variant_id,
                assigned_at=self.clock(),
                user_agent=ctx.user_agent,
                ip_address=ctx.ip_address,
                geo_location=ctx.geo_location,
                device_type=ctx.device_type,
            )
            try:
                self.store.add_participant(participant)
            except DuplicateParticipant as dup:
                # lost a race with a concurrent first assignment
                stored = dup.existing or self.store.find_participant(experiment_id, user_id)
                if stored is None:
                    raise StoreUnavailable(
                        f"Participant {user_id} conflicted but could not be re-read"
                    ) from dup
                self._cache_assignment(user_id, experiment_id, stored.variant_id)
                return stored.variant_id
        except StoreUnavailable:
            logger.exception(f"Failed to assign A/B test variant: {experiment_id} user={user_id}")
            return None

        self._cache_assignment(user_id, experiment_id, variant_id)
        self._notifier.notify(
            notes.ASSIGNED,
            {"experiment_id": experiment_id, "user_id": user_id, "variant_id": variant_id},
        )
        return variant_id

    def get_variant_content(self, experiment_id: str, variant_id: str) -> Optional[Dict[str, Any]]:
        """Content payload of a variant of an active experiment, or None."""
        with self._lock:
            experiment = self._active.get(experiment_id)
        if experiment is None:
            return None
        variant = experiment.get_variant(variant_id)
        return variant.content if variant else None

    # ------------------------------------------------------------------
    # tracking

    def track_event(self, event: ExperimentEvent) -> None:
        """Append an event. Failures are logged and dropped, never raised."""
        try:
            self.store.add_event(event)
        except Exception:
            logger.exception(
                f"Failed to track A/B test event: {event.experiment_id} "
                f"event={event.event} user={event.user_id}"
            )
            return
        self._notifier.notify(notes.EVENT_TRACKED, event.to_dict())

    # ------------------------------------------------------------------
    # results

    def get_results(self, experiment_id: str) -> List[VariantResult]:
        """
        Per-variant results for the primary metric, recomputed from the store.

        Raises:
            ExperimentNotFound: unknown experiment
            StoreUnavailable: store read failed
        """
        exp = self.get_experiment(experiment_id)
        return compute_variant_results(
            exp,
            self.store.list_participants(experiment_id),
            self.store.list_events(experiment_id, event=exp.metrics.primary),
            self.config.min_sample_for_significance,
        )

    def analyze(self, experiment_id: str) -> ExperimentAnalysis:
        """Results plus SRM check, required sample size and recommendation."""
        exp = self.get_experiment(experiment_id)
        return analyze_experiment(
            exp,
            self.store.list_participants(experiment_id),
            self.store.list_events(experiment_id, event=exp.metrics.primary),
            min_sample=self.config.min_sample_for_significance,
            power=self.config.power,
            srm_alpha=self.config.srm_alpha,
        )

    def is_overdue(self, experiment: Experiment, now: Optional[datetime] = None) -> bool:
        """Active experiment past its end date or its maximum duration."""
        now = now or self.clock()
        if experiment.duration.end_date is not None and experiment.duration.end_date <= now:
            return True
        limit = experiment.duration.start_date + timedelta(days=experiment.duration.max_duration)
        return now >= limit
