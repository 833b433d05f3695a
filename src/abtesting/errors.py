"""
Exceptions raised by the A/B test engine and its stores.

Administrative operations (create/start/pause/complete, results) propagate
these to the caller. Assignment and content lookup degrade to None on
StoreUnavailable; event tracking never raises.
"""

from typing import Optional


class AbTestError(Exception):
    """Base class for all engine errors."""


class ValidationError(AbTestError, ValueError):
    """Experiment configuration violates an invariant."""


class ExperimentNotFound(AbTestError, KeyError):
    """No experiment with the given id exists in the store."""

    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment {experiment_id} not found")

    def __str__(self) -> str:
        return f"Experiment {self.experiment_id} not found"


class InvalidStateTransition(AbTestError):
    """Lifecycle transition not allowed from the current status."""

    def __init__(self, experiment_id: str, current: str, target: str):
        self.experiment_id = experiment_id
        self.current = current
        self.target = target
        super().__init__(
            f"Experiment {experiment_id} cannot move from {current} to {target}"
        )


class StoreUnavailable(AbTestError):
    """A store operation failed (I/O error, unreadable table, backend down)."""


class DuplicateParticipant(AbTestError):
    """A participant already exists for (experiment_id, user_id)."""

    def __init__(self, experiment_id: str, user_id: str, existing: Optional[object] = None):
        self.experiment_id = experiment_id
        self.user_id = user_id
        self.existing = existing
        super().__init__(
            f"User {user_id} already assigned in experiment {experiment_id}"
        )
