"""
Experiment stores.

ExperimentStore is the durable collaborator of the engine: experiment
configs, participant assignments and tracked events. Two implementations:

- InMemoryExperimentStore: dicts behind a lock (tests, single process).
- FileExperimentStore: per-experiment directory under data/experiments/ with
  experiment.json plus participants and events tables (parquet, or csv
  fallback) read and written through pandas.

Both enforce one participant per (experiment_id, user_id) by raising
DuplicateParticipant, and surface backend failures as StoreUnavailable.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .errors import DuplicateParticipant, ExperimentNotFound, StoreUnavailable, ValidationError
from .schema import (
    Experiment,
    ExperimentEvent,
    ExperimentStatus,
    Participant,
    parse_datetime,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = "data/experiments"

try:
    import pyarrow  # noqa: F401
    _USE_PARQUET = True
except ImportError:
    _USE_PARQUET = False

PARTICIPANT_COLUMNS = [
    "experiment_id",
    "user_id",
    "session_id",
    "variant_id",
    "assigned_at",
    "user_agent",
    "ip_address",
    "geo_location",
    "device_type",
]
EVENT_COLUMNS = [
    "experiment_id",
    "variant_id",
    "user_id",
    "session_id",
    "event",
    "value",
    "metadata",
    "timestamp",
]


def _snapshot(experiment: Experiment) -> Experiment:
    """Detached copy so callers never share mutable state with the store."""
    return Experiment.from_dict(experiment.to_dict(), validate=False)


class ExperimentStore(ABC):
    """Durable storage for experiments, participants and events."""

    @abstractmethod
    def create_experiment(self, experiment: Experiment) -> Experiment:
        """Persist a new experiment. Raises ValidationError if the id exists."""

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        ...

    @abstractmethod
    def update_experiment(self, experiment: Experiment) -> Experiment:
        """Overwrite a stored experiment. Raises ExperimentNotFound."""

    @abstractmethod
    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        ...

    @abstractmethod
    def find_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        ...

    @abstractmethod
    def add_participant(self, participant: Participant) -> Participant:
        """Insert an assignment. Raises DuplicateParticipant on (experiment_id, user_id) conflict."""

    @abstractmethod
    def list_participants(
        self, experiment_id: str, variant_id: Optional[str] = None
    ) -> List[Participant]:
        ...

    @abstractmethod
    def add_event(self, event: ExperimentEvent) -> None:
        ...

    @abstractmethod
    def list_events(
        self,
        experiment_id: str,
        variant_id: Optional[str] = None,
        event: Optional[str] = None,
    ) -> List[ExperimentEvent]:
        ...


class InMemoryExperimentStore(ExperimentStore):
    """Process-local store backed by dicts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._experiments: Dict[str, Experiment] = {}
        self._participants: Dict[Tuple[str, str], Participant] = {}
        self._events: Dict[str, List[ExperimentEvent]] = defaultdict(list)

    def create_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            if experiment.id in self._experiments:
                raise ValidationError(f"Experiment {experiment.id} already exists")
            self._experiments[experiment.id] = _snapshot(experiment)
        return experiment

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with self._lock:
            exp = self._experiments.get(experiment_id)
            return _snapshot(exp) if exp else None

    def update_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            if experiment.id not in self._experiments:
                raise ExperimentNotFound(experiment.id)
            self._experiments[experiment.id] = _snapshot(experiment)
        return experiment

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        with self._lock:
            exps = [_snapshot(e) for e in self._experiments.values()]
        if status is not None:
            exps = [e for e in exps if e.status == status]
        return exps

    def find_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        with self._lock:
            return self._participants.get((experiment_id, user_id))

    def add_participant(self, participant: Participant) -> Participant:
        key = (participant.experiment_id, participant.user_id)
        with self._lock:
            existing = self._participants.get(key)
            if existing is not None:
                raise DuplicateParticipant(participant.experiment_id, participant.user_id, existing)
            self._participants[key] = participant
        return participant

    def list_participants(
        self, experiment_id: str, variant_id: Optional[str] = None
    ) -> List[Participant]:
        with self._lock:
            return [
                p for (exp_id, _), p in self._participants.items()
                if exp_id == experiment_id and (variant_id is None or p.variant_id == variant_id)
            ]

    def add_event(self, event: ExperimentEvent) -> None:
        with self._lock:
            self._events[event.experiment_id].append(event)

    def list_events(
        self,
        experiment_id: str,
        variant_id: Optional[str] = None,
        event: Optional[str] = None,
    ) -> List[ExperimentEvent]:
        with self._lock:
            events = list(self._events.get(experiment_id, []))
        return [
            e for e in events
            if (variant_id is None or e.variant_id == variant_id)
            and (event is None or e.event == event)
        ]


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _none_if_blank(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    value = str(value)
    return value if value != "" else None


def _participant_to_row(p: Participant) -> dict:
    row = p.to_dict()
    return {k: "" if row[k] is None else str(row[k]) for k in PARTICIPANT_COLUMNS}


def _row_to_participant(row: dict) -> Participant:
    return Participant(
        experiment_id=str(row["experiment_id"]),
        user_id=str(row["user_id"]),
        session_id=_none_if_blank(row.get("session_id")) or "",
        variant_id=str(row["variant_id"]),
        assigned_at=parse_datetime(_none_if_blank(row.get("assigned_at"))),
        user_agent=_none_if_blank(row.get("user_agent")),
        ip_address=_none_if_blank(row.get("ip_address")),
        geo_location=_none_if_blank(row.get("geo_location")),
        device_type=_none_if_blank(row.get("device_type")),
    )


def _event_to_row(e: ExperimentEvent) -> dict:
    return {
        "experiment_id": e.experiment_id,
        "variant_id": e.variant_id,
        "user_id": e.user_id,
        "session_id": e.session_id or "",
        "event": e.event,
        "value": "" if e.value is None else repr(float(e.value)),
        "metadata": json.dumps(e.metadata) if e.metadata else "",
        "timestamp": e.timestamp.isoformat(),
    }


def _row_to_event(row: dict) -> ExperimentEvent:
    value = _none_if_blank(row.get("value"))
    metadata = _none_if_blank(row.get("metadata"))
    return ExperimentEvent(
        experiment_id=str(row["experiment_id"]),
        variant_id=str(row["variant_id"]),
        user_id=str(row["user_id"]),
        session_id=_none_if_blank(row.get("session_id")) or "",
        event=str(row["event"]),
        value=float(value) if value is not None else None,
        metadata=json.loads(metadata) if metadata else {},
        timestamp=parse_datetime(_none_if_blank(row.get("timestamp"))),
    )


class FileExperimentStore(ExperimentStore):
    """
    Directory-per-experiment store.

    Layout:
        <base_dir>/<experiment_id>/experiment.json
        <base_dir>/<experiment_id>/participants.<parquet|csv>
        <base_dir>/<experiment_id>/events.<parquet|csv>

    The participant uniqueness check and insert run under a process-local
    lock; several processes writing the same directory are not coordinated.
    """

    def __init__(self, base_dir: str = DEFAULT_STORE_DIR):
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()

    def _exp_dir(self, experiment_id: str) -> Path:
        path = self.base_dir / experiment_id
        base = self.base_dir.resolve()
        if path.resolve().parent != base:
            raise ValidationError(f"Experiment id {experiment_id!r} is not a valid directory name")
        return path

    def _experiment_path(self, experiment_id: str) -> Path:
        return self._exp_dir(experiment_id) / "experiment.json"

    def _table_path(self, experiment_id: str, name: str) -> Path:
        ext = "parquet" if _USE_PARQUET else "csv"
        return self._exp_dir(experiment_id) / f"{name}.{ext}"

    def _read_table(self, path: Path, columns: List[str]) -> pd.DataFrame:
        if not path.exists():
            return pd.DataFrame(columns=columns)
        try:
            if path.suffix == ".parquet":
                return pd.read_parquet(path)
            return pd.read_csv(path, dtype=str, keep_default_na=False)
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"Failed to read {path}: {e}") from e

    def _write_table(self, df: pd.DataFrame, path: Path) -> None:
        try:
            _ensure_dir(path.parent)
            if path.suffix == ".parquet":
                df.to_parquet(path, index=False)
            else:
                df.to_csv(path, index=False)
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"Failed to write {path}: {e}") from e

    def _append_row(self, path: Path, row: dict, columns: List[str]) -> None:
        df_existing = self._read_table(path, columns)
        df_new = pd.DataFrame([row], columns=columns)
        df = df_new if df_existing.empty else pd.concat([df_existing, df_new], ignore_index=True)
        self._write_table(df, path)

    def _read_experiment(self, path: Path) -> Experiment:
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailable(f"Failed to read {path}: {e}") from e
        try:
            return Experiment.from_dict(data, validate=False)
        except ValidationError as e:
            raise StoreUnavailable(f"Malformed experiment file {path}: {e}") from e

    def _write_experiment(self, experiment: Experiment) -> None:
        path = self._experiment_path(experiment.id)
        try:
            _ensure_dir(path.parent)
            with open(path, "w") as f:
                json.dump(experiment.to_dict(), f, indent=2)
        except OSError as e:
            raise StoreUnavailable(f"Failed to write {path}: {e}") from e

    def create_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            if self._experiment_path(experiment.id).exists():
                raise ValidationError(f"Experiment {experiment.id} already exists")
            self._write_experiment(experiment)
        logger.info(f"Experiment {experiment.id} written to {self._exp_dir(experiment.id)}")
        return experiment

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        path = self._experiment_path(experiment_id)
        if not path.exists():
            return None
        return self._read_experiment(path)

    def update_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            if not self._experiment_path(experiment.id).exists():
                raise ExperimentNotFound(experiment.id)
            self._write_experiment(experiment)
        return experiment

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        if not self.base_dir.exists():
            return []
        exps = []
        for path in sorted(self.base_dir.glob("*/experiment.json")):
            try:
                exp = self._read_experiment(path)
            except StoreUnavailable as e:
                logger.warning(f"Skipping unreadable experiment: {e}")
                continue
            if status is None or exp.status == status:
                exps.append(exp)
        return exps

    def _participants(self, experiment_id: str) -> pd.DataFrame:
        return self._read_table(
            self._table_path(experiment_id, "participants"), PARTICIPANT_COLUMNS
        )

    def find_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        df = self._participants(experiment_id)
        if df.empty:
            return None
        match = df[df["user_id"].astype(str) == str(user_id)]
        if match.empty:
            return None
        return _row_to_participant(match.iloc[0].to_dict())

    def add_participant(self, participant: Participant) -> Participant:
        with self._lock:
            existing = self.find_participant(participant.experiment_id, participant.user_id)
            if existing is not None:
                raise DuplicateParticipant(participant.experiment_id, participant.user_id, existing)
            self._append_row(
                self._table_path(participant.experiment_id, "participants"),
                _participant_to_row(participant),
                PARTICIPANT_COLUMNS,
            )
        return participant

    def list_participants(
        self, experiment_id: str, variant_id: Optional[str] = None
    ) -> List[Participant]:
        df = self._participants(experiment_id)
        if df.empty:
            return []
        if variant_id is not None:
            df = df[df["variant_id"].astype(str) == str(variant_id)]
        return [_row_to_participant(r) for r in df.to_dict("records")]

    def add_event(self, event: ExperimentEvent) -> None:
        with self._lock:
            self._append_row(
                self._table_path(event.experiment_id, "events"),
                _event_to_row(event),
                EVENT_COLUMNS,
            )

    def list_events(
        self,
        experiment_id: str,
        variant_id: Optional[str] = None,
        event: Optional[str] = None,
    ) -> List[ExperimentEvent]:
        df = self._read_table(self._table_path(experiment_id, "events"), EVENT_COLUMNS)
        if df.empty:
            return []
        if variant_id is not None:
            df = df[df["variant_id"].astype(str) == str(variant_id)]
        if event is not None:
            df = df[df["event"].astype(str) == event]
        return [_row_to_event(r) for r in df.to_dict("records")]
