"""A/B test engine: experiment lifecycle, deterministic assignment, tracking and results."""

from .schema import (
    ConfidenceInterval,
    ConversionGoal,
    Duration,
    Experiment,
    ExperimentAnalysis,
    ExperimentEvent,
    ExperimentStatus,
    Metrics,
    Participant,
    RequestContext,
    Settings,
    TargetingRules,
    TimeWindow,
    Variant,
    VariantResult,
)
from .errors import (
    AbTestError,
    DuplicateParticipant,
    ExperimentNotFound,
    InvalidStateTransition,
    StoreUnavailable,
    ValidationError,
)
from .config import EngineConfig
from .store import ExperimentStore, FileExperimentStore, InMemoryExperimentStore
from .engine import ExperimentEngine
from .report import render_exec_summary

__all__ = [
    "ConfidenceInterval",
    "ConversionGoal",
    "Duration",
    "Experiment",
    "ExperimentAnalysis",
    "ExperimentEvent",
    "ExperimentStatus",
    "Metrics",
    "Participant",
    "RequestContext",
    "Settings",
    "TargetingRules",
    "TimeWindow",
    "Variant",
    "VariantResult",
    "AbTestError",
    "DuplicateParticipant",
    "ExperimentNotFound",
    "InvalidStateTransition",
    "StoreUnavailable",
    "ValidationError",
    "EngineConfig",
    "ExperimentStore",
    "FileExperimentStore",
    "InMemoryExperimentStore",
    "ExperimentEngine",
    "render_exec_summary",
]
