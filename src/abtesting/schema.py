"""
Experiment data models for the A/B test engine.

Dataclass schemas for experiment configuration, participants, tracked events
and per-variant results. Nested records (targeting rules, metrics, duration,
settings) stay structured; to_dict/from_dict is the serialization boundary
used by stores, and from_dict validates what it parses.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError

WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 0.01
MIN_VARIANTS = 2
CONFIDENCE_RANGE = (0.80, 0.99)
MDE_RANGE = (0.01, 0.5)
DEVICE_TYPES = ("desktop", "mobile", "tablet")
# ids name directories of the file store
EXPERIMENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime); naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid datetime: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ExperimentStatus(str, Enum):
    """Experiment lifecycle state."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class Variant:
    """One treatment arm with its traffic weight (0-100) and content payload."""
    id: str
    name: str
    weight: float
    content: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "weight": self.weight,
            "content": dict(self.content),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Variant":
        return cls(
            id=str(d["id"]),
            name=str(d.get("name", d["id"])),
            weight=float(d.get("weight", 0)),
            content=dict(d.get("content") or {}),
            metadata=dict(d.get("metadata") or {}),
        )


@dataclass
class TimeWindow:
    """
    Eligibility window [start, end); naive bounds are read in `timezone` (UTC if unset).

    Bounds may be given as datetimes; they are kept as ISO-8601 strings.
    """
    start: Union[str, datetime]
    end: Union[str, datetime]
    timezone: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.start, datetime):
            self.start = self.start.isoformat()
        if isinstance(self.end, datetime):
            self.end = self.end.isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "timezone": self.timezone}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TimeWindow":
        start = d["start"]
        end = d["end"]
        return cls(
            start=start if isinstance(start, datetime) else str(start),
            end=end if isinstance(end, datetime) else str(end),
            timezone=d.get("timezone"),
        )


@dataclass
class TargetingRules:
    """Eligibility rules evaluated before a user is bucketed."""
    traffic: float = 100.0
    user_segments: Optional[List[str]] = None  # stored, not evaluated
    geo_targeting: Optional[List[str]] = None
    device_types: Optional[List[str]] = None
    time_windows: Optional[List[TimeWindow]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "traffic": self.traffic,
            "user_segments": self.user_segments,
            "geo_targeting": self.geo_targeting,
            "device_types": self.device_types,
            "time_windows": (
                [w.to_dict() for w in self.time_windows]
                if self.time_windows is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "TargetingRules":
        d = d or {}
        windows = d.get("time_windows")
        return cls(
            traffic=float(d.get("traffic", 100.0)),
            user_segments=d.get("user_segments"),
            geo_targeting=d.get("geo_targeting"),
            device_types=d.get("device_types"),
            time_windows=[TimeWindow.from_dict(w) for w in windows] if windows is not None else None,
        )


@dataclass
class ConversionGoal:
    name: str
    event: str
    value: Optional[float] = None


@dataclass
class Metrics:
    """Primary metric (event name counted as a conversion) plus secondary metrics."""
    primary: str
    secondary: List[str] = field(default_factory=list)
    conversion_goals: List[ConversionGoal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary,
            "secondary": list(self.secondary),
            "conversion_goals": [
                {"name": g.name, "event": g.event, "value": g.value}
                for g in self.conversion_goals
            ],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Metrics":
        return cls(
            primary=str(d.get("primary", "")),
            secondary=list(d.get("secondary") or []),
            conversion_goals=[
                ConversionGoal(name=g["name"], event=g["event"], value=g.get("value"))
                for g in d.get("conversion_goals") or []
            ],
        )


@dataclass
class Duration:
    start_date: datetime = field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    min_sample_size: int = 1000
    max_duration: int = 30  # days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "min_sample_size": self.min_sample_size,
            "max_duration": self.max_duration,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "Duration":
        d = d or {}
        return cls(
            start_date=parse_datetime(d.get("start_date")) or utcnow(),
            end_date=parse_datetime(d.get("end_date")),
            min_sample_size=int(d.get("min_sample_size", 1000)),
            max_duration=int(d.get("max_duration", 30)),
        )


@dataclass
class Settings:
    confidence_level: float = 0.95
    min_detectable_effect: float = 0.05
    cookie_duration: int = 30  # days
    exclude_bots: bool = True
    sticky_variants: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_level": self.confidence_level,
            "min_detectable_effect": self.min_detectable_effect,
            "cookie_duration": self.cookie_duration,
            "exclude_bots": self.exclude_bots,
            "sticky_variants": self.sticky_variants,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "Settings":
        d = d or {}
        return cls(
            confidence_level=float(d.get("confidence_level", 0.95)),
            min_detectable_effect=float(d.get("min_detectable_effect", 0.05)),
            cookie_duration=int(d.get("cookie_duration", 30)),
            exclude_bots=bool(d.get("exclude_bots", True)),
            sticky_variants=bool(d.get("sticky_variants", True)),
        )


@dataclass
class Experiment:
    """A/B experiment definition."""
    id: str
    name: str
    variants: List[Variant]
    metrics: Metrics
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.DRAFT
    targeting_rules: TargetingRules = field(default_factory=TargetingRules)
    duration: Duration = field(default_factory=Duration)
    settings: Settings = field(default_factory=Settings)

    @property
    def control(self) -> Variant:
        """First variant is the control arm."""
        return self.variants[0]

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def validate(self) -> "Experiment":
        """Check creation-time invariants. Raises ValidationError."""
        if not self.id:
            raise ValidationError("Experiment id is required")
        if not EXPERIMENT_ID_PATTERN.fullmatch(self.id):
            raise ValidationError(
                f"Experiment id {self.id!r} may only contain letters, digits, '_', '.' and '-'"
            )
        if len(self.variants) < MIN_VARIANTS:
            raise ValidationError(
                f"Experiment needs at least {MIN_VARIANTS} variants, got {len(self.variants)}"
            )
        ids = [v.id for v in self.variants]
        if len(set(ids)) != len(ids):
            raise ValidationError("Variant ids must be unique")
        for v in self.variants:
            if not 0 <= v.weight <= WEIGHT_TOTAL:
                raise ValidationError(f"Variant {v.id} weight {v.weight} outside [0, 100]")
        total = sum(v.weight for v in self.variants)
        if abs(total - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
            raise ValidationError(f"Variant weights must sum to 100%, got {total}")
        lo, hi = CONFIDENCE_RANGE
        if not lo <= self.settings.confidence_level <= hi:
            raise ValidationError(
                f"Confidence level {self.settings.confidence_level} outside [{lo}, {hi}]"
            )
        lo, hi = MDE_RANGE
        if not lo <= self.settings.min_detectable_effect <= hi:
            raise ValidationError(
                f"Minimum detectable effect {self.settings.min_detectable_effect} outside [{lo}, {hi}]"
            )
        if not 0 <= self.targeting_rules.traffic <= 100:
            raise ValidationError(f"Traffic {self.targeting_rules.traffic} outside [0, 100]")
        for device in self.targeting_rules.device_types or []:
            if device not in DEVICE_TYPES:
                raise ValidationError(f"Unknown device type {device!r}")
        for window in self.targeting_rules.time_windows or []:
            if parse_datetime(window.start) >= parse_datetime(window.end):
                raise ValidationError(f"Time window {window.start} - {window.end} is empty")
            if window.timezone:
                try:
                    ZoneInfo(window.timezone)
                except (ZoneInfoNotFoundError, ValueError) as e:
                    raise ValidationError(f"Unknown timezone {window.timezone!r} in time window") from e
        if not self.metrics.primary:
            raise ValidationError("Primary metric is required")
        return self

    def copy(self, **changes) -> "Experiment":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "variants": [v.to_dict() for v in self.variants],
            "targeting_rules": self.targeting_rules.to_dict(),
            "metrics": self.metrics.to_dict(),
            "duration": self.duration.to_dict(),
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any], validate: bool = True) -> "Experiment":
        try:
            exp = cls(
                id=str(d["id"]),
                name=str(d.get("name", "")),
                description=d.get("description") or "",
                status=ExperimentStatus(str(d.get("status", "draft")).lower()),
                variants=[Variant.from_dict(v) for v in d.get("variants") or []],
                targeting_rules=TargetingRules.from_dict(d.get("targeting_rules")),
                metrics=Metrics.from_dict(d.get("metrics") or {}),
                duration=Duration.from_dict(d.get("duration")),
                settings=Settings.from_dict(d.get("settings")),
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Malformed experiment record: {e}") from e
        return exp.validate() if validate else exp


@dataclass
class RequestContext:
    """Request attributes supplied by the calling handler."""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    geo_location: Optional[str] = None
    device_type: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "RequestContext":
        d = d or {}
        return cls(
            user_agent=d.get("user_agent"),
            ip_address=d.get("ip_address"),
            geo_location=d.get("geo_location"),
            device_type=d.get("device_type"),
        )


@dataclass
class Participant:
    """Assignment of one user to one variant of one experiment."""
    experiment_id: str
    user_id: str
    session_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=utcnow)
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    geo_location: Optional[str] = None
    device_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "variant_id": self.variant_id,
            "assigned_at": _iso(self.assigned_at),
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "geo_location": self.geo_location,
            "device_type": self.device_type,
        }


@dataclass
class ExperimentEvent:
    """Tracked exposure/conversion event. Append-only."""
    experiment_id: str
    variant_id: str
    user_id: str
    session_id: str
    event: str
    value: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "variant_id": self.variant_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "event": self.event,
            "value": self.value,
            "metadata": dict(self.metadata),
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class ConfidenceInterval:
    lower: float
    upper: float


@dataclass
class VariantResult:
    """Per-variant statistics for the primary metric."""
    experiment_id: str
    variant_id: str
    metric: str
    value: int
    sample_size: int
    conversions: int
    conversion_rate: float
    confidence_interval: ConfidenceInterval
    statistical_significance: bool
    p_value: float
    uplift: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "variant_id": self.variant_id,
            "metric": self.metric,
            "value": self.value,
            "sample_size": self.sample_size,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
            "confidence_interval": {
                "lower": self.confidence_interval.lower,
                "upper": self.confidence_interval.upper,
            },
            "statistical_significance": self.statistical_significance,
            "p_value": self.p_value,
            "uplift": self.uplift,
        }


@dataclass
class ExperimentAnalysis:
    """Complete experiment analysis result."""
    experiment_id: str
    primary_metric: str
    confidence_level: float
    results: List[VariantResult] = field(default_factory=list)
    analysis_timestamp: datetime = field(default_factory=utcnow)

    # SRM
    srm_passed: bool = True
    srm_p_value: Optional[float] = None

    # Power
    required_sample_size: Optional[int] = None
    sample_size_adequate: bool = False

    # Recommendation
    winner: Optional[str] = None
    recommendation: str = "iterate"  # ship, hold, iterate
    recommendation_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "experiment_id": self.experiment_id,
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "primary_metric": self.primary_metric,
            "confidence_level": self.confidence_level,
            "srm_passed": self.srm_passed,
            "srm_p_value": self.srm_p_value,
            "required_sample_size": self.required_sample_size,
            "sample_size_adequate": self.sample_size_adequate,
            "winner": self.winner,
            "recommendation": self.recommendation,
            "recommendation_reason": self.recommendation_reason,
            "results": [r.to_dict() for r in self.results],
        }
