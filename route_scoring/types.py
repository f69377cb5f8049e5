"""
Route Scoring - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the Route Reliability & Risk Scoring Engine.

Defines the enums and dataclasses flowing between:
- Report Store -> Ingestion Filter (Report)
- Ingestion Filter -> Aggregator (EligibleReport / Rejection)
- Aggregator -> Score Store (Score)
- Analytics Aggregator -> authority dashboard (RiskSnapshot)

============================================================
DESIGN PRINCIPLES
============================================================
- Inputs and outputs are immutable (frozen dataclasses)
- Enums for every discrete value
- to_dict() output is JSON-ready and deterministic

============================================================
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from .clock import ensure_utc


E = TypeVar("E", bound=Enum)


# ============================================================
# SERIALIZATION HELPERS
# ============================================================


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    return value


class SerializableMixin:
    """Adds a deterministic to_dict() to dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        return _to_jsonable(self)


def parse_enum(enum_cls: Type[E], value: Any) -> Optional[E]:
    """Parse an enum value leniently; unknown values become None."""
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


# ============================================================
# ENUMS
# ============================================================


class ReportType(str, Enum):
    """Kind of incident a commuter reported."""

    DELAY = "delay"
    SAFETY = "safety"
    CROWDING = "crowding"
    BREAKDOWN = "breakdown"
    OTHER = "other"


class Severity(str, Enum):
    """
    Reported severity, ordered low -> critical.

    ``level`` gives the numeric ordering (1-4).
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return {"low": 1, "medium": 2, "high": 3, "critical": 4}[self.value]


class ReportStatus(str, Enum):
    """Moderation status of a report."""

    PENDING = "pending"
    VERIFIED = "verified"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @property
    def is_trusted(self) -> bool:
        """Verified/resolved reports were confirmed by a moderator."""
        return self in (ReportStatus.VERIFIED, ReportStatus.RESOLVED)


class TimeBucket(str, Enum):
    """Coarse time-of-day slot a report is scored in."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def ordered(cls) -> List["TimeBucket"]:
        return [cls.MORNING, cls.AFTERNOON, cls.EVENING, cls.NIGHT]

    @property
    def order(self) -> int:
        return TimeBucket.ordered().index(self)


class SubScore(str, Enum):
    """The four quality dimensions of a Score."""

    RELIABILITY = "reliability"
    SAFETY = "safety"
    PUNCTUALITY = "punctuality"
    COMFORT = "comfort"


class RiskPeriod(str, Enum):
    """Rolling analytics window."""

    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.days)

    @classmethod
    def values(cls) -> List[str]:
        return [p.value for p in cls]


class RejectionReason(str, Enum):
    """Why the ingestion filter refused a report."""

    DISMISSED = "dismissed"
    MALFORMED = "malformed"


class SchedulerState(str, Enum):
    """Scheduler lifecycle: STOPPED -> RUNNING -> STOPPED."""

    STOPPED = "stopped"
    RUNNING = "running"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# ============================================================
# INPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class GeoPoint(SerializableMixin):
    """A WGS84 coordinate."""

    lat: float
    lng: float

    @property
    def in_range(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0

    @property
    def is_precise(self) -> bool:
        """In range and not the (0, 0) placeholder some clients send."""
        return self.in_range and not (self.lat == 0.0 and self.lng == 0.0)


@dataclass(frozen=True)
class Report(SerializableMixin):
    """
    A commuter-submitted report, as read from the Report Store.

    Enum fields are None when the stored value is missing or unknown;
    the ingestion filter rejects such reports as malformed.
    """

    id: Optional[str]
    route_id: Optional[str]
    report_type: Optional[ReportType]
    severity: Optional[Severity]
    created_at: Optional[datetime]
    status: ReportStatus = ReportStatus.PENDING
    description: str = ""
    location: Optional[GeoPoint] = None
    is_anonymous: bool = False
    device_fingerprint: str = ""
    verified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    last_scored_at: Optional[datetime] = None

    def __post_init__(self):
        # Naive timestamps are UTC
        for name in ("created_at", "verified_at", "resolved_at", "last_scored_at"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, ensure_utc(value))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Report":
        """
        Build a Report from a store document.

        Accepts ``location`` as ``{"lat", "lng"}`` or as the GeoJSON-style
        ``{"coordinates": [lng, lat]}`` the reporting API stores.
        """
        location = None
        raw_location = data.get("location")
        if isinstance(raw_location, Mapping):
            try:
                if "coordinates" in raw_location:
                    lng, lat = raw_location["coordinates"]
                else:
                    lat, lng = raw_location["lat"], raw_location["lng"]
                location = GeoPoint(lat=float(lat), lng=float(lng))
            except (KeyError, TypeError, ValueError):
                location = None

        raw_id = data.get("id")
        raw_route = data.get("route_id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            route_id=str(raw_route) if raw_route is not None else None,
            report_type=parse_enum(ReportType, data.get("report_type")),
            severity=parse_enum(Severity, data.get("severity")),
            created_at=_parse_datetime(data.get("created_at")),
            status=parse_enum(ReportStatus, data.get("status")) or ReportStatus.PENDING,
            description=data.get("description") or "",
            location=location,
            is_anonymous=bool(data.get("is_anonymous", False)),
            device_fingerprint=data.get("device_fingerprint") or "",
            verified_at=_parse_datetime(data.get("verified_at")),
            resolved_at=_parse_datetime(data.get("resolved_at")),
            last_scored_at=_parse_datetime(data.get("last_scored_at")),
        )

    @property
    def first_response_at(self) -> Optional[datetime]:
        """Earliest moderator action (verification or resolution)."""
        candidates = [t for t in (self.verified_at, self.resolved_at) if t is not None]
        return min(candidates) if candidates else None


@dataclass(frozen=True)
class RouteInfo(SerializableMixin):
    """Route Store lookup result: who operates it and where it runs."""

    route_id: str
    operator: str
    name: str = ""
    time_zone: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class ReportQuery:
    """Report Store query: optional route, createdAt range, statuses."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    route_id: Optional[str] = None
    statuses: Optional[Tuple[ReportStatus, ...]] = None

    def __post_init__(self):
        if self.start is not None:
            object.__setattr__(self, "start", ensure_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", ensure_utc(self.end))

    def matches(self, report: Report) -> bool:
        if self.route_id is not None and report.route_id != self.route_id:
            return False
        if self.statuses is not None and report.status not in self.statuses:
            return False
        if self.start is not None or self.end is not None:
            if report.created_at is None:
                return False
            if self.start is not None and report.created_at < self.start:
                return False
            if self.end is not None and report.created_at > self.end:
                return False
        return True


# ============================================================
# INGESTION OUTPUT
# ============================================================


@dataclass(frozen=True)
class EligibleReport:
    """A report accepted for scoring with its ingestion weight in [0, 1]."""

    report: Report
    weight: float
    is_duplicate: bool = False

    @property
    def report_id(self) -> str:
        return self.report.id  # type: ignore[return-value]


@dataclass(frozen=True)
class Rejection:
    """A report refused by the ingestion filter."""

    report: Report
    reason: RejectionReason
    detail: str = ""


@dataclass
class FilterResult:
    """Outcome of filtering a batch of reports."""

    eligible: List[EligibleReport] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    @property
    def malformed(self) -> List[Rejection]:
        return [r for r in self.rejected if r.reason == RejectionReason.MALFORMED]


# ============================================================
# SCORE OUTPUT
# ============================================================


@dataclass(frozen=True)
class Score(SerializableMixin):
    """
    Quality score for one (route_id, time_bucket).

    overall_score is always derived from the four sub-scores by the
    aggregator; records are replaced whole, never patched.
    """

    route_id: str
    time_bucket: TimeBucket
    reliability_score: float
    safety_score: float
    punctuality_score: float
    comfort_score: float
    overall_score: float
    total_reports: int
    last_calculated: datetime

    @property
    def key(self) -> Tuple[str, TimeBucket]:
        return (self.route_id, self.time_bucket)

    def sub_scores(self) -> Dict[SubScore, float]:
        return {
            SubScore.RELIABILITY: self.reliability_score,
            SubScore.SAFETY: self.safety_score,
            SubScore.PUNCTUALITY: self.punctuality_score,
            SubScore.COMFORT: self.comfort_score,
        }


@dataclass(frozen=True)
class RouteRanking(SerializableMixin):
    """A route's mean overall score across its buckets."""

    route_id: str
    average_overall_score: float
    bucket_count: int
    total_reports: int


@dataclass(frozen=True)
class ScoringStats(SerializableMixin):
    total_routes: int
    scored_routes: int
    total_reports: int
    average_score: float
    last_calculated: Optional[datetime]


@dataclass
class PassResult(SerializableMixin):
    """Summary of one aggregation pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    routes_scored: int = 0
    routes_failed: List[str] = field(default_factory=list)
    buckets_written: int = 0
    reports_considered: int = 0
    reports_rejected: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.routes_failed


# ============================================================
# RISK SNAPSHOT OUTPUT
# ============================================================


@dataclass(frozen=True)
class SaccoPerformanceEntry(SerializableMixin):
    sacco_id: str
    total_reports: int
    critical_reports: int
    critical_ratio: float


@dataclass(frozen=True)
class SaccoPerformance(SerializableMixin):
    ranking: List[SaccoPerformanceEntry]
    poor_performers: List[SaccoPerformanceEntry]
    top_performers: List[SaccoPerformanceEntry]
    total_saccos: int
    average_reports_per_sacco: float
    critical_saccos: int


@dataclass(frozen=True)
class RouteRiskEntry(SerializableMixin):
    route_id: str
    route_name: str
    operator: str
    risk_score: float
    total_incidents: int
    critical_incidents: int
    high_incidents: int
    medium_incidents: int
    low_incidents: int


@dataclass(frozen=True)
class RouteRiskAnalysis(SerializableMixin):
    high_risk_routes: List[RouteRiskEntry]
    total_routes_analyzed: int
    average_risk_score: float
    critical_routes: int


@dataclass(frozen=True)
class HotspotCell(SerializableMixin):
    lat: float
    lng: float
    incident_count: int
    critical_count: int
    high_risk: bool


@dataclass(frozen=True)
class GeographicRiskMap(SerializableMixin):
    cells: List[HotspotCell]
    high_risk_zones: List[HotspotCell]
    total_risk_zones: int
    average_incidents_per_zone: float
    threshold: float


@dataclass(frozen=True)
class PeakBucket(SerializableMixin):
    index: int
    count: int


@dataclass(frozen=True)
class TemporalPatterns(SerializableMixin):
    hourly_counts: List[int]
    weekday_counts: List[int]
    peak_hours: List[PeakBucket]
    peak_days: List[PeakBucket]
    average_incidents_per_hour: float


@dataclass(frozen=True)
class SystemHealth(SerializableMixin):
    total_reports: int
    resolution_rate: float
    average_response_time_hours: float
    data_quality: float


@dataclass(frozen=True)
class ResourceRecommendation(SerializableMixin):
    sacco_id: str
    priority_score: float
    critical_reports: int
    total_reports: int


@dataclass(frozen=True)
class ResourceRecommendations(SerializableMixin):
    priority_saccos: List[ResourceRecommendation]
    high_priority_count: int


@dataclass(frozen=True)
class DailyCount(SerializableMixin):
    day: date
    count: int


@dataclass(frozen=True)
class ComplianceTrends(SerializableMixin):
    daily_trends: List[DailyCount]
    average_daily_reports: float
    trend_direction: TrendDirection


@dataclass(frozen=True)
class TypeCount(SerializableMixin):
    report_type: ReportType
    count: int
    critical_count: int


@dataclass(frozen=True)
class RiskIndicators(SerializableMixin):
    top_risks: List[TypeCount]
    critical_risk_types: List[TypeCount]
    average_severity_level: float


@dataclass(frozen=True)
class PlanningInsights(SerializableMixin):
    focus_areas: List[str]
    recommended_actions: List[str]


@dataclass(frozen=True)
class RiskSnapshot(SerializableMixin):
    """Point-in-time, period-scoped analytics bundle. Never persisted."""

    period: RiskPeriod
    generated_at: datetime
    window_start: datetime
    window_end: datetime
    sacco_performance: SaccoPerformance
    route_risk_analysis: RouteRiskAnalysis
    geographic_risk_map: GeographicRiskMap
    temporal_patterns: TemporalPatterns
    system_health: SystemHealth
    resource_recommendations: ResourceRecommendations
    compliance_trends: ComplianceTrends
    risk_indicators: RiskIndicators
    planning_insights: PlanningInsights


def sort_reports(reports: Sequence[Report]) -> List[Report]:
    """Stable processing order: (created_at, id)."""
    return sorted(
        reports,
        key=lambda r: (
            r.created_at is None,
            r.created_at.timestamp() if r.created_at else 0.0,
            r.id or "",
        ),
    )
