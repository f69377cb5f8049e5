"""
Route Reliability & Risk Scoring Engine - Package.

============================================================
PURPOSE
============================================================
Turns the noisy stream of commuter trip reports into:

1. Per-route, per-time-bucket quality Scores for the rider map
2. Period-scoped RiskSnapshots for the transport authority
   dashboard (SACCO rankings, route risk, hotspots, temporal
   patterns, system health, resource recommendations)

============================================================
PIPELINE
============================================================
Report Store
  -> IngestionFilter    (dismissed / malformed out, trust weights)
  -> TemporalBucketer   (morning / afternoon / evening / night)
  -> ScoreAggregator    (severity x weight x recency decay)
  -> Score Store

Report Store + Route Store
  -> RiskAnalyticsAggregator -> CachedRiskAnalytics (never persisted)

ScoringScheduler runs a pass on start and then every interval.

============================================================
USAGE
============================================================
    from route_scoring import (
        InMemoryReportStore,
        InMemoryRouteStore,
        InMemoryScoreStore,
        ScoringEngine,
        ScoringScheduler,
    )

    engine = ScoringEngine(reports, routes, scores)
    scheduler = ScoringScheduler(engine)
    await scheduler.start()
    ...
    await scheduler.stop()

HTTP: uvicorn run_scoring.py, or route_scoring.api.create_app().

============================================================
"""

# Types
from .types import (
    # Enums
    ReportType,
    Severity,
    ReportStatus,
    TimeBucket,
    SubScore,
    RiskPeriod,
    RejectionReason,
    SchedulerState,
    TrendDirection,

    # Inputs
    GeoPoint,
    Report,
    RouteInfo,
    ReportQuery,

    # Outputs
    EligibleReport,
    Rejection,
    FilterResult,
    Score,
    RouteRanking,
    ScoringStats,
    PassResult,
    RiskSnapshot,
)

# Exceptions
from .exceptions import (
    ScoringEngineError,
    TransientStoreError,
    MalformedReportError,
    RouteNotFoundError,
    InvalidPeriodError,
    SchedulerFault,
    ConfigurationError,
)

# Configuration
from .config import (
    IngestionConfig,
    BucketingConfig,
    AggregationConfig,
    AnalyticsConfig,
    SchedulerConfig,
    DatabaseConfig,
    ScoringConfig,
    get_default_config,
)

# Clock
from .clock import ClockProtocol, SystemClock, MockClock

# Components
from .ingestion import IngestionFilter, find_malformation, validate_report
from .bucketing import TemporalBucketer
from .aggregator import ScoreAggregator
from .analytics import (
    RiskAnalyticsAggregator,
    CachedRiskAnalytics,
    build_risk_snapshot,
)

# Stores
from .stores import (
    ReportStore,
    RouteStore,
    ScoreStore,
    InMemoryReportStore,
    InMemoryRouteStore,
    InMemoryScoreStore,
)

# Orchestration
from .engine import ScoringEngine
from .scheduler import ScoringScheduler, SchedulerStatus


__version__ = "1.0.0"

__all__ = [
    # Enums
    "ReportType",
    "Severity",
    "ReportStatus",
    "TimeBucket",
    "SubScore",
    "RiskPeriod",
    "RejectionReason",
    "SchedulerState",
    "TrendDirection",

    # Inputs
    "GeoPoint",
    "Report",
    "RouteInfo",
    "ReportQuery",

    # Outputs
    "EligibleReport",
    "Rejection",
    "FilterResult",
    "Score",
    "RouteRanking",
    "ScoringStats",
    "PassResult",
    "RiskSnapshot",

    # Exceptions
    "ScoringEngineError",
    "TransientStoreError",
    "MalformedReportError",
    "RouteNotFoundError",
    "InvalidPeriodError",
    "SchedulerFault",
    "ConfigurationError",

    # Configuration
    "IngestionConfig",
    "BucketingConfig",
    "AggregationConfig",
    "AnalyticsConfig",
    "SchedulerConfig",
    "DatabaseConfig",
    "ScoringConfig",
    "get_default_config",

    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",

    # Components
    "IngestionFilter",
    "find_malformation",
    "validate_report",
    "TemporalBucketer",
    "ScoreAggregator",
    "RiskAnalyticsAggregator",
    "CachedRiskAnalytics",
    "build_risk_snapshot",

    # Stores
    "ReportStore",
    "RouteStore",
    "ScoreStore",
    "InMemoryReportStore",
    "InMemoryRouteStore",
    "InMemoryScoreStore",

    # Orchestration
    "ScoringEngine",
    "ScoringScheduler",
    "SchedulerStatus",
]
