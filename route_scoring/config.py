"""
Route Scoring - Configuration.

============================================================
PURPOSE
============================================================
Configuration dataclasses for every engine component.

Severity penalties, type impacts, sub-score weights and analytics
thresholds are configuration, not hard law: the defaults below
are a reasonable starting point to be tuned with the product owner.

============================================================
ENVIRONMENT
============================================================
ScoringConfig.from_env() reads ROUTE_SCORING_* variables
(after loading a .env file):

    ROUTE_SCORING_DATABASE_URL          Database URL
    ROUTE_SCORING_DEFAULT_TIME_ZONE     System-wide fallback zone
    ROUTE_SCORING_INTERVAL_SECONDS      Aggregation interval
    ROUTE_SCORING_RUN_ON_START          Run a pass immediately (true/false)
    ROUTE_SCORING_HALF_LIFE_DAYS        Recency decay half-life
    ROUTE_SCORING_LOOKBACK_DAYS         Report lookback per pass
    ROUTE_SCORING_MAX_WORKERS           Route fan-out cap
    ROUTE_SCORING_DUPLICATE_COOLDOWN    Duplicate window (seconds)
    ROUTE_SCORING_ANONYMOUS_WEIGHT      Anonymous weight multiplier
    ROUTE_SCORING_DUPLICATE_WEIGHT      Duplicate weight multiplier
    ROUTE_SCORING_ANALYTICS_TTL         Risk snapshot cache TTL (seconds)
    ROUTE_SCORING_MARK_SCORED           Write last_scored_at (true/false)

============================================================
"""

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .types import ReportType, Severity, SubScore


logger = logging.getLogger(__name__)


def _default_cpu_count() -> int:
    return os.cpu_count() or 4


# ============================================================
# INGESTION
# ============================================================


@dataclass(frozen=True)
class IngestionConfig:
    """
    Trust weighting applied by the ingestion filter.

    Anonymous reports count half; repeated submissions from one device
    against one route inside the cooldown window count a tenth.
    """

    anonymous_weight: float = 0.5
    duplicate_weight: float = 0.1
    duplicate_cooldown_seconds: float = 600.0    # 10 minutes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anonymous_weight": self.anonymous_weight,
            "duplicate_weight": self.duplicate_weight,
            "duplicate_cooldown_seconds": self.duplicate_cooldown_seconds,
        }


# ============================================================
# BUCKETING
# ============================================================


@dataclass(frozen=True)
class BucketingConfig:
    """
    Local-hour boundaries of the time buckets.

    [morning_start, afternoon_start) = morning
    [afternoon_start, evening_start) = afternoon
    [evening_start, night_start)     = evening
    otherwise                        = night
    """

    default_time_zone: str = "Africa/Nairobi"
    morning_start_hour: int = 5
    afternoon_start_hour: int = 11
    evening_start_hour: int = 17
    night_start_hour: int = 22

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_time_zone": self.default_time_zone,
            "morning_start_hour": self.morning_start_hour,
            "afternoon_start_hour": self.afternoon_start_hour,
            "evening_start_hour": self.evening_start_hour,
            "night_start_hour": self.night_start_hour,
        }


# ============================================================
# AGGREGATION
# ============================================================


def _default_severity_penalties() -> Dict[Severity, float]:
    return {
        Severity.LOW: 0.2,
        Severity.MEDIUM: 0.5,
        Severity.HIGH: 1.0,
        Severity.CRITICAL: 2.0,
    }


def _default_type_impacts() -> Dict[ReportType, Dict[SubScore, float]]:
    return {
        ReportType.DELAY: {SubScore.RELIABILITY: 0.4, SubScore.PUNCTUALITY: 0.6},
        ReportType.SAFETY: {SubScore.SAFETY: 1.0},
        ReportType.CROWDING: {SubScore.COMFORT: 0.8, SubScore.RELIABILITY: 0.2},
        ReportType.BREAKDOWN: {SubScore.RELIABILITY: 0.6, SubScore.SAFETY: 0.4},
        ReportType.OTHER: {
            SubScore.RELIABILITY: 0.3,
            SubScore.SAFETY: 0.3,
            SubScore.COMFORT: 0.4,
        },
    }


def _default_sub_score_weights() -> Dict[SubScore, float]:
    # Must sum to 1.0; safety weighted highest
    return {
        SubScore.RELIABILITY: 0.30,
        SubScore.SAFETY: 0.35,
        SubScore.PUNCTUALITY: 0.20,
        SubScore.COMFORT: 0.15,
    }


@dataclass(frozen=True)
class AggregationConfig:
    """
    Score aggregation parameters.

    Each report subtracts
        severity_penalty * ingestion_weight * recency_decay * impact
    from score_ceiling, per sub-score it influences.
    """

    severity_penalties: Dict[Severity, float] = field(default_factory=_default_severity_penalties)
    type_impacts: Dict[ReportType, Dict[SubScore, float]] = field(default_factory=_default_type_impacts)
    sub_score_weights: Dict[SubScore, float] = field(default_factory=_default_sub_score_weights)

    score_ceiling: float = 5.0
    score_floor: float = 0.0
    neutral_score: float = 3.0                 # empty bucket

    half_life_days: float = 14.0
    min_decay: float = 1e-6                    # decay never reaches zero

    lookback_days: Optional[int] = None        # None = all history
    max_workers: int = field(default_factory=_default_cpu_count)
    mark_scored: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity_penalties": {k.value: v for k, v in self.severity_penalties.items()},
            "type_impacts": {
                t.value: {s.value: w for s, w in impacts.items()}
                for t, impacts in self.type_impacts.items()
            },
            "sub_score_weights": {k.value: v for k, v in self.sub_score_weights.items()},
            "score_ceiling": self.score_ceiling,
            "score_floor": self.score_floor,
            "neutral_score": self.neutral_score,
            "half_life_days": self.half_life_days,
            "min_decay": self.min_decay,
            "lookback_days": self.lookback_days,
            "max_workers": self.max_workers,
            "mark_scored": self.mark_scored,
        }


# ============================================================
# ANALYTICS
# ============================================================


@dataclass(frozen=True)
class AnalyticsConfig:
    """Risk analytics thresholds and list caps."""

    grid_decimals: int = 2                         # ~1km cells
    hotspot_stddev_multiplier: float = 1.5
    performer_limit: int = 5
    min_reports_for_top_performer: int = 5
    recommendation_limit: int = 10
    high_priority_threshold: float = 10.0
    critical_route_risk_threshold: float = 2.0
    peak_count: int = 3
    trend_change_threshold: float = 0.10           # +/-10% = stable band
    low_resolution_rate: float = 0.5
    low_data_quality: float = 0.6
    cache_ttl_seconds: float = 300.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid_decimals": self.grid_decimals,
            "hotspot_stddev_multiplier": self.hotspot_stddev_multiplier,
            "performer_limit": self.performer_limit,
            "min_reports_for_top_performer": self.min_reports_for_top_performer,
            "recommendation_limit": self.recommendation_limit,
            "high_priority_threshold": self.high_priority_threshold,
            "critical_route_risk_threshold": self.critical_route_risk_threshold,
            "peak_count": self.peak_count,
            "trend_change_threshold": self.trend_change_threshold,
            "low_resolution_rate": self.low_resolution_rate,
            "low_data_quality": self.low_data_quality,
            "cache_ttl_seconds": self.cache_ttl_seconds,
        }


# ============================================================
# SCHEDULER
# ============================================================


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: float = 900.0                # 15 minutes
    run_on_start: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval_seconds,
            "run_on_start": self.run_on_start,
        }


# ============================================================
# DATABASE
# ============================================================


@dataclass(frozen=True)
class DatabaseConfig:
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    def to_dict(self) -> Dict[str, Any]:
        # URL omitted: may carry credentials
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "echo": self.echo,
        }


# ============================================================
# MASTER CONFIGURATION
# ============================================================


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", config_key=name) from e


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ScoringConfig:
    """Complete engine configuration."""

    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    bucketing: BucketingConfig = field(default_factory=BucketingConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    engine_version: str = "1.0.0"

    def validate(self) -> "ScoringConfig":
        """
        Check cross-field consistency.

        Raises:
            ConfigurationError: On the first inconsistent value
        """
        agg = self.aggregation
        weight_sum = sum(agg.sub_score_weights.values())
        if set(agg.sub_score_weights) != set(SubScore):
            raise ConfigurationError("sub_score_weights must cover all four sub-scores", "sub_score_weights")
        if not math.isclose(weight_sum, 1.0, abs_tol=1e-9):
            raise ConfigurationError(
                f"sub_score_weights must sum to 1.0, got {weight_sum:.4f}", "sub_score_weights"
            )
        if set(agg.severity_penalties) != set(Severity):
            raise ConfigurationError("severity_penalties must cover every severity", "severity_penalties")
        ordered = [agg.severity_penalties[s] for s in sorted(Severity, key=lambda s: s.level)]
        if any(b < a for a, b in zip(ordered, ordered[1:])):
            raise ConfigurationError(
                "severity_penalties must be non-decreasing low -> critical", "severity_penalties"
            )
        if agg.half_life_days <= 0:
            raise ConfigurationError("half_life_days must be positive", "half_life_days")
        if not agg.score_floor <= agg.neutral_score <= agg.score_ceiling:
            raise ConfigurationError("neutral_score must lie within [floor, ceiling]", "neutral_score")
        if agg.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1", "max_workers")

        ing = self.ingestion
        for name in ("anonymous_weight", "duplicate_weight"):
            value = getattr(ing, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1]", name)
        if ing.duplicate_cooldown_seconds < 0:
            raise ConfigurationError("duplicate_cooldown_seconds must be >= 0", "duplicate_cooldown_seconds")

        b = self.bucketing
        if not 0 <= b.morning_start_hour < b.afternoon_start_hour < b.evening_start_hour < b.night_start_hour <= 24:
            raise ConfigurationError("bucket boundaries must be increasing hours within [0, 24]", "bucketing")

        if self.scheduler.interval_seconds <= 0:
            raise ConfigurationError("interval_seconds must be positive", "interval_seconds")
        if self.analytics.cache_ttl_seconds < 0:
            raise ConfigurationError("cache_ttl_seconds must be >= 0", "cache_ttl_seconds")
        return self

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv()

        ingestion_kwargs: Dict[str, Any] = {}
        if os.getenv("ROUTE_SCORING_ANONYMOUS_WEIGHT"):
            ingestion_kwargs["anonymous_weight"] = _env_float("ROUTE_SCORING_ANONYMOUS_WEIGHT")
        if os.getenv("ROUTE_SCORING_DUPLICATE_WEIGHT"):
            ingestion_kwargs["duplicate_weight"] = _env_float("ROUTE_SCORING_DUPLICATE_WEIGHT")
        if os.getenv("ROUTE_SCORING_DUPLICATE_COOLDOWN"):
            ingestion_kwargs["duplicate_cooldown_seconds"] = _env_float("ROUTE_SCORING_DUPLICATE_COOLDOWN")

        bucketing_kwargs: Dict[str, Any] = {}
        if os.getenv("ROUTE_SCORING_DEFAULT_TIME_ZONE"):
            bucketing_kwargs["default_time_zone"] = os.getenv("ROUTE_SCORING_DEFAULT_TIME_ZONE")

        aggregation_kwargs: Dict[str, Any] = {}
        if os.getenv("ROUTE_SCORING_HALF_LIFE_DAYS"):
            aggregation_kwargs["half_life_days"] = _env_float("ROUTE_SCORING_HALF_LIFE_DAYS")
        if os.getenv("ROUTE_SCORING_LOOKBACK_DAYS"):
            lookback = int(_env_float("ROUTE_SCORING_LOOKBACK_DAYS"))
            aggregation_kwargs["lookback_days"] = lookback if lookback > 0 else None
        if os.getenv("ROUTE_SCORING_MAX_WORKERS"):
            aggregation_kwargs["max_workers"] = int(_env_float("ROUTE_SCORING_MAX_WORKERS"))
        if os.getenv("ROUTE_SCORING_MARK_SCORED"):
            aggregation_kwargs["mark_scored"] = _env_bool("ROUTE_SCORING_MARK_SCORED")

        analytics_kwargs: Dict[str, Any] = {}
        if os.getenv("ROUTE_SCORING_ANALYTICS_TTL"):
            analytics_kwargs["cache_ttl_seconds"] = _env_float("ROUTE_SCORING_ANALYTICS_TTL")

        scheduler_kwargs: Dict[str, Any] = {}
        if os.getenv("ROUTE_SCORING_INTERVAL_SECONDS"):
            scheduler_kwargs["interval_seconds"] = _env_float("ROUTE_SCORING_INTERVAL_SECONDS")
        if os.getenv("ROUTE_SCORING_RUN_ON_START"):
            scheduler_kwargs["run_on_start"] = _env_bool("ROUTE_SCORING_RUN_ON_START")

        database_url = os.getenv("ROUTE_SCORING_DATABASE_URL") or os.getenv("DATABASE_URL")

        config = cls(
            ingestion=IngestionConfig(**ingestion_kwargs),
            bucketing=BucketingConfig(**bucketing_kwargs),
            aggregation=AggregationConfig(**aggregation_kwargs),
            analytics=AnalyticsConfig(**analytics_kwargs),
            scheduler=SchedulerConfig(**scheduler_kwargs),
            database=DatabaseConfig(url=database_url),
        )
        config.validate()
        logger.info(
            f"Loaded scoring configuration: interval={config.scheduler.interval_seconds}s "
            f"zone={config.bucketing.default_time_zone} half_life={config.aggregation.half_life_days}d"
        )
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingestion": self.ingestion.to_dict(),
            "bucketing": self.bucketing.to_dict(),
            "aggregation": self.aggregation.to_dict(),
            "analytics": self.analytics.to_dict(),
            "scheduler": self.scheduler.to_dict(),
            "database": self.database.to_dict(),
            "engine_version": self.engine_version,
        }


def get_default_config() -> ScoringConfig:
    """Default configuration (no environment lookup)."""
    return ScoringConfig().validate()
