"""
Pydantic Schemas for the Route Scoring API.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================
# SCORES
# =============================================================

class ScoreResponse(BaseModel):
    """Quality score for one (route, time bucket)."""
    route_id: str
    time_bucket: str
    reliability_score: float = Field(..., ge=0, le=5)
    safety_score: float = Field(..., ge=0, le=5)
    punctuality_score: float = Field(..., ge=0, le=5)
    comfort_score: float = Field(..., ge=0, le=5)
    overall_score: float = Field(..., ge=0, le=5)
    total_reports: int
    last_calculated: datetime


class RouteScoresResponse(BaseModel):
    route_id: str
    scores: List[ScoreResponse]


class ScoreListResponse(BaseModel):
    """One page of all stored scores."""
    total: int
    limit: int
    offset: int
    scores: List[ScoreResponse]


class RouteRankingResponse(BaseModel):
    route_id: str
    average_overall_score: float
    bucket_count: int
    total_reports: int


class ScoringStatsResponse(BaseModel):
    total_routes: int
    scored_routes: int
    total_reports: int
    average_score: float
    last_calculated: Optional[datetime] = None


class PassResultResponse(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    routes_scored: int
    routes_failed: List[str]
    buckets_written: int
    reports_considered: int
    reports_rejected: int


class SchedulerStatusResponse(BaseModel):
    state: str
    interval_seconds: float
    passes_started: int
    passes_completed: int
    passes_failed: int
    pass_in_progress: bool
    last_pass_at: Optional[datetime] = None
    last_result: Optional[PassResultResponse] = None
    last_error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    scheduler_state: str
    engine_version: str
    timestamp: datetime


# =============================================================
# RISK SNAPSHOT
# =============================================================

class SaccoPerformanceEntrySchema(BaseModel):
    sacco_id: str
    total_reports: int
    critical_reports: int
    critical_ratio: float


class SaccoPerformanceSchema(BaseModel):
    ranking: List[SaccoPerformanceEntrySchema]
    poor_performers: List[SaccoPerformanceEntrySchema]
    top_performers: List[SaccoPerformanceEntrySchema]
    total_saccos: int
    average_reports_per_sacco: float
    critical_saccos: int


class RouteRiskEntrySchema(BaseModel):
    route_id: str
    route_name: str
    operator: str
    risk_score: float
    total_incidents: int
    critical_incidents: int
    high_incidents: int
    medium_incidents: int
    low_incidents: int


class RouteRiskAnalysisSchema(BaseModel):
    high_risk_routes: List[RouteRiskEntrySchema]
    total_routes_analyzed: int
    average_risk_score: float
    critical_routes: int


class HotspotCellSchema(BaseModel):
    lat: float
    lng: float
    incident_count: int
    critical_count: int
    high_risk: bool


class GeographicRiskMapSchema(BaseModel):
    cells: List[HotspotCellSchema]
    high_risk_zones: List[HotspotCellSchema]
    total_risk_zones: int
    average_incidents_per_zone: float
    threshold: float


class PeakBucketSchema(BaseModel):
    index: int
    count: int


class TemporalPatternsSchema(BaseModel):
    hourly_counts: List[int]
    weekday_counts: List[int]
    peak_hours: List[PeakBucketSchema]
    peak_days: List[PeakBucketSchema]
    average_incidents_per_hour: float


class SystemHealthSchema(BaseModel):
    total_reports: int
    resolution_rate: float
    average_response_time_hours: float
    data_quality: float


class ResourceRecommendationSchema(BaseModel):
    sacco_id: str
    priority_score: float
    critical_reports: int
    total_reports: int


class ResourceRecommendationsSchema(BaseModel):
    priority_saccos: List[ResourceRecommendationSchema]
    high_priority_count: int


class DailyCountSchema(BaseModel):
    day: date
    count: int


class ComplianceTrendsSchema(BaseModel):
    daily_trends: List[DailyCountSchema]
    average_daily_reports: float
    trend_direction: str


class TypeCountSchema(BaseModel):
    report_type: str
    count: int
    critical_count: int


class RiskIndicatorsSchema(BaseModel):
    top_risks: List[TypeCountSchema]
    critical_risk_types: List[TypeCountSchema]
    average_severity_level: float


class PlanningInsightsSchema(BaseModel):
    focus_areas: List[str]
    recommended_actions: List[str]


class RiskSnapshotResponse(BaseModel):
    """Authority dashboard payload for one period."""
    period: str
    generated_at: datetime
    window_start: datetime
    window_end: datetime
    sacco_performance: SaccoPerformanceSchema
    route_risk_analysis: RouteRiskAnalysisSchema
    geographic_risk_map: GeographicRiskMapSchema
    temporal_patterns: TemporalPatternsSchema
    system_health: SystemHealthSchema
    resource_recommendations: ResourceRecommendationsSchema
    compliance_trends: ComplianceTrendsSchema
    risk_indicators: RiskIndicatorsSchema
    planning_insights: PlanningInsightsSchema
