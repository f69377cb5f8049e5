"""
Route Scoring - Risk Analytics Aggregator.

============================================================
PURPOSE
============================================================
Builds the period-scoped RiskSnapshot served to the transport
authority dashboard:

- SACCO performance rankings
- Route risk ranking
- Geographic hotspots (adaptive mean + 1.5 sigma threshold)
- Temporal patterns (hour-of-day / weekday, top-3 peaks)
- System health (resolution rate, response time, data quality)
- Resource-priority recommendations
- Compliance trends, risk indicators, planning insights

============================================================
DETERMINISM
============================================================
build_risk_snapshot() is pure. Every ranked list is sorted
descending by its metric with a lexicographic tie-break on the
entity id, so identical inputs always render identically.

Snapshots are never persisted; CachedRiskAnalytics serves them
from a short TTL cache.

============================================================
"""

import asyncio
import logging
import statistics
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .bucketing import TemporalBucketer
from .clock import ClockProtocol, SystemClock, ensure_utc
from .config import AnalyticsConfig
from .exceptions import InvalidPeriodError
from .ingestion import find_malformation
from .stores import ReportStore, RouteStore
from .types import (
    ComplianceTrends,
    DailyCount,
    GeographicRiskMap,
    HotspotCell,
    PeakBucket,
    PlanningInsights,
    Report,
    ReportQuery,
    ReportStatus,
    ReportType,
    ResourceRecommendation,
    ResourceRecommendations,
    RiskIndicators,
    RiskPeriod,
    RiskSnapshot,
    RouteInfo,
    RouteRiskAnalysis,
    RouteRiskEntry,
    SaccoPerformance,
    SaccoPerformanceEntry,
    Severity,
    SystemHealth,
    TemporalPatterns,
    TrendDirection,
    TypeCount,
)


logger = logging.getLogger(__name__)


def parse_period(period: Union[str, RiskPeriod]) -> RiskPeriod:
    """Parse '7d' / '30d' / '90d'."""
    if isinstance(period, RiskPeriod):
        return period
    try:
        return RiskPeriod(str(period).strip().lower())
    except ValueError:
        raise InvalidPeriodError(period, RiskPeriod.values())


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _top_counts(counts: Sequence[int], limit: int) -> List[PeakBucket]:
    ranked = sorted(enumerate(counts), key=lambda item: (-item[1], item[0]))
    return [PeakBucket(index=index, count=count) for index, count in ranked[:limit]]


# ============================================================
# SECTION BUILDERS
# ============================================================


def _sacco_counts(
    incidents: Sequence[Report],
    routes: Mapping[str, RouteInfo],
) -> Dict[str, Tuple[int, int]]:
    """sacco_id -> (total, critical). Reports on unknown routes are skipped."""
    totals: Counter = Counter()
    criticals: Counter = Counter()
    for report in incidents:
        route = routes.get(report.route_id)
        if route is None:
            continue
        totals[route.operator] += 1
        if report.severity == Severity.CRITICAL:
            criticals[route.operator] += 1
    return {sacco: (totals[sacco], criticals[sacco]) for sacco in totals}


def build_sacco_performance(
    incidents: Sequence[Report],
    routes: Mapping[str, RouteInfo],
    config: AnalyticsConfig,
) -> SaccoPerformance:
    counts = _sacco_counts(incidents, routes)
    entries = [
        SaccoPerformanceEntry(
            sacco_id=sacco,
            total_reports=total,
            critical_reports=critical,
            critical_ratio=_ratio(critical, total),
        )
        for sacco, (total, critical) in counts.items()
    ]

    ranking = sorted(entries, key=lambda e: (-e.critical_reports, -e.total_reports, e.sacco_id))
    qualified = [e for e in entries if e.total_reports >= config.min_reports_for_top_performer]
    top_performers = sorted(qualified, key=lambda e: (e.critical_ratio, -e.total_reports, e.sacco_id))

    total_reports = sum(e.total_reports for e in entries)
    return SaccoPerformance(
        ranking=ranking,
        poor_performers=ranking[: config.performer_limit],
        top_performers=top_performers[: config.performer_limit],
        total_saccos=len(entries),
        average_reports_per_sacco=_ratio(total_reports, len(entries)),
        critical_saccos=sum(1 for e in entries if e.critical_reports > 0),
    )


def build_route_risk(
    incidents: Sequence[Report],
    routes: Mapping[str, RouteInfo],
    config: AnalyticsConfig,
) -> RouteRiskAnalysis:
    """
    riskScore = (3*critical + 2*high + 1*medium) / total.

    Routes without incidents never appear: their score is undefined,
    not zero.
    """
    by_route: Dict[str, Counter] = defaultdict(Counter)
    for report in incidents:
        by_route[report.route_id][report.severity] += 1

    entries: List[RouteRiskEntry] = []
    for route_id, severities in by_route.items():
        total = sum(severities.values())
        if total == 0:
            continue
        critical = severities[Severity.CRITICAL]
        high = severities[Severity.HIGH]
        medium = severities[Severity.MEDIUM]
        route = routes.get(route_id)
        entries.append(RouteRiskEntry(
            route_id=route_id,
            route_name=route.name if route else "",
            operator=route.operator if route else "",
            risk_score=(critical * 3 + high * 2 + medium) / total,
            total_incidents=total,
            critical_incidents=critical,
            high_incidents=high,
            medium_incidents=medium,
            low_incidents=severities[Severity.LOW],
        ))

    ranked = sorted(entries, key=lambda e: (-e.risk_score, e.route_id))
    return RouteRiskAnalysis(
        high_risk_routes=ranked,
        total_routes_analyzed=len(ranked),
        average_risk_score=_ratio(sum(e.risk_score for e in ranked), len(ranked)),
        critical_routes=sum(
            1 for e in ranked if e.risk_score >= config.critical_route_risk_threshold
        ),
    )


def build_geographic_risk_map(
    incidents: Sequence[Report],
    config: AnalyticsConfig,
) -> GeographicRiskMap:
    """
    Grid cells at ``grid_decimals`` precision.

    A cell is high-risk when its count exceeds
    mean + k * population-stddev over all populated cells.
    """
    counts: Counter = Counter()
    criticals: Counter = Counter()
    for report in incidents:
        if report.location is None or not report.location.in_range:
            continue
        # + 0.0 folds -0.0 into 0.0
        cell = (
            round(report.location.lat, config.grid_decimals) + 0.0,
            round(report.location.lng, config.grid_decimals) + 0.0,
        )
        counts[cell] += 1
        if report.severity == Severity.CRITICAL:
            criticals[cell] += 1

    if not counts:
        return GeographicRiskMap(
            cells=[], high_risk_zones=[], total_risk_zones=0,
            average_incidents_per_zone=0.0, threshold=0.0,
        )

    values = list(counts.values())
    mean = statistics.mean(values)
    threshold = mean + config.hotspot_stddev_multiplier * statistics.pstdev(values)

    cells = [
        HotspotCell(
            lat=lat,
            lng=lng,
            incident_count=count,
            critical_count=criticals[(lat, lng)],
            high_risk=count > threshold,
        )
        for (lat, lng), count in counts.items()
    ]
    cells.sort(key=lambda c: (-c.incident_count, c.lat, c.lng))
    return GeographicRiskMap(
        cells=cells,
        high_risk_zones=[c for c in cells if c.high_risk],
        total_risk_zones=len(cells),
        average_incidents_per_zone=float(mean),
        threshold=float(threshold),
    )


def build_temporal_patterns(
    incidents: Sequence[Report],
    routes: Mapping[str, RouteInfo],
    bucketer: TemporalBucketer,
    config: AnalyticsConfig,
) -> TemporalPatterns:
    hourly = [0] * 24
    weekday = [0] * 7
    for report in incidents:
        route = routes.get(report.route_id)
        local = bucketer.to_local(report.created_at, route.time_zone if route else None)
        hourly[local.hour] += 1
        weekday[local.weekday()] += 1

    return TemporalPatterns(
        hourly_counts=hourly,
        weekday_counts=weekday,
        peak_hours=_top_counts(hourly, config.peak_count),
        peak_days=_top_counts(weekday, config.peak_count),
        average_incidents_per_hour=len(incidents) / 24.0,
    )


def build_system_health(reports: Sequence[Report]) -> SystemHealth:
    """
    Health over every well-formed report in the window (dismissed too).

    data_quality per report: 0.5 for a non-blank description plus
    0.5 for a precise location.
    """
    total = len(reports)
    handled = sum(
        1 for r in reports if r.status in (ReportStatus.RESOLVED, ReportStatus.VERIFIED)
    )

    response_hours = []
    for report in reports:
        responded_at = report.first_response_at
        if responded_at is not None:
            hours = (responded_at - report.created_at).total_seconds() / 3600.0
            response_hours.append(max(0.0, hours))

    completeness = [
        (0.5 if report.description.strip() else 0.0)
        + (0.5 if report.location is not None and report.location.is_precise else 0.0)
        for report in reports
    ]

    return SystemHealth(
        total_reports=total,
        resolution_rate=_ratio(handled, total),
        average_response_time_hours=_ratio(sum(response_hours), len(response_hours)),
        data_quality=_ratio(sum(completeness), len(completeness)),
    )


def build_resource_recommendations(
    incidents: Sequence[Report],
    routes: Mapping[str, RouteInfo],
    config: AnalyticsConfig,
) -> ResourceRecommendations:
    """priorityScore = 2 * critical + 0.5 * total, top-N."""
    recommendations = [
        ResourceRecommendation(
            sacco_id=sacco,
            priority_score=critical * 2 + total * 0.5,
            critical_reports=critical,
            total_reports=total,
        )
        for sacco, (total, critical) in _sacco_counts(incidents, routes).items()
    ]
    recommendations.sort(key=lambda r: (-r.priority_score, r.sacco_id))
    capped = recommendations[: config.recommendation_limit]
    return ResourceRecommendations(
        priority_saccos=capped,
        high_priority_count=sum(
            1 for r in capped if r.priority_score >= config.high_priority_threshold
        ),
    )


def build_compliance_trends(
    incidents: Sequence[Report],
    period: RiskPeriod,
    window_start: datetime,
    window_end: datetime,
    config: AnalyticsConfig,
) -> ComplianceTrends:
    """Daily (UTC) incident counts with a first-half vs second-half trend."""
    per_day: Counter = Counter(report.created_at.date() for report in incidents)

    days: List[date] = []
    day = window_start.date()
    while day <= window_end.date():
        days.append(day)
        day += timedelta(days=1)
    daily = [DailyCount(day=d, count=per_day[d]) for d in days]

    counts = [d.count for d in daily]
    half = len(counts) // 2
    direction = TrendDirection.STABLE
    if half:
        first = statistics.mean(counts[:half])
        second = statistics.mean(counts[len(counts) - half:])
        if first == 0:
            direction = TrendDirection.INCREASING if second > 0 else TrendDirection.STABLE
        else:
            change = (second - first) / first
            if change > config.trend_change_threshold:
                direction = TrendDirection.INCREASING
            elif change < -config.trend_change_threshold:
                direction = TrendDirection.DECREASING

    return ComplianceTrends(
        daily_trends=daily,
        average_daily_reports=len(incidents) / period.days,
        trend_direction=direction,
    )


def build_risk_indicators(incidents: Sequence[Report]) -> RiskIndicators:
    counts: Counter = Counter(r.report_type for r in incidents)
    criticals: Counter = Counter(
        r.report_type for r in incidents if r.severity == Severity.CRITICAL
    )
    entries = [
        TypeCount(report_type=t, count=counts[t], critical_count=criticals[t])
        for t in counts
    ]
    top = sorted(entries, key=lambda e: (-e.count, e.report_type.value))
    critical = sorted(
        (e for e in entries if e.critical_count > 0),
        key=lambda e: (-e.critical_count, e.report_type.value),
    )
    return RiskIndicators(
        top_risks=top,
        critical_risk_types=critical,
        average_severity_level=_ratio(
            sum(r.severity.level for r in incidents), len(incidents)
        ),
    )


def build_planning_insights(
    sacco: SaccoPerformance,
    route_risk: RouteRiskAnalysis,
    geo: GeographicRiskMap,
    temporal: TemporalPatterns,
    health: SystemHealth,
    config: AnalyticsConfig,
) -> PlanningInsights:
    focus: List[str] = []
    actions: List[str] = []

    if geo.high_risk_zones:
        top = geo.high_risk_zones[0]
        focus.append("geographic_hotspots")
        actions.append(
            f"Increase enforcement presence in {len(geo.high_risk_zones)} high-risk zone(s), "
            f"starting at ({top.lat:.{config.grid_decimals}f}, {top.lng:.{config.grid_decimals}f})"
        )

    offenders = [e.sacco_id for e in sacco.poor_performers if e.critical_reports > 0]
    if offenders:
        focus.append("sacco_compliance")
        actions.append(f"Schedule compliance audits for {', '.join(offenders)}")

    if route_risk.critical_routes:
        focus.append("route_safety")
        actions.append(
            f"Review safety on {route_risk.critical_routes} route(s) with risk score >= "
            f"{config.critical_route_risk_threshold:.1f}"
        )

    if health.total_reports and health.resolution_rate < config.low_resolution_rate:
        focus.append("response_capacity")
        actions.append(
            f"Increase moderation capacity: resolution rate is {health.resolution_rate:.0%}"
        )

    if health.total_reports and health.data_quality < config.low_data_quality:
        focus.append("data_quality")
        actions.append("Encourage reporters to add descriptions and precise locations")

    busy_hours = [p.index for p in temporal.peak_hours if p.count > 0]
    if busy_hours:
        focus.append("peak_hour_deployment")
        actions.append(
            "Deploy resources during peak hours "
            + ", ".join(f"{hour:02d}:00" for hour in busy_hours)
        )

    return PlanningInsights(focus_areas=focus, recommended_actions=actions)


# ============================================================
# SNAPSHOT
# ============================================================


def build_risk_snapshot(
    reports: Sequence[Report],
    routes: Mapping[str, RouteInfo],
    period: Union[str, RiskPeriod],
    now: datetime,
    config: Optional[AnalyticsConfig] = None,
    bucketer: Optional[TemporalBucketer] = None,
) -> RiskSnapshot:
    """
    Compute a RiskSnapshot from already-fetched reports and routes.

    Args:
        reports: Reports (any status) for at least the period window
        routes: route_id -> RouteInfo for the operator join and zones
        period: '7d', '30d' or '90d'
        now: Window end; fixes the result for determinism
        config: Analytics thresholds
        bucketer: Local-time conversion for temporal patterns

    Returns:
        RiskSnapshot for [now - period, now]
    """
    config = config or AnalyticsConfig()
    bucketer = bucketer or TemporalBucketer()
    period = parse_period(period)
    window_end = ensure_utc(now)
    window_start = window_end - period.window

    well_formed: List[Report] = []
    for report in reports:
        problem = find_malformation(report)
        if problem is not None:
            logger.warning(f"Analytics skipping malformed report {report.id}: {problem}")
            continue
        if window_start <= report.created_at <= window_end:
            well_formed.append(report)

    incidents = [r for r in well_formed if r.status != ReportStatus.DISMISSED]

    sacco = build_sacco_performance(incidents, routes, config)
    route_risk = build_route_risk(incidents, routes, config)
    geo = build_geographic_risk_map(incidents, config)
    temporal = build_temporal_patterns(incidents, routes, bucketer, config)
    health = build_system_health(well_formed)

    return RiskSnapshot(
        period=period,
        generated_at=window_end,
        window_start=window_start,
        window_end=window_end,
        sacco_performance=sacco,
        route_risk_analysis=route_risk,
        geographic_risk_map=geo,
        temporal_patterns=temporal,
        system_health=health,
        resource_recommendations=build_resource_recommendations(incidents, routes, config),
        compliance_trends=build_compliance_trends(incidents, period, window_start, window_end, config),
        risk_indicators=build_risk_indicators(incidents),
        planning_insights=build_planning_insights(sacco, route_risk, geo, temporal, health, config),
    )


class RiskAnalyticsAggregator:
    """
    Fetches a period's reports and routes and builds the snapshot.

    Store reads are the only suspension points.
    """

    def __init__(
        self,
        report_store: ReportStore,
        route_store: RouteStore,
        config: Optional[AnalyticsConfig] = None,
        bucketer: Optional[TemporalBucketer] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self.config = config or AnalyticsConfig()
        self._reports = report_store
        self._routes = route_store
        self._bucketer = bucketer or TemporalBucketer()
        self._clock = clock or SystemClock()

    async def compute_risk_snapshot(
        self,
        period: Union[str, RiskPeriod],
        now: Optional[datetime] = None,
    ) -> RiskSnapshot:
        period = parse_period(period)
        now = ensure_utc(now or self._clock.now())

        reports = await self._reports.find_reports(
            ReportQuery(start=now - period.window, end=now)
        )
        routes = {
            route.route_id: route
            for route in await self._routes.list_routes(active_only=False)
        }
        snapshot = build_risk_snapshot(
            reports, routes, period, now, config=self.config, bucketer=self._bucketer
        )
        logger.info(
            f"Risk snapshot {period.value}: {snapshot.system_health.total_reports} reports, "
            f"{snapshot.route_risk_analysis.total_routes_analyzed} routes, "
            f"{len(snapshot.geographic_risk_map.high_risk_zones)} hotspots"
        )
        return snapshot


class CachedRiskAnalytics:
    """
    Short-TTL cache in front of RiskAnalyticsAggregator.

    One entry per period. Concurrent requests for a stale period
    share a single recomputation.
    """

    def __init__(
        self,
        aggregator: RiskAnalyticsAggregator,
        ttl_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._aggregator = aggregator
        self._ttl = aggregator.config.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock or SystemClock()
        self._entries: Dict[RiskPeriod, Tuple[datetime, RiskSnapshot]] = {}
        self._locks: Dict[RiskPeriod, asyncio.Lock] = {p: asyncio.Lock() for p in RiskPeriod}

    async def get_snapshot(self, period: Union[str, RiskPeriod]) -> RiskSnapshot:
        period = parse_period(period)
        async with self._locks[period]:
            cached = self._entries.get(period)
            now = self._clock.now()
            if cached is not None and (now - cached[0]).total_seconds() < self._ttl:
                return cached[1]

            snapshot = await self._aggregator.compute_risk_snapshot(period, now=now)
            self._entries[period] = (now, snapshot)
            return snapshot

    def invalidate(self, period: Optional[Union[str, RiskPeriod]] = None) -> None:
        if period is None:
            self._entries.clear()
        else:
            self._entries.pop(parse_period(period), None)
