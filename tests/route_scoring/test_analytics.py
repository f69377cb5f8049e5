"""
Tests for the Risk Analytics Aggregator.

Tests cover:
- SACCO performance ranking and tie-breaks
- Route risk (zero-incident routes excluded)
- Geographic hotspot threshold
- Temporal patterns and peaks
- System health, resource recommendations
- Compliance trends, risk indicators, planning insights
- Determinism and the TTL cache
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from route_scoring.analytics import (
    CachedRiskAnalytics,
    RiskAnalyticsAggregator,
    build_risk_snapshot,
    parse_period,
)
from route_scoring.bucketing import TemporalBucketer
from route_scoring.config import AnalyticsConfig
from route_scoring.exceptions import InvalidPeriodError
from route_scoring.stores import InMemoryReportStore, InMemoryRouteStore
from route_scoring.types import (
    GeoPoint,
    ReportStatus,
    ReportType,
    RiskPeriod,
    RouteInfo,
    Severity,
    TrendDirection,
)


def snapshot_of(reports, route_map, now, period="7d", **config_overrides):
    return build_risk_snapshot(
        reports,
        route_map,
        period,
        now,
        config=AnalyticsConfig(**config_overrides),
        bucketer=TemporalBucketer(),
    )


# =============================================================
# TEST: Period parsing
# =============================================================

class TestPeriod:

    @pytest.mark.parametrize("raw, expected", [
        ("7d", RiskPeriod.WEEK),
        ("30d", RiskPeriod.MONTH),
        (" 90D ", RiskPeriod.QUARTER),
    ])
    def test_valid_periods(self, raw, expected):
        assert parse_period(raw) == expected

    def test_invalid_period_raises(self):
        with pytest.raises(InvalidPeriodError) as exc_info:
            parse_period("14d")
        assert "7d" in exc_info.value.message


# =============================================================
# TEST: Window
# =============================================================

class TestIncidentWindow:

    def test_reports_outside_window_ignored(self, make_report, route_map, now):
        inside = make_report(age_days=3)
        outside = make_report(age_days=10)
        snapshot = snapshot_of([inside, outside], route_map, now)
        assert snapshot.system_health.total_reports == 1
        assert snapshot.window_start == now - timedelta(days=7)
        assert snapshot.window_end == now

    def test_dismissed_reports_are_not_incidents(self, make_report, route_map, now):
        dismissed = make_report(severity=Severity.CRITICAL, status=ReportStatus.DISMISSED)
        snapshot = snapshot_of([dismissed], route_map, now)

        assert snapshot.route_risk_analysis.total_routes_analyzed == 0
        assert snapshot.system_health.total_reports == 1

    def test_malformed_reports_skipped(self, make_report, route_map, now):
        snapshot = snapshot_of([make_report(severity=None), make_report()], route_map, now)
        assert snapshot.system_health.total_reports == 1


# =============================================================
# TEST: SACCO performance
# =============================================================

class TestSaccoPerformance:

    def test_ranking_by_critical_then_total_then_id(self, make_report, route_map, now):
        reports = (
            [make_report(route_id="R1", severity=Severity.CRITICAL) for _ in range(2)]
            + [make_report(route_id="R2", severity=Severity.CRITICAL) for _ in range(2)]
            + [make_report(route_id="R3", severity=Severity.CRITICAL) for _ in range(2)]
            + [make_report(route_id="R3", severity=Severity.LOW)]
        )
        sacco = snapshot_of(reports, route_map, now).sacco_performance

        assert [e.sacco_id for e in sacco.ranking] == ["SACCO-C", "SACCO-A", "SACCO-B"]
        assert sacco.total_saccos == 3
        assert sacco.critical_saccos == 3
        assert sacco.average_reports_per_sacco == pytest.approx(7 / 3)

    def test_top_performers_require_minimum_reports(self, make_report, route_map, now):
        reports = (
            [make_report(route_id="R1", severity=Severity.LOW) for _ in range(6)]
            + [make_report(route_id="R2", severity=Severity.LOW) for _ in range(2)]
            + [make_report(route_id="R3", severity=Severity.CRITICAL)]
            + [make_report(route_id="R3", severity=Severity.LOW) for _ in range(4)]
        )
        sacco = snapshot_of(reports, route_map, now).sacco_performance

        assert [e.sacco_id for e in sacco.top_performers] == ["SACCO-A", "SACCO-C"]
        assert sacco.top_performers[1].critical_ratio == pytest.approx(0.2)

    def test_unknown_route_skipped(self, make_report, route_map, now):
        snapshot = snapshot_of([make_report(route_id="GHOST")], route_map, now)
        assert snapshot.sacco_performance.total_saccos == 0
        # Still an incident for route-level sections
        assert snapshot.route_risk_analysis.total_routes_analyzed == 1

    def test_tied_saccos_ordered_by_id(self, make_report, now):
        route_map = {
            "R9": RouteInfo(route_id="R9", operator="SACCO-Z", time_zone="UTC"),
            "R8": RouteInfo(route_id="R8", operator="SACCO-M", time_zone="UTC"),
        }
        reports = [make_report(route_id="R9"), make_report(route_id="R8")]
        sacco = snapshot_of(reports, route_map, now).sacco_performance
        assert [e.sacco_id for e in sacco.poor_performers] == ["SACCO-M", "SACCO-Z"]


# =============================================================
# TEST: Route risk
# =============================================================

class TestRouteRisk:

    def test_risk_score_formula(self, make_report, route_map, now):
        reports = [
            make_report(route_id="R1", severity=Severity.CRITICAL),
            make_report(route_id="R1", severity=Severity.HIGH),
            make_report(route_id="R1", severity=Severity.MEDIUM),
            make_report(route_id="R1", severity=Severity.LOW),
        ]
        analysis = snapshot_of(reports, route_map, now).route_risk_analysis
        entry = analysis.high_risk_routes[0]

        assert entry.risk_score == pytest.approx(6 / 4)
        assert entry.operator == "SACCO-A"
        assert entry.route_name == "CBD - Westlands"
        assert analysis.critical_routes == 0

    def test_zero_incident_route_excluded(self, make_report, route_map, now):
        reports = [
            make_report(route_id="R1", severity=Severity.CRITICAL),
            make_report(route_id="R2", severity=Severity.LOW),
        ]
        analysis = snapshot_of(reports, route_map, now).route_risk_analysis

        route_ids = [e.route_id for e in analysis.high_risk_routes]
        assert route_ids == ["R1", "R2"]
        assert "R3" not in route_ids
        assert analysis.total_routes_analyzed == 2
        assert analysis.average_risk_score == pytest.approx(1.5)
        assert analysis.critical_routes == 1

    def test_equal_risk_ranked_by_route_id(self, make_report, route_map, now):
        reports = [make_report(route_id=r, severity=Severity.HIGH) for r in ("R3", "R1", "R2")]
        analysis = snapshot_of(reports, route_map, now).route_risk_analysis
        assert [e.route_id for e in analysis.high_risk_routes] == ["R1", "R2", "R3"]


# =============================================================
# TEST: Geographic hotspots
# =============================================================

class TestGeographicRiskMap:

    def test_dense_cell_flagged_as_hotspot(self, make_report, route_map, now):
        hotspot = GeoPoint(lat=-1.2834, lng=36.8219)
        scattered = [
            GeoPoint(lat=-1.30, lng=36.80),
            GeoPoint(lat=-1.32, lng=36.84),
            GeoPoint(lat=-1.25, lng=36.78),
            GeoPoint(lat=-1.20, lng=36.90),
            GeoPoint(lat=-1.35, lng=36.75),
        ]
        reports = [make_report(location=hotspot) for _ in range(10)]
        reports += [make_report(location=p) for p in scattered]

        geo = snapshot_of(reports, route_map, now).geographic_risk_map

        assert geo.total_risk_zones == 6
        assert len(geo.high_risk_zones) == 1
        top = geo.high_risk_zones[0]
        assert (top.lat, top.lng) == (pytest.approx(-1.28), pytest.approx(36.82))
        assert top.incident_count == 10
        assert geo.average_incidents_per_zone == pytest.approx(2.5)
        assert geo.threshold == pytest.approx(2.5 + 1.5 * 11.25 ** 0.5)

    def test_uniform_counts_have_no_hotspot(self, make_report, route_map, now):
        points = [GeoPoint(lat=-1.0 - i / 10, lng=36.0) for i in range(4)]
        reports = [make_report(location=p) for p in points for _ in range(3)]
        geo = snapshot_of(reports, route_map, now).geographic_risk_map
        assert geo.high_risk_zones == []

    def test_cells_ordered_by_count_then_coordinates(self, make_report, route_map, now):
        reports = [
            make_report(location=GeoPoint(lat=1.0, lng=2.0)),
            make_report(location=GeoPoint(lat=-1.0, lng=2.0)),
            make_report(location=GeoPoint(lat=-1.0, lng=1.0)),
        ]
        cells = snapshot_of(reports, route_map, now).geographic_risk_map.cells
        assert [(c.lat, c.lng) for c in cells] == [(-1.0, 1.0), (-1.0, 2.0), (1.0, 2.0)]

    def test_reports_without_location_ignored(self, make_report, route_map, now):
        geo = snapshot_of([make_report(location=None)], route_map, now).geographic_risk_map
        assert geo.cells == []
        assert geo.threshold == 0.0


# =============================================================
# TEST: Temporal patterns
# =============================================================

class TestTemporalPatterns:

    def test_evenly_spread_reports_have_three_peaks(self, make_report, route_map, now):
        base = datetime(2024, 6, 6, 0, 0, tzinfo=timezone.utc)
        reports = [
            make_report(created_at=base + timedelta(days=i % 6, hours=i % 24))
            for i in range(50)
        ]
        temporal = snapshot_of(reports, route_map, now).temporal_patterns

        assert sum(temporal.hourly_counts) == 50
        assert len(temporal.peak_hours) == 3
        selected = {p.index for p in temporal.peak_hours}
        others = [c for hour, c in enumerate(temporal.hourly_counts) if hour not in selected]
        assert all(p.count >= max(others) for p in temporal.peak_hours)
        assert [p.index for p in temporal.peak_hours] == [0, 1, 2]
        assert temporal.average_incidents_per_hour == pytest.approx(50 / 24)

    def test_local_time_used_for_histograms(self, make_report, now):
        route_map = {"R1": RouteInfo(route_id="R1", operator="SACCO-A", time_zone="Africa/Nairobi")}
        # Sunday 21:00 UTC = Monday 00:00 EAT
        report = make_report(created_at=datetime(2024, 6, 9, 21, 0, tzinfo=timezone.utc))
        temporal = snapshot_of([report], route_map, now).temporal_patterns

        assert temporal.hourly_counts[0] == 1
        assert temporal.weekday_counts[0] == 1


# =============================================================
# TEST: System health
# =============================================================

class TestSystemHealth:

    def test_resolution_rate_and_response_time(self, make_report, route_map, now):
        created = now - timedelta(days=2)
        reports = [
            make_report(
                created_at=created,
                status=ReportStatus.RESOLVED,
                resolved_at=created + timedelta(hours=2),
            ),
            make_report(
                created_at=created,
                status=ReportStatus.VERIFIED,
                verified_at=created + timedelta(hours=4),
                resolved_at=created + timedelta(hours=10),
            ),
            make_report(created_at=created),
            make_report(created_at=created, status=ReportStatus.DISMISSED),
        ]
        health = snapshot_of(reports, route_map, now).system_health

        assert health.total_reports == 4
        assert health.resolution_rate == pytest.approx(0.5)
        assert health.average_response_time_hours == pytest.approx(3.0)

    def test_data_quality(self, make_report, route_map, now):
        reports = [
            make_report(),
            make_report(description="   "),
            make_report(location=GeoPoint(lat=0.0, lng=0.0)),
            make_report(description="", location=None),
        ]
        health = snapshot_of(reports, route_map, now).system_health
        assert health.data_quality == pytest.approx((1.0 + 0.5 + 0.5 + 0.0) / 4)

    def test_empty_window(self, route_map, now):
        health = snapshot_of([], route_map, now).system_health
        assert health.total_reports == 0
        assert health.resolution_rate == 0.0
        assert health.data_quality == 0.0


# =============================================================
# TEST: Resource recommendations
# =============================================================

class TestResourceRecommendations:

    def test_priority_formula_and_high_priority_count(self, make_report, route_map, now):
        reports = (
            [make_report(route_id="R1", severity=Severity.CRITICAL) for _ in range(4)]
            + [make_report(route_id="R1", severity=Severity.LOW) for _ in range(4)]
            + [make_report(route_id="R2", severity=Severity.HIGH) for _ in range(2)]
        )
        rec = snapshot_of(reports, route_map, now).resource_recommendations

        assert [r.sacco_id for r in rec.priority_saccos] == ["SACCO-A", "SACCO-B"]
        assert rec.priority_saccos[0].priority_score == pytest.approx(12.0)
        assert rec.priority_saccos[1].priority_score == pytest.approx(1.0)
        assert rec.high_priority_count == 1

    def test_recommendations_capped(self, make_report, now):
        route_map = {
            f"R{i}": RouteInfo(route_id=f"R{i}", operator=f"SACCO-{i:02d}", time_zone="UTC")
            for i in range(15)
        }
        reports = [make_report(route_id=f"R{i}") for i in range(15)]
        rec = snapshot_of(reports, route_map, now).resource_recommendations
        assert len(rec.priority_saccos) == 10


# =============================================================
# TEST: Supplementary sections
# =============================================================

class TestSupplementarySections:

    def test_compliance_trend_increasing(self, make_report, route_map, now):
        reports = [make_report(age_days=d) for d in (0.1, 0.2, 1.1, 1.2, 2.1)]
        trends = snapshot_of(reports, route_map, now).compliance_trends

        assert trends.trend_direction == TrendDirection.INCREASING
        assert trends.daily_trends[0].day == (now - timedelta(days=7)).date()
        assert trends.daily_trends[-1].day == now.date()
        assert sum(d.count for d in trends.daily_trends) == 5
        assert trends.average_daily_reports == pytest.approx(5 / 7)

    def test_compliance_trend_stable_when_empty(self, route_map, now):
        trends = snapshot_of([], route_map, now).compliance_trends
        assert trends.trend_direction == TrendDirection.STABLE

    def test_risk_indicators(self, make_report, route_map, now):
        reports = [
            make_report(report_type=ReportType.SAFETY, severity=Severity.CRITICAL),
            make_report(report_type=ReportType.SAFETY, severity=Severity.LOW),
            make_report(report_type=ReportType.DELAY, severity=Severity.LOW),
            make_report(report_type=ReportType.BREAKDOWN, severity=Severity.LOW),
        ]
        indicators = snapshot_of(reports, route_map, now).risk_indicators

        assert [t.report_type for t in indicators.top_risks] == [
            ReportType.SAFETY, ReportType.BREAKDOWN, ReportType.DELAY,
        ]
        assert [t.report_type for t in indicators.critical_risk_types] == [ReportType.SAFETY]
        assert indicators.average_severity_level == pytest.approx((4 + 1 + 1 + 1) / 4)

    def test_planning_insights(self, make_report, route_map, now):
        reports = [
            make_report(route_id="R1", severity=Severity.CRITICAL, description="", location=None)
            for _ in range(3)
        ]
        insights = snapshot_of(reports, route_map, now).planning_insights

        assert "sacco_compliance" in insights.focus_areas
        assert "route_safety" in insights.focus_areas
        assert "response_capacity" in insights.focus_areas
        assert "data_quality" in insights.focus_areas
        assert any("SACCO-A" in action for action in insights.recommended_actions)


# =============================================================
# TEST: Determinism
# =============================================================

class TestDeterminism:

    def test_identical_input_identical_snapshot(self, make_report, route_map, now):
        rng = random.Random(3)
        reports = [
            make_report(
                route_id=rng.choice(["R1", "R2", "R3"]),
                report_type=rng.choice(list(ReportType)),
                severity=rng.choice(list(Severity)),
                age_days=rng.uniform(0, 6.9),
                location=GeoPoint(lat=-1.28 + rng.choice([0, 0.01, 0.02]), lng=36.82),
            )
            for _ in range(60)
        ]
        shuffled = list(reports)
        rng.shuffle(shuffled)

        first = snapshot_of(reports, route_map, now)
        second = snapshot_of(shuffled, route_map, now)
        assert first.to_dict() == second.to_dict()


# =============================================================
# TEST: Store-backed aggregator and cache
# =============================================================

class TestCachedRiskAnalytics:

    @pytest.mark.asyncio
    async def test_compute_from_stores(self, make_report, routes, clock):
        report_store = InMemoryReportStore([make_report(route_id="R1", age_days=1)])
        aggregator = RiskAnalyticsAggregator(report_store, InMemoryRouteStore(routes), clock=clock)

        snapshot = await aggregator.compute_risk_snapshot("7d")

        assert snapshot.period == RiskPeriod.WEEK
        assert snapshot.sacco_performance.ranking[0].sacco_id == "SACCO-A"

    @pytest.mark.asyncio
    async def test_cache_serves_within_ttl(self, clock):
        aggregator = RiskAnalyticsAggregator(
            InMemoryReportStore(), InMemoryRouteStore(), config=AnalyticsConfig(cache_ttl_seconds=300)
        )
        aggregator.compute_risk_snapshot = AsyncMock(side_effect=["first", "second"])
        cache = CachedRiskAnalytics(aggregator, clock=clock)

        assert await cache.get_snapshot("30d") == "first"
        clock.advance(seconds=299)
        assert await cache.get_snapshot("30d") == "first"
        clock.advance(seconds=2)
        assert await cache.get_snapshot("30d") == "second"

    @pytest.mark.asyncio
    async def test_cache_is_per_period(self, clock):
        aggregator = RiskAnalyticsAggregator(InMemoryReportStore(), InMemoryRouteStore())
        aggregator.compute_risk_snapshot = AsyncMock(side_effect=["week", "month"])
        cache = CachedRiskAnalytics(aggregator, clock=clock)

        assert await cache.get_snapshot("7d") == "week"
        assert await cache.get_snapshot("30d") == "month"
        assert aggregator.compute_risk_snapshot.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_period_rejected_before_compute(self, clock):
        aggregator = RiskAnalyticsAggregator(InMemoryReportStore(), InMemoryRouteStore())
        aggregator.compute_risk_snapshot = AsyncMock()
        cache = CachedRiskAnalytics(aggregator, clock=clock)

        with pytest.raises(InvalidPeriodError):
            await cache.get_snapshot("1y")
        aggregator.compute_risk_snapshot.assert_not_awaited()
