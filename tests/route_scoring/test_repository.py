"""
Tests for the SQL stores.

Runs against in-memory SQLite.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from route_scoring.config import AggregationConfig, ScoringConfig
from route_scoring.database import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
    transaction_scope,
    verify_database_connection,
)
from route_scoring.engine import ScoringEngine
from route_scoring.exceptions import TransientStoreError
from route_scoring.models import ReportRecord, ScoreRecord
from route_scoring.repository import SqlReportStore, SqlRouteStore, SqlScoreStore
from route_scoring.types import (
    GeoPoint,
    ReportQuery,
    ReportStatus,
    RouteInfo,
    Score,
    TimeBucket,
)


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def session_factory():
    engine = create_database_engine("sqlite:///:memory:")
    create_all_tables(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def report_store(session_factory):
    return SqlReportStore(session_factory)


@pytest.fixture
def route_store(session_factory):
    return SqlRouteStore(session_factory)


@pytest.fixture
def score_store(session_factory):
    return SqlScoreStore(session_factory)


def make_score(now, bucket=TimeBucket.MORNING, overall=4.0, total=1):
    return Score(
        route_id="R1",
        time_bucket=bucket,
        reliability_score=overall,
        safety_score=overall,
        punctuality_score=overall,
        comfort_score=overall,
        overall_score=overall,
        total_reports=total,
        last_calculated=now,
    )


# =============================================================
# TEST: Reports
# =============================================================

class TestSqlReportStore:

    @pytest.mark.asyncio
    async def test_round_trip_preserves_fields(self, report_store, make_report, now):
        report = make_report(
            route_id="R1",
            is_anonymous=True,
            device_fingerprint="dev-9",
            status=ReportStatus.VERIFIED,
            verified_at=now + timedelta(hours=1),
        )
        await report_store.add_reports([report])

        stored = await report_store.find_reports(ReportQuery(route_id="R1"))

        assert stored == [report]
        assert stored[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_query_filters(self, report_store, make_report, now):
        recent = make_report(route_id="R1", age_days=1)
        old = make_report(route_id="R1", age_days=20)
        other = make_report(route_id="R2", age_days=1, status=ReportStatus.DISMISSED)
        await report_store.add_reports([recent, old, other])

        in_window = await report_store.find_reports(
            ReportQuery(start=now - timedelta(days=7), end=now)
        )
        dismissed = await report_store.find_reports(
            ReportQuery(statuses=(ReportStatus.DISMISSED,))
        )

        assert [r.id for r in in_window] == sorted([recent.id, other.id])
        assert [r.id for r in dismissed] == [other.id]

    @pytest.mark.asyncio
    async def test_unknown_stored_enum_reads_as_missing(self, report_store, session_factory, now):
        with transaction_scope(session_factory) as session:
            session.add(ReportRecord(
                id="legacy-1",
                route_id="R1",
                report_type="delay",
                severity="catastrophic",
                status="pending",
                created_at=now,
            ))

        stored = await report_store.find_reports(ReportQuery(route_id="R1"))

        assert stored[0].severity is None

    @pytest.mark.asyncio
    async def test_location_round_trip(self, report_store, make_report):
        await report_store.add_reports([make_report(location=GeoPoint(lat=-1.3, lng=36.9))])
        stored = await report_store.find_reports(ReportQuery())
        assert stored[0].location == GeoPoint(lat=-1.3, lng=36.9)

    @pytest.mark.asyncio
    async def test_mark_scored(self, report_store, make_report, now):
        reports = [make_report(), make_report()]
        await report_store.add_reports(reports)

        touched = await report_store.mark_scored([reports[0].id, "missing"], now)
        stored = {r.id: r for r in await report_store.find_reports(ReportQuery())}

        assert touched == 1
        assert stored[reports[0].id].last_scored_at == now
        assert stored[reports[1].id].last_scored_at is None

    @pytest.mark.asyncio
    async def test_operational_error_becomes_transient(self):
        factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
        store = SqlReportStore(factory)

        with pytest.raises(TransientStoreError) as exc_info:
            await store.find_reports(ReportQuery())
        assert exc_info.value.operation == "find_reports"


# =============================================================
# TEST: Routes
# =============================================================

class TestSqlRouteStore:

    @pytest.mark.asyncio
    async def test_lookup_and_listing(self, route_store):
        await route_store.add_routes([
            RouteInfo(route_id="R2", operator="SACCO-B", time_zone="Africa/Nairobi"),
            RouteInfo(route_id="R1", operator="SACCO-A"),
            RouteInfo(route_id="R3", operator="SACCO-C", is_active=False),
        ])

        assert (await route_store.get_route("R2")).time_zone == "Africa/Nairobi"
        assert await route_store.get_route("NOPE") is None
        assert [r.route_id for r in await route_store.list_routes()] == ["R1", "R2"]
        assert len(await route_store.list_routes(active_only=False)) == 3


# =============================================================
# TEST: Scores
# =============================================================

class TestSqlScoreStore:

    @pytest.mark.asyncio
    async def test_upsert_replaces_whole_record(self, score_store, session_factory, now):
        await score_store.upsert(make_score(now, overall=4.0, total=1))
        later = now + timedelta(minutes=15)
        await score_store.upsert(make_score(later, overall=2.5, total=7))

        scores = await score_store.get_scores("R1")

        assert scores == [make_score(later, overall=2.5, total=7)]
        with transaction_scope(session_factory) as session:
            assert session.query(ScoreRecord).count() == 1

    @pytest.mark.asyncio
    async def test_scores_returned_in_bucket_order(self, score_store, now):
        for bucket in (TimeBucket.NIGHT, TimeBucket.MORNING, TimeBucket.EVENING):
            await score_store.upsert(make_score(now, bucket=bucket))

        buckets = [s.time_bucket for s in await score_store.get_scores("R1")]
        assert buckets == [TimeBucket.MORNING, TimeBucket.EVENING, TimeBucket.NIGHT]


# =============================================================
# TEST: Engine over SQL stores
# =============================================================

class TestEngineOverSql:

    @pytest.mark.asyncio
    async def test_pass_persists_scores(
        self, report_store, route_store, score_store, make_report, clock
    ):
        await route_store.add_routes([RouteInfo(route_id="R1", operator="SACCO-A", time_zone="UTC")])
        await report_store.add_reports([
            make_report(route_id="R1", created_at=datetime(2024, 6, 12, 8, 0, tzinfo=timezone.utc)),
            make_report(route_id="R1", created_at=datetime(2024, 6, 11, 23, 0, tzinfo=timezone.utc)),
        ])
        engine = ScoringEngine(
            report_store,
            route_store,
            score_store,
            config=ScoringConfig(aggregation=AggregationConfig(max_workers=1, mark_scored=True)),
            clock=clock,
        )

        result = await engine.run_pass()

        assert result.buckets_written == 2
        buckets = [s.time_bucket for s in await score_store.get_scores("R1")]
        assert buckets == [TimeBucket.MORNING, TimeBucket.NIGHT]
        stored = await report_store.find_reports(ReportQuery(route_id="R1"))
        assert all(r.last_scored_at == clock.now() for r in stored)


# =============================================================
# TEST: Connection check
# =============================================================

class TestVerifyConnection:

    def test_live_database_verifies(self):
        engine = create_database_engine("sqlite:///:memory:")
        try:
            assert verify_database_connection(engine) is True
        finally:
            engine.dispose()

    def test_unreachable_database_is_transient(self):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        with pytest.raises(TransientStoreError) as exc_info:
            verify_database_connection(engine)
        assert exc_info.value.operation == "connect"
