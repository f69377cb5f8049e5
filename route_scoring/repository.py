"""
Route Scoring - SQL Repository.

============================================================
PURPOSE
============================================================
SQLAlchemy implementations of the store interfaces.

Provides:
- SqlReportStore: report queries, last_scored_at write-back
- SqlRouteStore: route lookups
- SqlScoreStore: keyed score upsert (whole-record replace)

============================================================
CONCURRENCY
============================================================
Sessions are synchronous; every call runs in a worker thread
via asyncio.to_thread with its own session and transaction.
Connection loss and pool timeouts surface as
TransientStoreError; all other database errors propagate.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker

from .clock import ensure_utc
from .database import transaction_scope
from .exceptions import TransientStoreError
from .models import ReportRecord, RouteRecord, ScoreRecord
from .stores import ReportStore, RouteStore, ScoreStore
from .types import (
    GeoPoint,
    Report,
    ReportQuery,
    ReportStatus,
    ReportType,
    RouteInfo,
    Score,
    Severity,
    TimeBucket,
    parse_enum,
    sort_reports,
)


logger = logging.getLogger(__name__)


TRANSIENT_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    return ensure_utc(value) if value is not None else None


class _SqlStore:
    """Shared thread offload and error translation."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Transient database failure during {operation}: {e}")
            raise TransientStoreError(operation, str(e)) from e


# ============================================================
# REPORTS
# ============================================================


def report_from_record(record: ReportRecord) -> Report:
    location = None
    if record.latitude is not None and record.longitude is not None:
        location = GeoPoint(lat=record.latitude, lng=record.longitude)
    return Report(
        id=record.id,
        route_id=record.route_id,
        report_type=parse_enum(ReportType, record.report_type),
        severity=parse_enum(Severity, record.severity),
        created_at=_utc(record.created_at),
        status=parse_enum(ReportStatus, record.status) or ReportStatus.PENDING,
        description=record.description or "",
        location=location,
        is_anonymous=bool(record.is_anonymous),
        device_fingerprint=record.device_fingerprint or "",
        verified_at=_utc(record.verified_at),
        resolved_at=_utc(record.resolved_at),
        last_scored_at=_utc(record.last_scored_at),
    )


def record_from_report(report: Report) -> ReportRecord:
    return ReportRecord(
        id=report.id,
        route_id=report.route_id,
        report_type=report.report_type.value if report.report_type else None,
        severity=report.severity.value if report.severity else None,
        status=report.status.value,
        description=report.description,
        latitude=report.location.lat if report.location else None,
        longitude=report.location.lng if report.location else None,
        is_anonymous=report.is_anonymous,
        device_fingerprint=report.device_fingerprint,
        created_at=_utc(report.created_at),
        verified_at=_utc(report.verified_at),
        resolved_at=_utc(report.resolved_at),
        last_scored_at=_utc(report.last_scored_at),
    )


class SqlReportStore(_SqlStore, ReportStore):
    async def add_reports(self, reports: Iterable[Report]) -> None:
        records = [record_from_report(r) for r in reports]

        def _write() -> None:
            with transaction_scope(self._session_factory) as session:
                for record in records:
                    session.merge(record)

        await self._run("add_reports", _write)

    async def find_reports(self, query: ReportQuery) -> List[Report]:
        def _read() -> List[Report]:
            stmt = select(ReportRecord)
            if query.route_id is not None:
                stmt = stmt.where(ReportRecord.route_id == query.route_id)
            if query.start is not None:
                stmt = stmt.where(ReportRecord.created_at >= ensure_utc(query.start))
            if query.end is not None:
                stmt = stmt.where(ReportRecord.created_at <= ensure_utc(query.end))
            if query.statuses is not None:
                stmt = stmt.where(ReportRecord.status.in_([s.value for s in query.statuses]))
            with transaction_scope(self._session_factory) as session:
                return [report_from_record(r) for r in session.scalars(stmt).all()]

        reports = await self._run("find_reports", _read)
        return sort_reports([r for r in reports if query.matches(r)])

    async def mark_scored(self, report_ids: Sequence[str], at: datetime) -> int:
        if not report_ids:
            return 0
        ids = list(report_ids)
        at = ensure_utc(at)

        def _write() -> int:
            with transaction_scope(self._session_factory) as session:
                result = session.execute(
                    update(ReportRecord)
                    .where(ReportRecord.id.in_(ids))
                    .values(last_scored_at=at)
                )
                return result.rowcount or 0

        touched = await self._run("mark_scored", _write)
        logger.debug(f"Marked {touched} report(s) scored")
        return touched


# ============================================================
# ROUTES
# ============================================================


def route_from_record(record: RouteRecord) -> RouteInfo:
    return RouteInfo(
        route_id=record.route_id,
        operator=record.operator,
        name=record.name or "",
        time_zone=record.time_zone,
        is_active=bool(record.is_active),
    )


class SqlRouteStore(_SqlStore, RouteStore):
    async def add_routes(self, routes: Iterable[RouteInfo]) -> None:
        records = [
            RouteRecord(
                route_id=r.route_id,
                operator=r.operator,
                name=r.name,
                time_zone=r.time_zone,
                is_active=r.is_active,
            )
            for r in routes
        ]

        def _write() -> None:
            with transaction_scope(self._session_factory) as session:
                for record in records:
                    session.merge(record)

        await self._run("add_routes", _write)

    async def get_route(self, route_id: str) -> Optional[RouteInfo]:
        def _read() -> Optional[RouteInfo]:
            with transaction_scope(self._session_factory) as session:
                record = session.get(RouteRecord, route_id)
                return route_from_record(record) if record is not None else None

        return await self._run("get_route", _read)

    async def list_routes(self, active_only: bool = True) -> List[RouteInfo]:
        def _read() -> List[RouteInfo]:
            stmt = select(RouteRecord).order_by(RouteRecord.route_id)
            if active_only:
                stmt = stmt.where(RouteRecord.is_active.is_(True))
            with transaction_scope(self._session_factory) as session:
                return [route_from_record(r) for r in session.scalars(stmt).all()]

        return await self._run("list_routes", _read)


# ============================================================
# SCORES
# ============================================================


def score_from_record(record: ScoreRecord) -> Score:
    return Score(
        route_id=record.route_id,
        time_bucket=TimeBucket(record.time_bucket),
        reliability_score=record.reliability_score,
        safety_score=record.safety_score,
        punctuality_score=record.punctuality_score,
        comfort_score=record.comfort_score,
        overall_score=record.overall_score,
        total_reports=record.total_reports,
        last_calculated=ensure_utc(record.last_calculated),
    )


class SqlScoreStore(_SqlStore, ScoreStore):
    async def upsert(self, score: Score) -> None:
        def _write() -> None:
            with transaction_scope(self._session_factory) as session:
                record = session.scalars(
                    select(ScoreRecord).where(
                        ScoreRecord.route_id == score.route_id,
                        ScoreRecord.time_bucket == score.time_bucket.value,
                    )
                ).one_or_none()
                if record is None:
                    record = ScoreRecord(
                        route_id=score.route_id,
                        time_bucket=score.time_bucket.value,
                    )
                    session.add(record)
                # Replace every field in one transaction
                record.reliability_score = score.reliability_score
                record.safety_score = score.safety_score
                record.punctuality_score = score.punctuality_score
                record.comfort_score = score.comfort_score
                record.overall_score = score.overall_score
                record.total_reports = score.total_reports
                record.last_calculated = ensure_utc(score.last_calculated)

        await self._run("upsert_score", _write)

    async def get_scores(self, route_id: str) -> List[Score]:
        def _read() -> List[Score]:
            stmt = select(ScoreRecord).where(ScoreRecord.route_id == route_id)
            with transaction_scope(self._session_factory) as session:
                return [score_from_record(r) for r in session.scalars(stmt).all()]

        scores = await self._run("get_scores", _read)
        return sorted(scores, key=lambda s: s.time_bucket.order)

    async def list_scores(self) -> List[Score]:
        def _read() -> List[Score]:
            with transaction_scope(self._session_factory) as session:
                return [score_from_record(r) for r in session.scalars(select(ScoreRecord)).all()]

        scores = await self._run("list_scores", _read)
        return sorted(scores, key=lambda s: (s.route_id, s.time_bucket.order))
