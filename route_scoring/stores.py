"""
Route Scoring - Store Interfaces.

============================================================
PURPOSE
============================================================
Abstract async interfaces for the three external stores the
engine talks to, plus in-memory implementations used by tests
and local runs.

- ReportStore: commuter reports (read; optional last_scored_at)
- RouteStore:  route -> operator / time zone lookup (read-only)
- ScoreStore:  Score records keyed by (route_id, time_bucket)

============================================================
CONTRACT
============================================================
- Every method may raise TransientStoreError
- ScoreStore.upsert replaces the whole record for its key;
  a concurrent reader sees either the old or the new record
- Reads return snapshots; callers never mutate store state

============================================================
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .types import Report, ReportQuery, RouteInfo, Score, TimeBucket, sort_reports


# ============================================================
# INTERFACES
# ============================================================


class ReportStore(ABC):
    """Read access to commuter reports."""

    @abstractmethod
    async def find_reports(self, query: ReportQuery) -> List[Report]:
        """Reports matching the query, in (created_at, id) order."""
        pass

    @abstractmethod
    async def mark_scored(self, report_ids: Sequence[str], at: datetime) -> int:
        """Record last_scored_at on the given reports. Returns rows touched."""
        pass


class RouteStore(ABC):
    """Read access to route metadata."""

    @abstractmethod
    async def get_route(self, route_id: str) -> Optional[RouteInfo]:
        pass

    @abstractmethod
    async def list_routes(self, active_only: bool = True) -> List[RouteInfo]:
        pass


class ScoreStore(ABC):
    """Keyed Score persistence."""

    @abstractmethod
    async def upsert(self, score: Score) -> None:
        """Insert or fully replace the record for score.key."""
        pass

    @abstractmethod
    async def get_scores(self, route_id: str) -> List[Score]:
        """All bucket scores of one route, in bucket order."""
        pass

    @abstractmethod
    async def list_scores(self) -> List[Score]:
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================


class InMemoryReportStore(ReportStore):
    def __init__(self, reports: Optional[Iterable[Report]] = None):
        self._reports: Dict[str, Report] = {}
        self._anonymous: List[Report] = []
        self._lock = asyncio.Lock()
        for report in reports or []:
            self._put(report)

    def _put(self, report: Report) -> None:
        # Reports without an id are kept so ingestion can reject them
        if report.id:
            self._reports[report.id] = report
        else:
            self._anonymous.append(report)

    async def add(self, report: Report) -> None:
        async with self._lock:
            self._put(report)

    async def find_reports(self, query: ReportQuery) -> List[Report]:
        async with self._lock:
            candidates = list(self._reports.values()) + self._anonymous
        return sort_reports([r for r in candidates if query.matches(r)])

    async def mark_scored(self, report_ids: Sequence[str], at: datetime) -> int:
        touched = 0
        async with self._lock:
            for report_id in report_ids:
                report = self._reports.get(report_id)
                if report is not None:
                    self._reports[report_id] = replace(report, last_scored_at=at)
                    touched += 1
        return touched


class InMemoryRouteStore(RouteStore):
    def __init__(self, routes: Optional[Iterable[RouteInfo]] = None):
        self._routes: Dict[str, RouteInfo] = {r.route_id: r for r in routes or []}
        self._lock = asyncio.Lock()

    async def add(self, route: RouteInfo) -> None:
        async with self._lock:
            self._routes[route.route_id] = route

    async def get_route(self, route_id: str) -> Optional[RouteInfo]:
        async with self._lock:
            return self._routes.get(route_id)

    async def list_routes(self, active_only: bool = True) -> List[RouteInfo]:
        async with self._lock:
            routes = list(self._routes.values())
        if active_only:
            routes = [r for r in routes if r.is_active]
        return sorted(routes, key=lambda r: r.route_id)


class InMemoryScoreStore(ScoreStore):
    def __init__(self):
        self._scores: Dict[Tuple[str, TimeBucket], Score] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, score: Score) -> None:
        async with self._lock:
            self._scores[score.key] = score

    async def get_scores(self, route_id: str) -> List[Score]:
        async with self._lock:
            scores = [s for s in self._scores.values() if s.route_id == route_id]
        return sorted(scores, key=lambda s: s.time_bucket.order)

    async def list_scores(self) -> List[Score]:
        async with self._lock:
            scores = list(self._scores.values())
        return sorted(scores, key=lambda s: (s.route_id, s.time_bucket.order))
