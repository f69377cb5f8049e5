"""
Route Scoring - Scoring Engine.

============================================================
MAIN ORCHESTRATOR
============================================================

The ScoringEngine runs aggregation passes:

1. List active routes from the Route Store
2. For each route (bounded fan-out, one worker per route):
   a. Read its reports
   b. Ingestion filter -> eligible reports with weights
   c. Temporal bucketer -> group by time bucket
   d. Aggregator -> one Score per bucket
   e. Upsert every bucket with eligible reports, and rewrite
      existing buckets that have none with the neutral score
3. Summarise the pass

It also serves the read side of the Score Store: per-route
scores, top/worst rankings and scoring statistics.

============================================================
PUBLIC INTERFACE
============================================================

```python
engine = ScoringEngine(report_store, route_store, score_store)

result = await engine.run_pass()
scores = await engine.get_route_scores("route-42")
best = await engine.get_ranked_routes(limit=10, best=True)
```

============================================================
CONCURRENCY
============================================================

Passes are serialised by a pass lock, so a manual recalculation
never overlaps a scheduled pass. Within a pass each route is
handled by exactly one task; writes for a bucket are exclusive.

============================================================
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .aggregator import ScoreAggregator
from .bucketing import TemporalBucketer
from .clock import ClockProtocol, SystemClock
from .config import ScoringConfig, get_default_config
from .exceptions import RouteNotFoundError, TransientStoreError
from .ingestion import IngestionFilter
from .stores import ReportStore, RouteStore, ScoreStore
from .types import (
    EligibleReport,
    PassResult,
    ReportQuery,
    RouteInfo,
    RouteRanking,
    Score,
    ScoringStats,
    TimeBucket,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteOutcome:
    """What scoring one route produced."""

    route_id: str
    scores: List[Score]
    reports_considered: int
    reports_rejected: int


class ScoringEngine:
    """
    Aggregation pass orchestrator.

    ============================================================
    RESPONSIBILITIES
    ============================================================

    - Wires ingestion, bucketing and aggregation together
    - Bounds per-pass parallelism
    - Isolates per-route store failures
    - Serves score reads and rankings

    ============================================================
    """

    def __init__(
        self,
        report_store: ReportStore,
        route_store: RouteStore,
        score_store: ScoreStore,
        config: Optional[ScoringConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self.config = config or get_default_config()
        self._reports = report_store
        self._routes = route_store
        self._scores = score_store
        self._clock = clock or SystemClock()

        self._filter = IngestionFilter(self.config.ingestion)
        self._bucketer = TemporalBucketer(self.config.bucketing)
        self._aggregator = ScoreAggregator(self.config.aggregation)

        self._pass_lock = asyncio.Lock()

        logger.info(
            f"ScoringEngine initialized (max_workers={self.config.aggregation.max_workers}, "
            f"zone={self.config.bucketing.default_time_zone})"
        )

    @property
    def bucketer(self) -> TemporalBucketer:
        return self._bucketer

    @property
    def is_pass_running(self) -> bool:
        return self._pass_lock.locked()

    # --------------------------------------------------------
    # PASSES
    # --------------------------------------------------------

    async def run_pass(self) -> PassResult:
        """
        Run one full aggregation pass over all active routes.

        A route that fails for any reason is recorded in routes_failed
        and retried next pass; the pass returns only after every route
        worker has settled. Failure to list routes fails the pass.

        Returns:
            PassResult summary

        Raises:
            TransientStoreError: If the route list cannot be read
        """
        async with self._pass_lock:
            now = self._clock.now()
            result = PassResult(started_at=now)

            routes = await self._routes.list_routes(active_only=True)
            semaphore = asyncio.Semaphore(self.config.aggregation.max_workers)

            async def _worker(route: RouteInfo) -> Optional[RouteOutcome]:
                async with semaphore:
                    try:
                        return await self._score_route(route, now)
                    except TransientStoreError as e:
                        logger.warning(f"Skipping route {route.route_id} this pass: {e.message}")
                        return None
                    except Exception:
                        logger.exception(f"Scoring route {route.route_id} failed; retrying next pass")
                        return None

            outcomes = await asyncio.gather(*(_worker(route) for route in routes))

            for route, outcome in zip(routes, outcomes):
                if outcome is None:
                    result.routes_failed.append(route.route_id)
                    continue
                result.routes_scored += 1
                result.buckets_written += len(outcome.scores)
                result.reports_considered += outcome.reports_considered
                result.reports_rejected += outcome.reports_rejected

            result.routes_failed.sort()
            result.finished_at = self._clock.now()

            logger.info(
                f"Scoring pass complete: {result.routes_scored} routes scored, "
                f"{len(result.routes_failed)} failed, {result.buckets_written} buckets written, "
                f"{result.reports_considered} reports ({result.reports_rejected} rejected)"
            )
            return result

    async def recalculate_route(self, route_id: str) -> List[Score]:
        """
        Recompute every bucket of one route outside the schedule.

        Raises:
            RouteNotFoundError: If the Route Store does not know the route
        """
        route = await self._routes.get_route(route_id)
        if route is None:
            raise RouteNotFoundError(route_id)

        async with self._pass_lock:
            outcome = await self._score_route(route, self._clock.now())
        logger.info(f"Recalculated route {route_id}: {len(outcome.scores)} bucket(s)")
        return outcome.scores

    async def _score_route(self, route: RouteInfo, now: datetime) -> RouteOutcome:
        lookback = self.config.aggregation.lookback_days
        query = ReportQuery(
            route_id=route.route_id,
            start=now - timedelta(days=lookback) if lookback else None,
        )
        reports = await self._reports.find_reports(query)
        filtered = self._filter.filter_batch(reports)

        grouped: Dict[TimeBucket, List[EligibleReport]] = defaultdict(list)
        for eligible in filtered.eligible:
            bucket = self._bucketer.bucket_of(eligible.report.created_at, route.time_zone)
            grouped[bucket].append(eligible)

        existing = {score.time_bucket for score in await self._scores.get_scores(route.route_id)}

        written: List[Score] = []
        for bucket in TimeBucket.ordered():
            if bucket not in grouped and bucket not in existing:
                continue
            score = self._aggregator.aggregate(route.route_id, bucket, grouped.get(bucket, []), now)
            await self._scores.upsert(score)
            logger.debug(
                f"Scored {route.route_id}/{bucket.value}: overall={score.overall_score:.3f} "
                f"from {score.total_reports} report(s)"
            )
            written.append(score)

        if self.config.aggregation.mark_scored and filtered.eligible:
            await self._reports.mark_scored([e.report_id for e in filtered.eligible], now)

        return RouteOutcome(
            route_id=route.route_id,
            scores=written,
            reports_considered=len(reports),
            reports_rejected=len(filtered.rejected),
        )

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def get_route_scores(self, route_id: str) -> List[Score]:
        return await self._scores.get_scores(route_id)

    async def list_scores(self) -> List[Score]:
        """Every stored score, ordered by route then bucket."""
        return await self._scores.list_scores()

    async def get_rankings(self) -> List[RouteRanking]:
        """Every scored route with its mean overall score across buckets."""
        by_route: Dict[str, List[Score]] = defaultdict(list)
        for score in await self._scores.list_scores():
            by_route[score.route_id].append(score)

        return [
            RouteRanking(
                route_id=route_id,
                average_overall_score=sum(s.overall_score for s in scores) / len(scores),
                bucket_count=len(scores),
                total_reports=sum(s.total_reports for s in scores),
            )
            for route_id, scores in by_route.items()
        ]

    async def get_ranked_routes(self, limit: int = 10, best: bool = True) -> List[RouteRanking]:
        """
        Top (best=True) or worst routes by mean overall score.

        Ties break on route_id ascending in both directions.
        """
        rankings = await self.get_rankings()
        if best:
            rankings.sort(key=lambda r: (-r.average_overall_score, r.route_id))
        else:
            rankings.sort(key=lambda r: (r.average_overall_score, r.route_id))
        return rankings[:limit]

    async def get_scoring_stats(self) -> ScoringStats:
        routes = await self._routes.list_routes(active_only=True)
        scores = await self._scores.list_scores()

        last_calculated = max((s.last_calculated for s in scores), default=None)
        average = sum(s.overall_score for s in scores) / len(scores) if scores else 0.0
        return ScoringStats(
            total_routes=len(routes),
            scored_routes=len({s.route_id for s in scores}),
            total_reports=sum(s.total_reports for s in scores),
            average_score=average,
            last_calculated=last_calculated,
        )
