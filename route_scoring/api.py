"""
Route Scoring - API.

============================================================
RESPONSIBILITY
============================================================
REST API for the rider map and the authority dashboard.

    GET  /analytics/authority?period=7d|30d|90d
    GET  /scores?limit=&offset=
    GET  /scores/route/{route_id}
    GET  /scores/top
    GET  /scores/worst
    GET  /scores/stats
    POST /scores/recalculate
    POST /scores/recalculate/{route_id}
    GET  /scheduler/status
    GET  /health

create_app() wires stores, engine, analytics cache and scheduler
onto app.state; the scheduler starts and stops with the app.
============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .analytics import CachedRiskAnalytics, RiskAnalyticsAggregator
from .clock import ClockProtocol, SystemClock
from .config import ScoringConfig
from .database import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
    verify_database_connection,
)
from .engine import ScoringEngine
from .exceptions import InvalidPeriodError, RouteNotFoundError, SchedulerFault, TransientStoreError
from .repository import SqlReportStore, SqlRouteStore, SqlScoreStore
from .scheduler import ScoringScheduler
from .schemas import (
    HealthResponse,
    PassResultResponse,
    RiskSnapshotResponse,
    RouteRankingResponse,
    RouteScoresResponse,
    SchedulerStatusResponse,
    ScoreListResponse,
    ScoreResponse,
    ScoringStatsResponse,
)
from .stores import ReportStore, RouteStore, ScoreStore
from .types import RiskPeriod


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Route Scoring"])


# =============================================================
# HELPER: app.state dependencies
# =============================================================

def get_engine(request: Request) -> ScoringEngine:
    return request.app.state.engine


def get_analytics(request: Request) -> CachedRiskAnalytics:
    return request.app.state.analytics


def get_scheduler(request: Request) -> ScoringScheduler:
    return request.app.state.scheduler


# =============================================================
# ANALYTICS ENDPOINTS
# =============================================================

@router.get("/analytics/authority", response_model=RiskSnapshotResponse)
async def get_authority_analytics(
    period: str = Query(RiskPeriod.MONTH.value, description="7d, 30d or 90d"),
    analytics: CachedRiskAnalytics = Depends(get_analytics),
):
    """Risk snapshot for the transport authority dashboard."""
    try:
        snapshot = await analytics.get_snapshot(period)
    except InvalidPeriodError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except TransientStoreError as e:
        logger.error(f"Risk snapshot unavailable: {e.message}")
        raise HTTPException(status_code=503, detail="Analytics temporarily unavailable")

    return RiskSnapshotResponse.model_validate(snapshot.to_dict())


# =============================================================
# SCORE ENDPOINTS
# =============================================================

@router.get("/scores", response_model=ScoreListResponse)
async def list_scores(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: ScoringEngine = Depends(get_engine),
):
    """All stored scores, paginated, ordered by route then bucket."""
    scores = await engine.list_scores()
    page = scores[offset:offset + limit]
    return ScoreListResponse(
        total=len(scores),
        limit=limit,
        offset=offset,
        scores=[ScoreResponse.model_validate(s.to_dict()) for s in page],
    )


@router.get("/scores/route/{route_id}", response_model=RouteScoresResponse)
async def get_route_scores(
    route_id: str,
    engine: ScoringEngine = Depends(get_engine),
):
    """Scores of one route across its time buckets."""
    scores = await engine.get_route_scores(route_id)
    if not scores:
        raise HTTPException(status_code=404, detail=f"No scores for route {route_id}")

    return RouteScoresResponse(
        route_id=route_id,
        scores=[ScoreResponse.model_validate(s.to_dict()) for s in scores],
    )


@router.get("/scores/top", response_model=List[RouteRankingResponse])
async def get_top_routes(
    limit: int = Query(10, ge=1, le=100),
    engine: ScoringEngine = Depends(get_engine),
):
    """Best routes by mean overall score."""
    rankings = await engine.get_ranked_routes(limit=limit, best=True)
    return [RouteRankingResponse.model_validate(r.to_dict()) for r in rankings]


@router.get("/scores/worst", response_model=List[RouteRankingResponse])
async def get_worst_routes(
    limit: int = Query(10, ge=1, le=100),
    engine: ScoringEngine = Depends(get_engine),
):
    """Worst routes by mean overall score."""
    rankings = await engine.get_ranked_routes(limit=limit, best=False)
    return [RouteRankingResponse.model_validate(r.to_dict()) for r in rankings]


@router.get("/scores/stats", response_model=ScoringStatsResponse)
async def get_scoring_stats(engine: ScoringEngine = Depends(get_engine)):
    stats = await engine.get_scoring_stats()
    return ScoringStatsResponse.model_validate(stats.to_dict())


@router.post("/scores/recalculate", response_model=PassResultResponse)
async def recalculate_all(
    request: Request,
    scheduler: ScoringScheduler = Depends(get_scheduler),
):
    """Run a full pass now, serialised with scheduled passes."""
    try:
        result = await scheduler.trigger_pass()
    except SchedulerFault as e:
        raise HTTPException(status_code=503, detail=e.message)

    request.app.state.analytics.invalidate()
    return PassResultResponse.model_validate(result.to_dict())


@router.post("/scores/recalculate/{route_id}", response_model=RouteScoresResponse)
async def recalculate_route(
    route_id: str,
    engine: ScoringEngine = Depends(get_engine),
):
    try:
        scores = await engine.recalculate_route(route_id)
    except RouteNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except TransientStoreError as e:
        raise HTTPException(status_code=503, detail=e.message)

    return RouteScoresResponse(
        route_id=route_id,
        scores=[ScoreResponse.model_validate(s.to_dict()) for s in scores],
    )


# =============================================================
# OPERATIONS
# =============================================================

@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status(scheduler: ScoringScheduler = Depends(get_scheduler)):
    return SchedulerStatusResponse.model_validate(scheduler.status().to_dict())


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    scheduler: ScoringScheduler = request.app.state.scheduler
    return HealthResponse(
        status="healthy",
        scheduler_state=scheduler.state.value,
        engine_version=request.app.state.config.engine_version,
        timestamp=request.app.state.clock.now(),
    )


# =============================================================
# APPLICATION FACTORY
# =============================================================

def create_app(
    config: Optional[ScoringConfig] = None,
    report_store: Optional[ReportStore] = None,
    route_store: Optional[RouteStore] = None,
    score_store: Optional[ScoreStore] = None,
    clock: Optional[ClockProtocol] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Stores default to the SQL implementations on the configured
    database; tests pass in-memory stores instead.
    """
    config = config or ScoringConfig.from_env()
    clock = clock or SystemClock()

    if report_store is None or route_store is None or score_store is None:
        db_engine = create_database_engine(config=config.database)
        verify_database_connection(db_engine)
        create_all_tables(db_engine)
        session_factory = create_session_factory(db_engine)
        report_store = report_store or SqlReportStore(session_factory)
        route_store = route_store or SqlRouteStore(session_factory)
        score_store = score_store or SqlScoreStore(session_factory)

    engine = ScoringEngine(report_store, route_store, score_store, config=config, clock=clock)
    aggregator = RiskAnalyticsAggregator(
        report_store,
        route_store,
        config=config.analytics,
        bucketer=engine.bucketer,
        clock=clock,
    )
    analytics = CachedRiskAnalytics(aggregator, clock=clock)
    scheduler = ScoringScheduler(engine, config=config.scheduler, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    app = FastAPI(
        title="Route Scoring API",
        description="Route reliability scores and transport authority risk analytics",
        version=config.engine_version,
        lifespan=lifespan,
    )
    # Dashboard and rider map are browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.clock = clock
    app.state.engine = engine
    app.state.analytics = analytics
    app.state.scheduler = scheduler
    app.include_router(router)
    return app
