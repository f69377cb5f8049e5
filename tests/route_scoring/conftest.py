"""
Shared fixtures for route scoring tests.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from route_scoring.clock import MockClock
from route_scoring.types import (
    GeoPoint,
    Report,
    ReportStatus,
    ReportType,
    RouteInfo,
    Severity,
)


# Wednesday, 15:00 in Nairobi
NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def make_report():
    """Factory for well-formed reports; override any field by keyword."""
    counter = itertools.count(1)

    def _make(
        route_id="R1",
        report_type=ReportType.DELAY,
        severity=Severity.MEDIUM,
        created_at=None,
        age_days=0.0,
        **overrides,
    ):
        fields = {
            "id": f"rep-{next(counter):04d}",
            "route_id": route_id,
            "report_type": report_type,
            "severity": severity,
            "created_at": created_at or (NOW - timedelta(days=age_days)),
            "status": ReportStatus.PENDING,
            "description": "Matatu stuck at the roundabout",
            "location": GeoPoint(lat=-1.2864, lng=36.8172),
        }
        fields.update(overrides)
        return Report(**fields)

    return _make


@pytest.fixture
def routes():
    return [
        RouteInfo(route_id="R1", operator="SACCO-A", name="CBD - Westlands", time_zone="UTC"),
        RouteInfo(route_id="R2", operator="SACCO-B", name="CBD - Rongai", time_zone="UTC"),
        RouteInfo(route_id="R3", operator="SACCO-C", name="CBD - Thika", time_zone="UTC"),
    ]


@pytest.fixture
def route_map(routes):
    return {route.route_id: route for route in routes}
