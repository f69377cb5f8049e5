"""
Route Scoring - Persistence Models.

============================================================
PURPOSE
============================================================
ORM models for the SQL-backed stores.

============================================================
MODELS
============================================================
1. RouteRecord: Route metadata (operator, time zone)
2. ReportRecord: Commuter reports
3. ScoreRecord: One row per (route_id, time_bucket)

Enum columns hold the plain string value; unknown values read
back as None and the report is rejected as malformed.

============================================================
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


# ============================================================
# ROUTE MODEL
# ============================================================


class RouteRecord(Base):
    __tablename__ = "routes"

    route_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    operator: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Operating SACCO",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    time_zone: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="IANA zone; NULL = system default",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"RouteRecord(route_id={self.route_id}, operator={self.operator})"


# ============================================================
# REPORT MODEL
# ============================================================


class ReportRecord(Base):
    """
    A commuter-submitted report.

    Nullable core columns mirror what the reporting API may store;
    ingestion decides whether a row is usable.
    """

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    route_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    report_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="delay, safety, crowding, breakdown, other",
    )
    severity: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="low, medium, high, critical",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    device_fingerprint: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    # Timestamps
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_scored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_reports_route_created", "route_id", "created_at"),
        Index("ix_reports_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"ReportRecord(id={self.id}, route={self.route_id}, "
            f"type={self.report_type}, severity={self.severity})"
        )


# ============================================================
# SCORE MODEL
# ============================================================


class ScoreRecord(Base):
    """
    Score for one (route_id, time_bucket).

    Rows are replaced whole on every pass.
    """

    __tablename__ = "route_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    route_id: Mapped[str] = mapped_column(String(64), nullable=False)
    time_bucket: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="morning, afternoon, evening, night",
    )

    reliability_score: Mapped[float] = mapped_column(Float, nullable=False)
    safety_score: Mapped[float] = mapped_column(Float, nullable=False)
    punctuality_score: Mapped[float] = mapped_column(Float, nullable=False)
    comfort_score: Mapped[float] = mapped_column(Float, nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)

    total_reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_calculated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("route_id", "time_bucket", name="uq_route_scores_route_bucket"),
        Index("ix_route_scores_route_id", "route_id"),
    )

    def __repr__(self) -> str:
        return (
            f"ScoreRecord(route={self.route_id}, bucket={self.time_bucket}, "
            f"overall={self.overall_score:.2f})"
        )
