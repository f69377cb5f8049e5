"""
Route Scoring - Ingestion Filter.

============================================================
PURPOSE
============================================================
Classifies raw reports into scoring-eligible events.

- Dismissed reports are rejected
- Malformed reports are rejected and logged with their id
- Anonymous reports are down-weighted (x0.5)
- Repeat submissions from one device against one route inside
  the cooldown window are down-weighted (x0.1)
- Verified / resolved reports always carry full weight

============================================================
PURITY
============================================================
Classification only. Weights flow downstream with the report;
nothing is written back to the Report Store.

============================================================
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple, Union

from .config import IngestionConfig
from .exceptions import MalformedReportError
from .types import (
    EligibleReport,
    FilterResult,
    RejectionReason,
    Rejection,
    Report,
    ReportStatus,
    sort_reports,
)


logger = logging.getLogger(__name__)


FilterOutcome = Union[EligibleReport, Rejection]


def find_malformation(report: Report) -> Optional[str]:
    """
    Return why a report is unusable, or None when it is well-formed.

    Required: id, route id, report type, severity, created_at.
    Coordinates, when present, must be within WGS84 range.
    """
    if not report.id:
        return "missing id"
    if not report.route_id:
        return "missing route_id"
    if report.report_type is None:
        return "missing or unknown report_type"
    if report.severity is None:
        return "missing or unknown severity"
    if report.created_at is None:
        return "missing created_at"
    if report.location is not None and not report.location.in_range:
        return f"impossible coordinates ({report.location.lat}, {report.location.lng})"
    return None


def validate_report(report: Report) -> Report:
    """
    Raise MalformedReportError unless the report is well-formed.

    Returns the report unchanged so it can be used inline.
    """
    problem = find_malformation(report)
    if problem is not None:
        raise MalformedReportError(report.id, problem)
    return report


class IngestionFilter:
    """
    Ingestion filter for scoring-eligible reports.

    ============================================================
    DUPLICATE WINDOWS
    ============================================================
    Reports are processed in (created_at, id) order. For each
    (device_fingerprint, route_id) the first report opens a window
    of ``duplicate_cooldown_seconds``; reports falling inside it are
    duplicates. The first report after the window expires opens a
    new one.

    ============================================================
    """

    def __init__(self, config: Optional[IngestionConfig] = None):
        self.config = config or IngestionConfig()

    def filter(self, report: Report, is_duplicate: bool = False) -> FilterOutcome:
        """
        Classify a single report.

        Args:
            report: Report read from the store
            is_duplicate: Whether the report repeats an earlier one
                          inside the cooldown window

        Returns:
            EligibleReport with its weight, or Rejection with a reason
        """
        if report.status == ReportStatus.DISMISSED:
            return Rejection(report=report, reason=RejectionReason.DISMISSED, detail="dismissed by moderator")

        try:
            validate_report(report)
        except MalformedReportError as e:
            return Rejection(report=report, reason=RejectionReason.MALFORMED, detail=e.reason)

        return EligibleReport(
            report=report,
            weight=self._weight(report, is_duplicate),
            is_duplicate=is_duplicate,
        )

    def filter_batch(self, reports: Iterable[Report]) -> FilterResult:
        """
        Classify a batch, detecting duplicate submissions within it.

        Malformed reports are logged with their id and excluded; they
        never abort the batch.
        """
        result = FilterResult()
        window_starts: Dict[Tuple[str, str], datetime] = {}
        cooldown = self.config.duplicate_cooldown_seconds

        for report in sort_reports(list(reports)):
            is_duplicate = False
            if (
                report.status != ReportStatus.DISMISSED
                and report.created_at is not None
                and report.device_fingerprint
                and report.route_id
                and find_malformation(report) is None
            ):
                key = (report.device_fingerprint, report.route_id)
                window_start = window_starts.get(key)
                if (
                    window_start is not None
                    and (report.created_at - window_start).total_seconds() < cooldown
                ):
                    is_duplicate = True
                else:
                    window_starts[key] = report.created_at

            outcome = self.filter(report, is_duplicate=is_duplicate)
            if isinstance(outcome, Rejection):
                if outcome.reason == RejectionReason.MALFORMED:
                    logger.warning(f"Excluding malformed report {report.id}: {outcome.detail}")
                result.rejected.append(outcome)
            else:
                result.eligible.append(outcome)

        if result.rejected:
            logger.debug(
                f"Ingestion filter: {len(result.eligible)} eligible, "
                f"{len(result.rejected)} rejected ({len(result.malformed)} malformed)"
            )
        return result

    def _weight(self, report: Report, is_duplicate: bool) -> float:
        if report.status.is_trusted:
            return 1.0
        weight = 1.0
        if report.is_anonymous:
            weight *= self.config.anonymous_weight
        if is_duplicate:
            weight *= self.config.duplicate_weight
        return weight
