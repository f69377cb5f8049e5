"""
Route Scoring - Score Aggregator.

============================================================
PURPOSE
============================================================
Folds all eligible reports of one (route_id, time_bucket) into
a Score record.

============================================================
ALGORITHM
============================================================
1. Each report type influences one or more sub-scores with a
   fixed impact fraction (delay -> punctuality & reliability,
   safety -> safety, crowding -> comfort, ...).
2. Every contributing report subtracts

       severity_penalty * ingestion_weight * recency_decay * impact

   from a ceiling of 5.0. recency_decay halves every 14 days and
   never reaches exactly zero.
3. Each sub-score is clamped to [0, 5].
4. overall = weighted average of the four sub-scores
   (reliability 0.30, safety 0.35, punctuality 0.20, comfort 0.15).
5. total_reports = number of eligible reports, irrespective of weight.

A bucket with no eligible reports scores neutral (3.0 everywhere).

============================================================
DETERMINISM
============================================================
aggregate() is a pure function of (reports, now, config).
overall_score is always recomputed from the sub-scores.

============================================================
"""

from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence

from .clock import ensure_utc
from .config import AggregationConfig
from .types import EligibleReport, Score, Severity, SubScore, TimeBucket


SECONDS_PER_DAY = 86400.0


def compute_overall(
    sub_scores: Mapping[SubScore, float],
    weights: Mapping[SubScore, float],
) -> float:
    """Weighted composite of the four sub-scores."""
    return sum(sub_scores[dimension] * weights[dimension] for dimension in SubScore)


class ScoreAggregator:
    """
    Recency-weighted, severity-penalised bucket scoring.

    Stateless; safe to share across concurrent route workers.
    """

    def __init__(self, config: Optional[AggregationConfig] = None):
        self.config = config or AggregationConfig()

    # --------------------------------------------------------
    # BUILDING BLOCKS
    # --------------------------------------------------------

    def severity_penalty(self, severity: Severity) -> float:
        return self.config.severity_penalties[severity]

    def recency_decay(self, age_days: float) -> float:
        """
        Exponential decay with the configured half-life.

        Future-dated reports count as age zero. Floored at
        ``min_decay`` so an existing report never vanishes entirely.
        """
        age_days = max(0.0, age_days)
        decay = 0.5 ** (age_days / self.config.half_life_days)
        return max(decay, self.config.min_decay)

    def report_penalties(self, eligible: EligibleReport, now: datetime) -> Dict[SubScore, float]:
        """Penalty one report applies to each sub-score it influences."""
        report = eligible.report
        age_days = (ensure_utc(now) - report.created_at).total_seconds() / SECONDS_PER_DAY
        base = (
            self.severity_penalty(report.severity)
            * eligible.weight
            * self.recency_decay(age_days)
        )
        impacts = self.config.type_impacts.get(report.report_type, {})
        return {dimension: base * impact for dimension, impact in impacts.items()}

    def clamp(self, value: float) -> float:
        return max(self.config.score_floor, min(self.config.score_ceiling, value))

    # --------------------------------------------------------
    # AGGREGATION
    # --------------------------------------------------------

    def neutral_score(self, route_id: str, time_bucket: TimeBucket, now: datetime) -> Score:
        """Score for a bucket with no eligible reports."""
        neutral = self.config.neutral_score
        sub_scores = {dimension: neutral for dimension in SubScore}
        return self._build(route_id, time_bucket, sub_scores, 0, now)

    def aggregate(
        self,
        route_id: str,
        time_bucket: TimeBucket,
        reports: Sequence[EligibleReport],
        now: datetime,
    ) -> Score:
        """
        Fold a bucket's eligible reports into a Score.

        Args:
            route_id: Route being scored
            time_bucket: Bucket being scored
            reports: Eligible reports already assigned to this bucket
            now: Reference time for recency decay and last_calculated

        Returns:
            Fully recomputed Score
        """
        if not reports:
            return self.neutral_score(route_id, time_bucket, now)

        penalties: Dict[SubScore, float] = {dimension: 0.0 for dimension in SubScore}
        # Fixed order keeps float summation reproducible
        ordered = sorted(
            reports,
            key=lambda e: (e.report.created_at.timestamp(), e.report.id or ""),
        )
        for eligible in ordered:
            for dimension, penalty in self.report_penalties(eligible, now).items():
                penalties[dimension] += penalty

        sub_scores = {
            dimension: self.clamp(self.config.score_ceiling - penalties[dimension])
            for dimension in SubScore
        }
        return self._build(route_id, time_bucket, sub_scores, len(reports), now)

    def _build(
        self,
        route_id: str,
        time_bucket: TimeBucket,
        sub_scores: Mapping[SubScore, float],
        total_reports: int,
        now: datetime,
    ) -> Score:
        return Score(
            route_id=route_id,
            time_bucket=time_bucket,
            reliability_score=sub_scores[SubScore.RELIABILITY],
            safety_score=sub_scores[SubScore.SAFETY],
            punctuality_score=sub_scores[SubScore.PUNCTUALITY],
            comfort_score=sub_scores[SubScore.COMFORT],
            overall_score=compute_overall(sub_scores, self.config.sub_score_weights),
            total_reports=total_reports,
            last_calculated=ensure_utc(now),
        )
