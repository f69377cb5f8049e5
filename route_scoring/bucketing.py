"""
Route Scoring - Temporal Bucketer.

============================================================
PURPOSE
============================================================
Assigns a report timestamp to a coarse time-of-day bucket.

    [05:00, 11:00) -> morning
    [11:00, 17:00) -> afternoon
    [17:00, 22:00) -> evening
    otherwise      -> night

Hours are wall-clock hours in the route's local time zone,
falling back to the system-wide zone.

============================================================
IDEMPOTENCY
============================================================
bucket_of() depends only on the timestamp and the zone name,
never on "now": re-bucketing a report in a later pass always
yields the same bucket.

============================================================
"""

import logging
import threading
from datetime import datetime, tzinfo
from typing import Dict, Optional

import pytz

from .clock import ensure_utc
from .config import BucketingConfig
from .types import TimeBucket


logger = logging.getLogger(__name__)


class TemporalBucketer:
    """Pure mapping timestamp -> TimeBucket (plus local-time helpers)."""

    def __init__(self, config: Optional[BucketingConfig] = None):
        self.config = config or BucketingConfig()
        self._default_zone = pytz.timezone(self.config.default_time_zone)
        self._zones: Dict[str, tzinfo] = {}
        self._zones_lock = threading.Lock()

    def zone_for(self, time_zone: Optional[str]) -> tzinfo:
        """Resolve a zone name; unknown names fall back to the default zone."""
        if not time_zone:
            return self._default_zone

        with self._zones_lock:
            zone = self._zones.get(time_zone)
            if zone is None:
                try:
                    zone = pytz.timezone(time_zone)
                except pytz.UnknownTimeZoneError:
                    logger.warning(
                        f"Unknown time zone '{time_zone}', using {self.config.default_time_zone}"
                    )
                    zone = self._default_zone
                self._zones[time_zone] = zone
            return zone

    def to_local(self, timestamp: datetime, time_zone: Optional[str] = None) -> datetime:
        """Convert a timestamp (naive = UTC) to the route's local time."""
        return ensure_utc(timestamp).astimezone(self.zone_for(time_zone))

    def bucket_for_hour(self, hour: int) -> TimeBucket:
        cfg = self.config
        if cfg.morning_start_hour <= hour < cfg.afternoon_start_hour:
            return TimeBucket.MORNING
        if cfg.afternoon_start_hour <= hour < cfg.evening_start_hour:
            return TimeBucket.AFTERNOON
        if cfg.evening_start_hour <= hour < cfg.night_start_hour:
            return TimeBucket.EVENING
        return TimeBucket.NIGHT

    def bucket_of(self, timestamp: datetime, time_zone: Optional[str] = None) -> TimeBucket:
        """
        Bucket a report timestamp.

        Args:
            timestamp: Report created_at (naive values are treated as UTC)
            time_zone: Route's IANA zone name, or None for the system zone

        Returns:
            TimeBucket for the local wall-clock hour
        """
        return self.bucket_for_hour(self.to_local(timestamp, time_zone).hour)
