import math
import logging
from datetime import datetime, timezone
from typing import Optional
from .errors import InvalidValue, OutOfOrder
from .schemas import Sample

logger = logging.getLogger(__name__)


def normalize_timestamp(ts: datetime) -> datetime:
    """Interpret naive datetimes as UTC so all comparisons are aware."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class SampleValidator:
    """Rejects malformed or temporally inconsistent samples before any mutation."""

    def validate(self, trip_id: str, sample: Sample, last_timestamp: Optional[datetime]) -> Sample:
        """Return the sample (timestamp normalized) or raise InvalidValue/OutOfOrder."""
        context = {"trip_id": trip_id}

        for field in ("latitude", "longitude", "speed", "speed_limit"):
            value = getattr(sample, field)
            if not math.isfinite(value):
                raise InvalidValue(f"{field} must be a finite number", {**context, "field": field, "value": value})

        if sample.speed < 0:
            raise InvalidValue("speed must not be negative", {**context, "field": "speed", "value": sample.speed})
        if sample.speed_limit < 0:
            raise InvalidValue(
                "speed limit must not be negative",
                {**context, "field": "speed_limit", "value": sample.speed_limit}
            )
        if not -90.0 <= sample.latitude <= 90.0:
            raise InvalidValue(
                "latitude out of range",
                {**context, "field": "latitude", "value": sample.latitude}
            )
        if not -180.0 <= sample.longitude <= 180.0:
            raise InvalidValue(
                "longitude out of range",
                {**context, "field": "longitude", "value": sample.longitude}
            )
        if sample.timestamp is None:
            raise InvalidValue("sample timestamp is required", {**context, "field": "timestamp"})

        timestamp = normalize_timestamp(sample.timestamp)
        if last_timestamp is not None and timestamp < last_timestamp:
            raise OutOfOrder(
                "sample is older than the last accepted sample",
                {
                    **context,
                    "timestamp": timestamp.isoformat(),
                    "last_accepted": last_timestamp.isoformat()
                }
            )

        if timestamp is sample.timestamp:
            return sample
        return sample.model_copy(update={"timestamp": timestamp})
