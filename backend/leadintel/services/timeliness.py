# backend/leadintel/services/timeliness.py
"""
Signal timeliness bands

Older events are worth less. A signal's strength is multiplied by the band
its event age falls into; events with no known date get a flat discount.
"""

from datetime import date, datetime, timezone
from typing import NamedTuple, Optional, Union

from leadintel.models import utcnow


class TimelinessBand(NamedTuple):
    label: str
    max_age_days: int
    multiplier: float


TIMELINESS_BANDS = [
    TimelinessBand("excellent", 30, 1.0),
    TimelinessBand("strong", 90, 0.85),
    TimelinessBand("ok", 180, 0.6),
    TimelinessBand("weak", 365, 0.3),
]

UNKNOWN_DATE_MULTIPLIER = 0.4


def parse_event_date(value: Union[str, date, datetime]) -> Optional[datetime]:
    if isinstance(value, str):
        if len(value) == 7:  # "YYYY-MM"
            value = f"{value}-01"
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def compute_timeliness(event_date, reference: Optional[datetime] = None) -> tuple:
    """Returns (multiplier, band label, age in days or None)"""
    event = parse_event_date(event_date) if event_date else None
    if event is None:
        return UNKNOWN_DATE_MULTIPLIER, "unknown", None

    reference = reference or utcnow()
    age_days = (reference - event).days

    # Future-dated events count as fresh
    if age_days < 0:
        return 1.0, "excellent", 0

    for band in TIMELINESS_BANDS:
        if age_days <= band.max_age_days:
            return band.multiplier, band.label, age_days

    return 0.0, "expired", age_days


def apply_timeliness(strength: float, event_date, reference: Optional[datetime] = None) -> float:
    multiplier, _, _ = compute_timeliness(event_date, reference)
    return round(strength * multiplier, 2)
