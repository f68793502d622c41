"""Frequency math: one canonical FrequencySpec mapped to dose slots.

All functions here are pure. Times of day are "HH:MM" strings.
"""
import re
from datetime import date
from typing import List, Optional

from app.core.errors import ValidationError
from app.schemas.models import DAILY, FrequencySpec, IntervalSpec, Medication, PeriodicSpec, Recurrence
from app.utils.time_utils import MINUTES_PER_DAY, hhmm_to_minutes, minutes_to_hhmm, valid_hhmm

MAX_TIMES_PER_DAY = 24  # at most once per hour

_DAYS_PER_UNIT = {"day": 1, "week": 7, "month": 30}

_EVERY_N_HOURS_RE = re.compile(r"^every_(\d+)_hours?$")
_EVERY_N_DAYS_RE = re.compile(r"^every_(\d+)_days?$")

_TIMES_PER_DAY_LABELS = {
    "daily": 1, "once_daily": 1, "od": 1, "qd": 1,
    "twice_daily": 2, "bid": 2, "bd": 2,
    "thrice_daily": 3, "tid": 3,
    "four_times_daily": 4, "qid": 4,
    "every_hour": 24, "hourly": 24,
}

def validate_spec(spec: FrequencySpec) -> FrequencySpec:
    variant = spec.variant
    if variant is None:
        raise ValidationError("Frequency must set exactly one of fixed_times, interval, periodic")

    if variant == "fixed_times":
        times = spec.fixed_times or []
        if not times:
            raise ValidationError("fixed_times must contain at least one time")
        bad = [t for t in times if not valid_hhmm(t)]
        if bad:
            raise ValidationError(f"Invalid fixed times: {bad}")
        if len(set(times)) != len(times):
            raise ValidationError("fixed_times contains duplicate times")

    elif variant == "interval":
        n = spec.interval.times_per_day
        if n <= 0 or n > MAX_TIMES_PER_DAY:
            raise ValidationError(
                f"times_per_day must be between 1 and {MAX_TIMES_PER_DAY}, got {n}"
            )
        hours = spec.interval.hours_per_interval
        # every slot may be off by at most a minute
        if hours is not None and abs(hours * n - 24) > n / 60:
            raise ValidationError(
                f"hours_per_interval={hours} does not cover a day with {n} doses"
            )

    else:
        if spec.periodic.count < 1:
            raise ValidationError("periodic count must be >= 1")

    return spec

def doses_per_day(spec: FrequencySpec) -> float:
    validate_spec(spec)
    if spec.interval is not None:
        return float(spec.interval.times_per_day)
    if spec.fixed_times is not None:
        return float(len(spec.fixed_times))
    return 1.0 / (_DAYS_PER_UNIT[spec.periodic.unit] * spec.periodic.count)

def hours_per_dose(spec: FrequencySpec) -> float:
    """Interval between doses; an average for uneven fixed times."""
    return 24.0 / doses_per_day(spec)

def expand_to_slots(spec: FrequencySpec, first_dose_time: str) -> List[str]:
    """Concrete time-of-day slots for a spec.

    interval: first + i * (24 / N) hours for i in [0, N), wrapped at 24:00 and
    rounded to the nearest minute. Order follows the dosing cycle starting at
    the first dose.
    fixed_times: the given times, ascending.
    periodic: just the first dose time; see recurrence_of().
    """
    validate_spec(spec)

    if spec.fixed_times is not None:
        return sorted(spec.fixed_times, key=hhmm_to_minutes)

    first = hhmm_to_minutes(first_dose_time)

    if spec.periodic is not None:
        return [minutes_to_hhmm(first)]

    n = spec.interval.times_per_day
    step = MINUTES_PER_DAY / n  # exact, may be fractional
    return [minutes_to_hhmm(first + round(i * step)) for i in range(n)]

def recurrence_of(spec: FrequencySpec, anchor: Optional[date] = None) -> Recurrence:
    validate_spec(spec)
    if spec.periodic is None:
        return DAILY
    return Recurrence(unit=spec.periodic.unit, count=spec.periodic.count, anchor=anchor)

def parse_frequency(label: str, value: Optional[int] = None, times: Optional[List[str]] = None) -> FrequencySpec:
    """Map the legacy frequency vocabulary onto the canonical spec.

    Accepts the app's ids (daily, twice_daily, every_x_hours, specific_times,
    weekly, monthly, custom, ...) as well as prescription shorthand
    (OD, BID, TID, QID, WEEKLY, EVERY_N_DAYS).
    """
    f = (label or "").strip().lower().replace(" ", "_").replace("-", "_")

    if f in _TIMES_PER_DAY_LABELS:
        return validate_spec(FrequencySpec(interval=IntervalSpec(times_per_day=_TIMES_PER_DAY_LABELS[f])))

    if f in ("specific_times", "custom"):
        return validate_spec(FrequencySpec(fixed_times=list(times or [])))

    if f == "weekly":
        return FrequencySpec(periodic=PeriodicSpec(unit="week", count=1))
    if f == "monthly":
        return FrequencySpec(periodic=PeriodicSpec(unit="month", count=1))

    hours = None
    m = _EVERY_N_HOURS_RE.match(f)
    if m:
        hours = int(m.group(1))
    elif f == "every_x_hours":
        hours = value
    if hours is not None:
        if hours <= 0 or 24 % hours != 0:
            raise ValidationError(f"every {hours} hours does not divide a day evenly")
        n = 24 // hours
        return validate_spec(FrequencySpec(interval=IntervalSpec(times_per_day=n, hours_per_interval=float(hours))))

    m = _EVERY_N_DAYS_RE.match(f)
    if m:
        return validate_spec(FrequencySpec(periodic=PeriodicSpec(unit="day", count=int(m.group(1)))))

    raise ValidationError(f"Unknown frequency {label!r}")

def recurrence_for(medication: Medication) -> Recurrence:
    """Recurrence anchored on the medication's start (or creation) date."""
    anchor = medication.start_date
    if anchor is None and medication.created_at is not None:
        anchor = medication.created_at.date()
    return recurrence_of(medication.frequency, anchor)
