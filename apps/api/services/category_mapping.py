"""
Canonical category lookup.

Every mapping from a raw, user-entered or device-provided string to one of the
engine's canonical buckets lives in the tables below. Call sites never match
prose themselves.
"""

from datetime import datetime
from typing import Dict, Optional, Tuple

from services.analytics_types import DayPart, IntensityLevel, Weekday


# Raw workout type labels -> canonical workout type.
# Unknown labels pass through normalized (lowercased, trimmed).
WORKOUT_TYPE_ALIASES: Dict[str, str] = {
    "cardio": "cardio",
    "run": "cardio",
    "running": "cardio",
    "cycling": "cardio",
    "bike": "cardio",
    "swim": "cardio",
    "swimming": "cardio",
    "hiit": "hiit",
    "intervals": "hiit",
    "strength": "strength",
    "weights": "strength",
    "weightlifting": "strength",
    "powerlifting": "strength",
    "resistance": "strength",
    "fuerza": "strength",
    "hypertrophy": "hypertrophy",
    "bodybuilding": "hypertrophy",
    "flexibility": "flexibility",
    "mobility": "flexibility",
    "stretching": "flexibility",
    "yoga": "flexibility",
    "pilates": "flexibility",
    "sports": "sports",
    "other": "other",
}

# Raw intensity labels -> canonical intensity level.
INTENSITY_ALIASES: Dict[str, IntensityLevel] = {
    "low": IntensityLevel.LOW,
    "light": IntensityLevel.LOW,
    "easy": IntensityLevel.LOW,
    "recovery": IntensityLevel.LOW,
    "moderate": IntensityLevel.MODERATE,
    "medium": IntensityLevel.MODERATE,
    "normal": IntensityLevel.MODERATE,
    "high": IntensityLevel.HIGH,
    "hard": IntensityLevel.HIGH,
    "intense": IntensityLevel.HIGH,
    "max": IntensityLevel.HIGH,
}

# Day-part windows as [start_hour, end_hour). Night wraps past midnight.
DAY_PART_HOURS: Dict[DayPart, Tuple[int, int]] = {
    DayPart.MORNING: (5, 12),
    DayPart.AFTERNOON: (12, 18),
    DayPart.EVENING: (18, 22),
    DayPart.NIGHT: (22, 5),
}

# Suggested training window shown in habit recommendations.
DAY_PART_TIME_RANGES: Dict[DayPart, str] = {
    DayPart.MORNING: "7:00 - 11:00",
    DayPart.AFTERNOON: "14:00 - 17:00",
    DayPart.EVENING: "18:00 - 21:00",
    DayPart.NIGHT: "22:00 - 5:00",
}

# Intensity and session length paired with a day-part in combined plans.
DAY_PART_INTENSITY: Dict[DayPart, IntensityLevel] = {
    DayPart.MORNING: IntensityLevel.MODERATE,
    DayPart.AFTERNOON: IntensityLevel.MODERATE,
    DayPart.EVENING: IntensityLevel.HIGH,
    DayPart.NIGHT: IntensityLevel.MODERATE,
}

DAY_PART_DURATION_MINUTES: Dict[DayPart, int] = {
    DayPart.MORNING: 30,
    DayPart.AFTERNOON: 45,
    DayPart.EVENING: 45,
    DayPart.NIGHT: 45,
}

# datetime.weekday(): Monday == 0
WEEKDAY_ORDER = [
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
]

DAY_PART_ORDER = [DayPart.MORNING, DayPart.AFTERNOON, DayPart.EVENING, DayPart.NIGHT]


def canonical_workout_type(raw: Optional[str]) -> str:
    if not raw:
        return "other"
    key = raw.strip().lower()
    return WORKOUT_TYPE_ALIASES.get(key, key)


def canonical_intensity(raw: Optional[str]) -> Optional[IntensityLevel]:
    if raw is None:
        return None
    if isinstance(raw, IntensityLevel):
        return raw
    return INTENSITY_ALIASES.get(str(raw).strip().lower())


def day_part_for(moment: datetime) -> DayPart:
    hour = moment.hour
    for part in DAY_PART_ORDER:
        start, end = DAY_PART_HOURS[part]
        if start < end:
            if start <= hour < end:
                return part
        elif hour >= start or hour < end:
            return part
    return DayPart.NIGHT


def weekday_for(moment: datetime) -> Weekday:
    return WEEKDAY_ORDER[moment.weekday()]
