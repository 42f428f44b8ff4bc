"""
Evaluate OpenStreetMap `opening_hours` strings at a given instant.

Supported syntax (what Overpass, Google and TripAdvisor conversions produce):
    24/7
    Mo-Fr 11:30-14:00,18:30-22:00; Sa 18:00-23:00; Su off
    Fr-Mo 18:00-02:00          (day ranges wrap, intervals may cross midnight)
    10:00-22:00                (no day selector: every day)
    Mo-Fr 09:00-18:00; PH off  (public holiday rules are ignored)

Later rules override earlier ones for the days they name, as in OSM. Anything else
(months, week numbers, sunrise, "+", comments) raises OpeningHoursParseError and
the restaurant is treated as having unknown opening hours.

Instants are evaluated on their own wall clock: a search stores the local time of
its service, so no timezone conversion happens here.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DAYS = ["Mo", "Tu", "We", "Th", "Fr", "Sa", "Su"]
DAY_LABELS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MINUTES_PER_DAY = 24 * 60

TIME_RANGE = re.compile(r"^(\d{1,2}):(\d{2})-(\d{1,2}):(\d{2})$")
DAY_TOKEN = re.compile(r"^(Mo|Tu|We|Th|Fr|Sa|Su)(?:-(Mo|Tu|We|Th|Fr|Sa|Su))?$")
HOLIDAY_TOKEN = re.compile(r"^(PH|SH)$")
UNKNOWN_LABEL = "Unknown opening hours :("

Interval = Tuple[int, int]  # minutes since midnight, end may exceed 24:00


class OpeningHoursParseError(ValueError):
    pass


@dataclass
class OpeningHours:
    """Weekly schedule: intervals per weekday (0 = Monday)."""

    schedule: Dict[int, List[Interval]] = field(default_factory=dict)
    always_open: bool = False

    def intervals_on(self, weekday: int) -> List[Interval]:
        """Open intervals of one day, clipped to the day, including spill-over from the day before."""
        if self.always_open:
            return [(0, MINUTES_PER_DAY)]

        intervals = [(start, min(end, MINUTES_PER_DAY)) for start, end in self.schedule.get(weekday, [])]
        for start, end in self.schedule.get((weekday - 1) % 7, []):
            if end > MINUTES_PER_DAY:
                intervals.append((0, end - MINUTES_PER_DAY))
        return sorted(interval for interval in intervals if interval[0] < interval[1])

    def is_open(self, instant: datetime) -> bool:
        minute = instant.hour * 60 + instant.minute
        return any(start <= minute < end for start, end in self.intervals_on(instant.weekday()))


@dataclass
class OpeningHoursOfTheDay:
    open: Optional[bool]
    unknown: bool
    day_label: str
    hours_label: str


def _parse_days(selector: str) -> List[int]:
    days: List[int] = []
    for token in selector.split(","):
        token = token.strip()
        if HOLIDAY_TOKEN.match(token):
            continue
        match = DAY_TOKEN.match(token)
        if not match:
            raise OpeningHoursParseError(f"Unsupported day selector '{token}'")
        start = DAYS.index(match.group(1))
        end = DAYS.index(match.group(2)) if match.group(2) else start
        day = start
        while True:
            if day not in days:
                days.append(day)
            if day == end:
                break
            day = (day + 1) % 7
    return days


def _parse_intervals(text: str) -> List[Interval]:
    intervals = []
    for token in text.split(","):
        match = TIME_RANGE.match(token.strip())
        if not match:
            raise OpeningHoursParseError(f"Unsupported time range '{token.strip()}'")
        start_hour, start_minute, end_hour, end_minute = (int(group) for group in match.groups())
        start = start_hour * 60 + start_minute
        end = end_hour * 60 + end_minute
        if start >= MINUTES_PER_DAY or start_minute >= 60 or end_minute >= 60:
            raise OpeningHoursParseError(f"Invalid time range '{token.strip()}'")
        if end <= start:
            end += MINUTES_PER_DAY  # crosses midnight
        intervals.append((start, end))
    return intervals


def _is_holiday_only(selector: str) -> bool:
    return all(HOLIDAY_TOKEN.match(token.strip()) for token in selector.split(","))


def parse_opening_hours(text: str) -> OpeningHours:
    value = (text or "").strip()
    if not value:
        raise OpeningHoursParseError("Empty opening hours")
    if value == "24/7":
        return OpeningHours(always_open=True)

    schedule: Dict[int, List[Interval]] = {}
    parsed_any = False
    for rule in (part.strip() for part in value.split(";")):
        if not rule:
            continue
        parts = rule.split(None, 1)
        first = parts[0]

        if DAY_TOKEN.match(first.split(",")[0]) or HOLIDAY_TOKEN.match(first.split(",")[0]):
            selector, rest = first, (parts[1].strip() if len(parts) > 1 else "")
            if _is_holiday_only(selector):
                continue
            days = _parse_days(selector)
        else:
            days, rest = list(range(7)), rule

        if rest in ("off", "closed"):
            intervals: List[Interval] = []
        elif rest == "" or rest == "24/7":
            intervals = [(0, MINUTES_PER_DAY)]
        else:
            intervals = _parse_intervals(rest)

        for day in days:
            schedule[day] = list(intervals)
        parsed_any = True

    if not parsed_any:
        raise OpeningHoursParseError(f"No usable rule in '{text}'")
    return OpeningHours(schedule=schedule)


def _format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_hours(opening_hours: OpeningHours, weekday: int) -> str:
    intervals = opening_hours.intervals_on(weekday)
    if not intervals:
        return "Closed"
    if any(start == 0 and end == MINUTES_PER_DAY for start, end in intervals):
        return "Open 24 hours"
    return ", ".join(f"{_format_minutes(start)} - {_format_minutes(end)}" for start, end in intervals)


def opening_hours_of_the_day(instant: datetime, text: Optional[str]) -> OpeningHoursOfTheDay:
    """Open/closed state at `instant` plus a label of the hours of that day."""
    if not text:
        return OpeningHoursOfTheDay(open=None, unknown=True, day_label="", hours_label=UNKNOWN_LABEL)
    try:
        opening_hours = parse_opening_hours(text)
    except OpeningHoursParseError as e:
        logger.info(f"Invalid opening_hours string '{text}': {e}")
        return OpeningHoursOfTheDay(open=None, unknown=True, day_label="", hours_label=UNKNOWN_LABEL)

    weekday = instant.weekday()
    return OpeningHoursOfTheDay(
        open=opening_hours.is_open(instant),
        unknown=False,
        day_label=DAY_LABELS[weekday],
        hours_label=format_hours(opening_hours, weekday),
    )
