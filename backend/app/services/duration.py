"""
Duration phrases for discount timers.

Parses "6 часов", "3 дня", "2 недели", "12h", "24 hours", "1 week", "30 минут"
into a Duration and renders it back in Russian with correct plural forms.

Patterns are tried in order; Russian units first so "мин" never falls
through to the English single-letter forms.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR
MS_PER_WEEK = 7 * MS_PER_DAY


class DurationUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


UNIT_MS = {
    DurationUnit.MINUTES: MS_PER_MINUTE,
    DurationUnit.HOURS: MS_PER_HOUR,
    DurationUnit.DAYS: MS_PER_DAY,
    DurationUnit.WEEKS: MS_PER_WEEK,
}

# (one, few, many)
UNIT_FORMS_RU = {
    DurationUnit.MINUTES: ("минута", "минуты", "минут"),
    DurationUnit.HOURS: ("час", "часа", "часов"),
    DurationUnit.DAYS: ("день", "дня", "дней"),
    DurationUnit.WEEKS: ("неделя", "недели", "недель"),
}

DURATION_PATTERNS = [
    (re.compile(r"(\d+)\s*(?:часов|часа|час)", re.IGNORECASE), DurationUnit.HOURS),
    (re.compile(r"(\d+)\s*(?:дней|дня|день|дн)", re.IGNORECASE), DurationUnit.DAYS),
    (re.compile(r"(\d+)\s*(?:недель|недели|неделю|неделя|нед)", re.IGNORECASE), DurationUnit.WEEKS),
    (re.compile(r"(\d+)\s*(?:минут[аы]?|минуту|мин)", re.IGNORECASE), DurationUnit.MINUTES),
    (re.compile(r"(\d+)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE), DurationUnit.HOURS),
    (re.compile(r"(\d+)\s*(?:days?|d)\b", re.IGNORECASE), DurationUnit.DAYS),
    (re.compile(r"(\d+)\s*(?:weeks?|w)\b", re.IGNORECASE), DurationUnit.WEEKS),
    (re.compile(r"(\d+)\s*(?:minutes?|mins?|m)\b", re.IGNORECASE), DurationUnit.MINUTES),
]

# Finds a duration phrase inside a longer command ("скидка 20% на iPhone на 3 дня")
DURATION_IN_TEXT = re.compile(
    r"\d+\s*(?:час(?:ов|а)?|минут(?:ы|у|а)?|мин|дн(?:ей|я|ь)?|день|недел(?:ь|и|ю|я)"
    r"|hours?|hrs?|h|days?|d|weeks?|w|minutes?|mins?)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Duration:
    value: int
    unit: DurationUnit

    @property
    def milliseconds(self) -> int:
        return self.value * UNIT_MS[self.unit]

    def as_timedelta(self) -> timedelta:
        return timedelta(milliseconds=self.milliseconds)


def plural_ru(n: int, one: str, few: str, many: str) -> str:
    n = abs(n) % 100
    if 11 <= n <= 19:
        return many
    last = n % 10
    if last == 1:
        return one
    if 2 <= last <= 4:
        return few
    return many


def parse_duration(text: Optional[str]) -> Optional[Duration]:
    """Return the first positive duration found in text, or None."""
    if not text or not isinstance(text, str):
        return None

    normalized = text.lower().strip()
    for pattern, unit in DURATION_PATTERNS:
        match = pattern.search(normalized)
        if match:
            value = int(match.group(1))
            if value > 0:
                return Duration(value=value, unit=unit)
    return None


def parse_duration_to_ms(text: Optional[str]) -> Optional[int]:
    duration = parse_duration(text)
    return duration.milliseconds if duration else None


def find_duration_phrase(text: str) -> Optional[str]:
    """Extract the raw duration phrase from a free-text command."""
    match = DURATION_IN_TEXT.search(text or "")
    return match.group(0) if match else None


def format_duration(duration: Optional[Duration]) -> str:
    """Duration(3, DAYS) -> "3 дня". Keeps the unit the user chose."""
    if duration is None:
        return "постоянная"
    forms = UNIT_FORMS_RU[duration.unit]
    return f"{duration.value} {plural_ru(duration.value, *forms)}"


def format_duration_ms(ms: Optional[int]) -> str:
    """Render milliseconds with the largest unit that divides evenly."""
    if not ms or ms <= 0:
        return "постоянная"
    for unit in (DurationUnit.DAYS, DurationUnit.HOURS, DurationUnit.MINUTES):
        size = UNIT_MS[unit]
        if ms % size == 0:
            return format_duration(Duration(value=ms // size, unit=unit))
    return format_duration(Duration(value=max(1, round(ms / MS_PER_MINUTE)), unit=DurationUnit.MINUTES))


def parse_expiry(value: str, now: Optional[datetime] = None) -> datetime:
    """
    Resolve a discount expiry: a duration phrase relative to now, or an ISO datetime.

    Raises:
        ValueError: value is neither
    """
    now = now or datetime.now(timezone.utc)
    text = str(value).strip()

    duration = parse_duration(text)
    if duration:
        return now + duration.as_timedelta()

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid discount expiration: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
