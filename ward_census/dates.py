from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from dateutil import parser as dateutil_parser

GREGORIAN = "gregorian"
BIKRAM_SAMBAT = "bikram_sambat"

# Years above this come from the Bikram Sambat census columns; no conversion is done.
NON_GREGORIAN_YEAR_FLOOR = 2050

DISPLAY_FORMAT = "%d-%b-%Y"

_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
# Generic parsing needs a year or a month name; bare day numbers stay unparsed.
_FALLBACK_TOKEN_RE = re.compile(r"\d{4}|[A-Za-z]{3,}")
_FALLBACK_DEFAULT = datetime(2000, 1, 1)


@dataclass(frozen=True)
class CanonicalDate:
    year: int
    month: int
    day: int
    calendar: str = GREGORIAN

    @property
    def is_gregorian(self) -> bool:
        return self.calendar == GREGORIAN

    @property
    def iso(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.year, self.month, self.day)

    def to_date(self) -> date | None:
        if not self.is_gregorian:
            return None
        return date(self.year, self.month, self.day)


class SystemClock:
    def today(self) -> date:
        return date.today()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    def __init__(self, moment: date | datetime) -> None:
        if isinstance(moment, datetime):
            self._now = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
        else:
            self._now = datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)

    def today(self) -> date:
        return self._now.date()

    def now(self) -> datetime:
        return self._now


def _build(year: int, month: int, day: int) -> CanonicalDate | None:
    if year > NON_GREGORIAN_YEAR_FLOOR:
        # Bikram Sambat months run to 32 days.
        if 1 <= month <= 12 and 1 <= day <= 32:
            return CanonicalDate(year, month, day, BIKRAM_SAMBAT)
        return None
    try:
        date(year, month, day)
    except ValueError:
        return None
    return CanonicalDate(year, month, day)


def _expand_year(value: int) -> int:
    return 2000 + value if value < 100 else value


def _from_slash_parts(parts: list[int]) -> CanonicalDate | None:
    p1, p2, p3 = parts
    if p1 >= 1000:
        return _build(p1, p2, p3)
    if p1 > 12:
        return _build(_expand_year(p3), p2, p1)
    # Ambiguous below 13: spreadsheet locale is month first.
    return _build(_expand_year(p3), p1, p2)


def normalize_date(raw: Any) -> CanonicalDate | None:
    """Parse a free-text census date.

    Order: ISO ``YYYY-MM-DD`` (time suffix allowed), then three-part slash dates
    (``YYYY/MM/DD`` when the first part is a year, ``DD/MM/YYYY`` when it is
    above 12, ``MM/DD/YYYY`` otherwise), then generic parsing. Returns ``None``
    instead of raising.
    """
    if isinstance(raw, CanonicalDate):
        return raw
    if isinstance(raw, datetime):
        return _build(raw.year, raw.month, raw.day)
    if isinstance(raw, date):
        return _build(raw.year, raw.month, raw.day)

    text = re.sub(r"\s+", " ", str(raw or "").strip())
    if not text:
        return None

    iso_match = _ISO_RE.match(text)
    if iso_match:
        year, month, day = (int(group) for group in iso_match.groups())
        return _build(year, month, day)

    if text.count("/") == 2:
        chunks = [chunk.strip() for chunk in text.split("/")]
        if all(chunk.isdigit() for chunk in chunks):
            return _from_slash_parts([int(chunk) for chunk in chunks])

    if not _FALLBACK_TOKEN_RE.search(text):
        return None
    try:
        parsed = dateutil_parser.parse(text, default=_FALLBACK_DEFAULT)
    except (ValueError, OverflowError, TypeError):
        return None
    return _build(parsed.year, parsed.month, parsed.day)


def days_between(value: Any, today: date) -> int | None:
    """Whole days from ``today`` to ``value``; positive for future dates."""
    canonical = normalize_date(value)
    if canonical is None:
        return None
    resolved = canonical.to_date()
    if resolved is None:
        return None
    return (resolved - today).days


def format_display_date(value: Any, fallback: str | None = None) -> str:
    canonical = normalize_date(value)
    if canonical is None:
        if fallback is not None:
            return fallback
        return str(value or "").strip()
    resolved = canonical.to_date()
    if resolved is None:
        return canonical.iso
    return resolved.strftime(DISPLAY_FORMAT)


def date_sort_key(value: Any) -> tuple[int, tuple[int, int, int]]:
    canonical = normalize_date(value)
    if canonical is None:
        return (1, (0, 0, 0))
    return (0, canonical.sort_key)
