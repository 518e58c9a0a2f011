"""
Calendar date recognition in free clinical text.

Only full dates (day, month and year) count; "10/1" or "Oct 1" alone are
ambiguous and are never returned.
"""
from __future__ import annotations

import re
from datetime import date, datetime

_FULL_MONTHS = (
    "January|February|March|April|May|June|July|August"
    "|September|October|November|December"
)
_ABBREV_MONTHS = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"

_DATE_PATTERNS = [
    # 0: MM/DD/YYYY or MM-DD-YYYY
    r"\b(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})\b",
    # 1: YYYY-MM-DD
    r"\b(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})\b",
    # 2: Month DD, YYYY / Mon DD, YYYY, optional ordinal suffix
    rf"\b({_FULL_MONTHS}|{_ABBREV_MONTHS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b",
    # 3: DD Month YYYY / DD Mon YYYY
    rf"\b(\d{{1,2}})\s+({_FULL_MONTHS}|{_ABBREV_MONTHS})\.?,?\s+(\d{{4}})\b",
]

_COMPILED = [re.compile(p, re.IGNORECASE) for p in _DATE_PATTERNS]

_MONTH_MAP = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4,
    "jun": 6, "jul": 7, "aug": 8, "sep": 9, "sept": 9,
    "oct": 10, "nov": 11, "dec": 12,
}


def _parse_date_from_match(match: re.Match, pattern_index: int) -> date | None:
    """Parse a date from a regex match based on which pattern matched."""
    try:
        groups = match.groups()
        if pattern_index == 0:  # MM/DD/YYYY
            month, day, year = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 1:  # YYYY-MM-DD
            year, month, day = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 2:  # Month DD YYYY
            month = _MONTH_MAP.get(groups[0].lower(), 0)
            day, year = int(groups[1]), int(groups[2])
        elif pattern_index == 3:  # DD Month YYYY
            day = int(groups[0])
            month = _MONTH_MAP.get(groups[1].lower(), 0)
            year = int(groups[2])
        else:
            return None

        if 1 <= month <= 12 and 1 <= day <= 31 and 1900 <= year <= 2100:
            return date(year, month, day)
    except (ValueError, IndexError):
        pass
    return None


def find_dates_in_text(text: str) -> list[tuple[date, int]]:
    """Find all full dates in text with their character positions, ordered by position."""
    if not text:
        return []
    results: list[tuple[date, int]] = []
    seen: set[int] = set()
    for i, pattern in enumerate(_COMPILED):
        for m in pattern.finditer(text):
            if m.start() in seen:
                continue
            d = _parse_date_from_match(m, i)
            if d:
                seen.add(m.start())
                results.append((d, m.start()))
    results.sort(key=lambda item: item[1])
    return results


def parse_date_text(text: str | None) -> date | None:
    """Parse the first full date found in a short piece of text."""
    if not text:
        return None
    found = find_dates_in_text(text)
    return found[0][0] if found else None


def closest_date(text: str, position: int) -> date | None:
    """Return the date whose match starts nearest to ``position`` (earlier match wins ties)."""
    found = find_dates_in_text(text)
    if not found:
        return None
    best = min(found, key=lambda item: (abs(item[1] - position), item[1]))
    return best[0]


def coerce_date(value: object) -> date | None:
    """Best-effort conversion of payload values (date, datetime, ISO or free text) to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            return parse_date_text(raw)
    return None
