"""Parsing of the Retry-After HTTP response header."""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

RETRY_AFTER_HEADER = "Retry-After"

_RETRYABLE_STATUS_CODES = frozenset({429, 503})

_SHORT_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_LONG_WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
_MONTHS = {
    name: number
    for number, name in enumerate(
        ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
         "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"),
        start=1,
    )
}

_SHORT_DAY = "(?:" + "|".join(_SHORT_WEEKDAYS) + ")"
_LONG_DAY = "(?:" + "|".join(_LONG_WEEKDAYS) + ")"
_MONTH = "(" + "|".join(_MONTHS) + ")"
_CLOCK = r"(\d{2}):(\d{2}):(\d{2})"

# IMF-fixdate: "Sun, 06 Nov 1994 08:49:37 GMT"
_IMF_FIXDATE = re.compile(rf"{_SHORT_DAY}, (\d{{2}}) {_MONTH} (\d{{4}}) {_CLOCK} GMT")
# Obsolete RFC 850 form: "Sunday, 06-Nov-94 08:49:37 GMT"
_RFC850 = re.compile(rf"{_LONG_DAY}, (\d{{2}})-{_MONTH}-(\d{{2}}) {_CLOCK} [A-Z]{{3,5}}")
# ANSI C asctime() form: "Sun Nov  6 08:49:37 1994"
_ASCTIME = re.compile(rf"{_SHORT_DAY} {_MONTH} {{1,2}}(\d{{1,2}}) {_CLOCK} (\d{{4}})")

_DELAY_SECONDS = re.compile(r"[+-]?[0-9]+")


def _parse_delay_seconds(value: str) -> timedelta | None:
    if not _DELAY_SECONDS.fullmatch(value):
        return None
    seconds = int(value)
    if seconds <= 0:
        return None
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        return None


def _two_digit_year(year: int) -> int:
    return 1900 + year if year >= 69 else 2000 + year


def _parse_http_time(value: str) -> datetime | None:
    try:
        if match := _IMF_FIXDATE.fullmatch(value):
            day, month, year, hour, minute, second = match.groups()
            return datetime(int(year), _MONTHS[month], int(day), int(hour),
                            int(minute), int(second), tzinfo=timezone.utc)
        if match := _RFC850.fullmatch(value):
            day, month, year, hour, minute, second = match.groups()
            return datetime(_two_digit_year(int(year)), _MONTHS[month], int(day),
                            int(hour), int(minute), int(second), tzinfo=timezone.utc)
        if match := _ASCTIME.fullmatch(value):
            month, day, hour, minute, second, year = match.groups()
            return datetime(int(year), _MONTHS[month], int(day), int(hour),
                            int(minute), int(second), tzinfo=timezone.utc)
    except ValueError:
        return None
    return None


def _parse_http_date(value: str) -> timedelta | None:
    moment = _parse_http_time(value)
    if moment is None:
        return None
    delay = moment - datetime.now(timezone.utc)
    return delay if delay > timedelta(0) else None


def _header_value(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def extract_retry_after_header(status_code: int, headers: Mapping[str, str]) -> timedelta | None:
    """Return the delay requested by a Retry-After header.

    The header is honoured only for 503 and 429 responses. Both the
    delay-seconds and the HTTP-date forms are understood. None is returned
    when no positive delay can be determined.
    """
    if status_code not in _RETRYABLE_STATUS_CODES:
        return None
    value = _header_value(headers, RETRY_AFTER_HEADER)
    if not value:
        return None
    delay = _parse_delay_seconds(value)
    if delay is not None:
        return delay
    return _parse_http_date(value)