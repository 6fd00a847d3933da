"""Decode leaflet validity windows from chain-specific URL encodings.

Every decoder is total: when the chain's pattern is missing or yields an
impossible date, the chain's fallback window is returned with
``fallback=True``. All returned datetimes are UTC midnight.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from leaflet_ingest.parse.models import ValidityWindow, utc_now

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)

# "/aktualni-letci-250618" or "/250618/"
SPAR_SEGMENT_RE = re.compile(r"(?:^|[/-])(\d{6})(?=$|[/-])")
# "..._16_6-30_6_2025-web"
DM_SLUG_RE = re.compile(r"_(\d{1,2})_(\d{1,2})-(\d{1,2})_(\d{1,2})_(\d{4})-web$")
# "vrijedi-od-18-06-do-21-06"
LIDL_SLUG_RE = re.compile(r"vrijedi-od-(\d{2})-(\d{2})-do-(\d{2})-(\d{2})")
# "P162025HR" -> page 1, month 6, year 2025
EUROSPIN_CODE_RE = re.compile(r"^P\d+(\d{1,2})(\d{4})HR$", re.IGNORECASE)

EUROSPIN_START_DAY = 20


def utc_date(year: int, month: int, day: int) -> datetime:
    """UTC midnight for a 1-based calendar date; raises ValueError if impossible."""
    return datetime(year, month, day, tzinfo=timezone.utc)


def today(now: datetime | None = None) -> datetime:
    """``now`` (default: current time) truncated to UTC midnight."""
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def week_fallback(now: datetime | None = None) -> ValidityWindow:
    start = today(now)
    return ValidityWindow(start, start + WEEK, fallback=True)


def same_day_fallback(now: datetime | None = None) -> ValidityWindow:
    start = today(now)
    return ValidityWindow(start, start, fallback=True)


def _window(valid_from: datetime, valid_to: datetime) -> ValidityWindow | None:
    if valid_to < valid_from:
        return None
    return ValidityWindow(valid_from, valid_to)


def decode_spar(url: str, now: datetime | None = None) -> ValidityWindow:
    """SPAR/Interspar: ``YYMMDD`` path segment, valid for one week."""
    path = urlparse(url).path
    match = SPAR_SEGMENT_RE.search(path)
    if match:
        seg = match.group(1)
        try:
            valid_from = utc_date(2000 + int(seg[:2]), int(seg[2:4]), int(seg[4:6]))
        except ValueError:
            logger.debug(f"Impossible SPAR date segment {seg} in {url}")
        else:
            return ValidityWindow(valid_from, valid_from + WEEK)
    logger.info(f"No SPAR date segment in {url}, using fallback window")
    return week_fallback(now)


def decode_dm(url: str, now: datetime | None = None) -> ValidityWindow:
    """DM: ``_D1_M1-D2_M2_YYYY-web`` slug suffix."""
    match = DM_SLUG_RE.search(url)
    if match:
        d1, m1, d2, m2, year = (int(g) for g in match.groups())
        try:
            window = _window(utc_date(year, m1, d1), utc_date(year, m2, d2))
        except ValueError:
            window = None
        if window:
            return window
    logger.info(f"No DM date slug in {url}, using fallback window")
    return week_fallback(now)


def decode_lidl(url: str, now: datetime | None = None) -> ValidityWindow:
    """Lidl: ``vrijedi-od-DD-MM-do-DD-MM``.

    The slug carries no year, so the current UTC year is assumed. Windows that
    cross a year boundary come out inverted and fall back instead.
    """
    match = LIDL_SLUG_RE.search(url)
    if match:
        d1, m1, d2, m2 = (int(g) for g in match.groups())
        year = today(now).year
        try:
            window = _window(utc_date(year, m1, d1), utc_date(year, m2, d2))
        except ValueError:
            window = None
        if window:
            return window
    logger.info(f"No Lidl date slug in {url}, using fallback window")
    return same_day_fallback(now)


def decode_eurospin_code(code: str, now: datetime | None = None) -> ValidityWindow:
    """Eurospin promotion code ``P<page><M><YYYY>HR``; leaflets start on the 20th."""
    match = EUROSPIN_CODE_RE.match(code or "")
    if match:
        month, year = int(match.group(1)), int(match.group(2))
        try:
            valid_from = utc_date(year, month, EUROSPIN_START_DAY)
        except ValueError:
            logger.debug(f"Impossible Eurospin month in code {code}")
        else:
            return ValidityWindow(valid_from, valid_from + WEEK)
    logger.info(f"Unrecognized Eurospin code {code!r}, using fallback window")
    return week_fallback(now)


def decode_eurospin(url: str, now: datetime | None = None) -> ValidityWindow:
    """Eurospin: decode the ``code`` query parameter of a promotion URL."""
    codes = parse_qs(urlparse(url).query).get("code", [])
    return decode_eurospin_code(codes[0] if codes else "", now)
