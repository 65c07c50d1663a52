import re
from datetime import datetime, timedelta
from dateutil import parser, tz

DEFAULT_TZ = "Asia/Tokyo"

WS_RE = re.compile(r"[ \t\f\v　]+")

# "2026/01/06（火）\n10:00～12:00"
DETAIL_DT_RE = re.compile(
    r"(\d{4})/(\d{1,2})/(\d{1,2})[（(][^)）]*[)）]\s*\n?\s*"
    r"(\d{1,2}):(\d{2})\s*[～〜-]\s*(\d{1,2}):(\d{2})"
)
SLASH_DATE_RE = re.compile(r"(\d{4})/(\d{1,2})/(\d{1,2})")
KANJI_DATE_RE = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日")
US_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
YEAR_MONTH_RE = re.compile(r"(\d{4})年(\d{1,2})月")

DATE_ONLY_START_HOUR = 9


def get_tz(name=None):
    zone = tz.gettz(name or DEFAULT_TZ)
    if zone is None:
        raise ValueError(f"unknown timezone: {name!r}")
    return zone


def clean_text(s: str) -> str:
    """Collapse runs of whitespace (full-width spaces included) and trim."""
    if not s:
        return ""
    lines = [WS_RE.sub(" ", ln).strip() for ln in str(s).splitlines()]
    return " ".join(ln for ln in lines if ln)


def _local_midnight(year, month, day, zone):
    """Midnight of a calendar day in ``zone``; None for impossible dates."""
    try:
        return datetime(int(year), int(month), int(day), tzinfo=zone)
    except ValueError:
        return None


def parse_detail_datetime(text, default_tz=DEFAULT_TZ):
    """
    Parse the list page's "開催日/時間" cell.

    Accepts "2026/01/06（火）\\n10:00～12:00" (full- or half-width brackets,
    ～ 〜 or - as separator) and returns (start, end) as aware datetimes in the
    site timezone. A bare "2026/01/06" becomes a one-hour slot from 09:00.
    Returns None when nothing usable is found.
    """
    if not text:
        return None
    zone = get_tz(default_tz)

    m = DETAIL_DT_RE.search(text)
    if m:
        year, month, day, sh, sm, eh, em = (int(g) for g in m.groups())
        day0 = _local_midnight(year, month, day, zone)
        if day0 is not None and sh <= 24 and eh <= 24 and sm < 60 and em < 60:
            start = day0 + timedelta(hours=sh, minutes=sm)
            end = day0 + timedelta(hours=eh, minutes=em)
            # "22:00～01:00" runs past midnight
            if end < start:
                end += timedelta(days=1)
            return start, end

    m = SLASH_DATE_RE.search(text)
    if m:
        day0 = _local_midnight(*m.groups(), zone)
        if day0 is not None:
            start = day0 + timedelta(hours=DATE_ONLY_START_HOUR)
            return start, start + timedelta(hours=1)

    return None


def parse_date(text, default_tz=DEFAULT_TZ):
    """First recognizable calendar date in ``text`` at local midnight, else None."""
    if not text:
        return None
    zone = get_tz(default_tz)

    m = KANJI_DATE_RE.search(text)
    if m:
        return _local_midnight(*m.groups(), zone)
    m = SLASH_DATE_RE.search(text)
    if m:
        return _local_midnight(*m.groups(), zone)
    m = US_DATE_RE.search(text)
    if m:
        month, day, year = m.groups()
        return _local_midnight(year, month, day, zone)
    return None


def parse_year_month(text, default_tz=DEFAULT_TZ):
    # "2026年1月度広報委員会" -> 2026-01-01
    if not text:
        return None
    m = YEAR_MONTH_RE.search(text)
    if not m:
        return None
    return _local_midnight(m.group(1), m.group(2), 1, get_tz(default_tz))


def coerce_datetime(value, default_tz=DEFAULT_TZ):
    """
    Accept a datetime or an ISO-ish string and return an aware datetime.
    Naive values are taken to be in the site timezone. Returns None for
    anything that can't be understood.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = parser.parse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=get_tz(default_tz))
    return dt
