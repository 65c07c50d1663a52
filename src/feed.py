import logging
import os
from datetime import datetime, timedelta, timezone

from icalendar import Calendar, Event

from utils import DEFAULT_TZ, coerce_datetime

log = logging.getLogger("feed")

PRODID = "-//doyu-schedule-feed//e-doyu schedule//JA"
DEFAULT_DURATION = timedelta(hours=1)


def calendar_domain(settings: dict) -> str:
    cal = settings.get("calendar") or {}
    prefecture = (settings.get("site") or {}).get("prefecture") or "shimane"
    return cal.get("domain") or f"{prefecture}-doyu.local"


def calendar_name(settings: dict) -> str:
    cal = settings.get("calendar") or {}
    prefecture = (settings.get("site") or {}).get("prefecture") or "shimane"
    return cal.get("name") or f"{prefecture}県同友会スケジュール"


def calendar_description(settings: dict) -> str:
    cal = settings.get("calendar") or {}
    prefecture = (settings.get("site") or {}).get("prefecture") or "shimane"
    return cal.get("description") or f"{prefecture}県同友会のイベントスケジュール"


def to_ical_event(ev: dict, settings: dict, now: datetime) -> Event:
    tzname = settings.get("timezone") or DEFAULT_TZ
    title = (ev.get("title") or "").strip()

    start = coerce_datetime(ev.get("start"), tzname)
    if start is None:
        log.warning("Invalid start date for event %r, using current time", title)
        start = now
    end = coerce_datetime(ev.get("end"), tzname)
    if end is None:
        end = start + DEFAULT_DURATION

    e = Event()
    e.add("uid", f"doyu-{ev.get('id')}@{calendar_domain(settings)}")
    e.add("summary", title or "No Title")
    e.add("dtstart", start.astimezone(timezone.utc))
    e.add("dtend", end.astimezone(timezone.utc))
    e.add("dtstamp", now)
    e.add("created", now)
    e.add("last-modified", now)
    if ev.get("description"):
        e.add("description", ev["description"])
    if ev.get("location"):
        e.add("location", ev["location"])
    if ev.get("link"):
        e.add("url", ev["link"])

    log.debug("Adding event: %s on %s", title or "No Title", start.strftime("%Y-%m-%d %H:%M"))
    return e


def build_calendar(events, settings: dict, now: datetime = None) -> Calendar:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("X-WR-CALNAME", calendar_name(settings))
    cal.add("X-WR-CALDESC", calendar_description(settings))
    cal.add("X-WR-TIMEZONE", settings.get("timezone") or DEFAULT_TZ)

    for ev in events:
        cal.add_component(to_ical_event(ev, settings, now))
    return cal


def write_calendar(path, events, settings: dict, now: datetime = None) -> int:
    events = list(events)
    cal = build_calendar(events, settings, now=now)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(cal.to_ical())
    log.info("Wrote %s (events=%d)", path, len(events))
    return len(events)
