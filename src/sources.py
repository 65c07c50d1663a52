import logging
import pathlib
import re
import time
import urllib.parse
from datetime import datetime

import requests
from bs4 import BeautifulSoup

from utils import (
    DEFAULT_TZ,
    clean_text,
    get_tz,
    parse_date,
    parse_detail_datetime,
    parse_year_month,
)

LOG = logging.getLogger("sources")
HTTP_LOG = logging.getLogger("sources.http")
BROWSER_LOG = logging.getLogger("sources.browser")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)
HTTP_TIMEOUT = 30
MAX_REDIRECTS = 5

DEFAULT_APP_ID = 1033
DEFAULT_GROUP_ID = 4562

LOGIN_FORM = 'form[name="frmLogin"]'

# Tried in order when the list page bounces us to a login form whose action is unknown.
LOGIN_ENDPOINTS = [
    "/login/check",
    "/login",
    "/auth/login",
    "/doyu/login",
    "/system/login",
    "/",
]

EVENT_ID_RE = re.compile(r"showEventDetails\('(\d+)'")

CLASS_SELECTORS = [
    ".event-item", ".calendar-event", ".schedule-item",
    "tr[data-date]", "tr.event", "tr.schedule",
    ".event", ".schedule", ".calendar-item",
    'div[class*="event"]', 'div[class*="schedule"]',
    'li[class*="event"]', 'li[class*="schedule"]',
]
TITLE_SELECTORS = [".title", ".event-title", ".subject", ".name", "h1", "h2", "h3", "strong", "b"]
DESC_SELECTORS = [".description", ".event-desc", ".detail", ".content", ".summary", "p"]
START_SELECTORS = [".start-date", ".date", ".event-date", ".time"]
END_SELECTORS = [".end-date", ".date-end"]
LOCATION_SELECTORS = [".location", ".venue", ".place", ".address"]

DATE_WORDS = ("開催日", "日時", "時間")
LOCATION_WORDS = ("会場", "場所", "開催地", "住所", "所在地")
# labels that end a venue value when a row is flattened into one string
NEXT_LABEL = r"開催日|日時|時間|主催|参加費|定員|内容|備考|申込|締切"
LOCATION_LABEL_RE = re.compile(
    r"(?:会場|場所|開催地|住所|所在地)(?:名)?\s*[:：]?\s*"
    r"(.+?)(?=\s*(?:" + NEXT_LABEL + r")|[。．\n]|$)"
)
DETAIL_TAGS = ["tr", "th", "td", "dt", "dd", "p", "li", "span", "div"]
LABEL_TAGS = ("th", "dt", "td")


class ScrapeError(Exception):
    pass


class AuthenticationError(ScrapeError):
    pass


class NotAuthenticatedError(ScrapeError):
    pass


# ---------------- Site URLs ----------------
def default_base_url(prefecture="shimane"):
    return f"https://{prefecture}.e-doyu.jp"


def list_path(app_id=DEFAULT_APP_ID):
    return f"/s.schedule/eventList.html?init&vmode=view&appid={app_id}"


def calendar_list_path(base_url, app_id=DEFAULT_APP_ID, group_id=DEFAULT_GROUP_ID, base_date=None,
                       default_tz=DEFAULT_TZ):
    """
    The list URL scoped to a month view of one group's calendar. The site
    wants the calendar URL URL-encoded inside ``vBaseURL``. Without a
    ``base_date`` the month shown is the one containing today in ``default_tz``.
    """
    if not base_date:
        base_date = datetime.now(tz=get_tz(default_tz)).strftime("%Y/%m/%d")
    inner = (
        f"{base_url.rstrip('/')}/s.calendar/index.html?reset&appid={app_id}"
        f"&vCalType=Month&vSelGroup={group_id}&vDateSelBase={base_date}"
    )
    return f"{list_path(app_id)}&vBaseURL={urllib.parse.quote(inner, safe='')}"


def detail_url(base_url, event_id, app_id=DEFAULT_APP_ID):
    return (
        f"{base_url.rstrip('/')}/s.schedule/eventDetails.html"
        f"?init&vmode=view&appid={app_id}&CCCID=&gw33105={event_id}"
    )


def looks_like_login_page(html):
    if not html:
        return False
    return (
        "frmLogin" in html
        or "ログイン" in html
        or ("username" in html and "password" in html)
    )


def save_debug_html(debug_dir, name, html):
    if not debug_dir:
        return None
    path = pathlib.Path(debug_dir) / name
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html or "", encoding="utf-8")
    except OSError as ex:
        LOG.warning("could not save debug HTML %s: %s", path, ex)
        return None
    LOG.debug("debug HTML saved to %s", path)
    return path


# ---------------- Extraction cascade ----------------
def _text(node, sep=" "):
    return clean_text(node.get_text(sep, strip=True)) if node else ""


def _extract_text(el, selectors):
    for sel in selectors:
        txt = _text(el.select_one(sel))
        if txt:
            return txt
    # nothing matched: the element's own text, truncated
    return _text(el)[:100]


def _extract_date(el, selectors, default_tz):
    for sel in selectors:
        node = el.select_one(sel)
        if not node:
            continue
        dt = parse_date(node.get_text(" ", strip=True), default_tz)
        if dt:
            return dt
    return None


def _parse_event_links(soup, base_url, app_id, default_tz):
    events = []
    links = soup.select('a[onclick*="showEventDetails"]')
    LOG.debug("link-based: %d event links", len(links))

    for index, a in enumerate(links):
        title = _text(a)
        if not title:
            continue
        m = EVENT_ID_RE.search(a.get("onclick") or "")
        event_id = m.group(1) if m else f"event-{index}"

        start = end = None
        location = ""
        row = a.find_parent("tr")
        cells = row.find_all("td") if row else []
        # columns: ... | 開催日/時間 (3rd) | ... | 会場名 (6th)
        if len(cells) > 2:
            parsed = parse_detail_datetime(cells[2].get_text("\n", strip=True), default_tz)
            if parsed:
                start, end = parsed
        if len(cells) > 5:
            location = _text(cells[5])

        if not start:
            start = parse_year_month(title, default_tz)

        events.append({
            "id": event_id,
            "title": title,
            "description": title,
            "start": start,
            "end": end,
            "location": location,
            "link": detail_url(base_url, event_id, app_id),
        })
        LOG.debug(
            "event found: %s (id=%s) %s",
            title, event_id, start.strftime("%Y-%m-%d %H:%M") if start else "no date",
        )
    return events


def _parse_class_structure(soup, base_url, default_tz):
    events = []
    seen = set()
    for sel in CLASS_SELECTORS:
        elements = soup.select(sel)
        if not elements:
            continue
        LOG.debug("class-based: %d elements for %s", len(elements), sel)

        for index, el in enumerate(elements):
            if id(el) in seen:
                continue
            seen.add(id(el))

            a = el.select_one("a[href]")
            href = a.get("href") if a else el.get("href")
            ev = {
                "id": el.get("data-id") or el.get("id") or f"event-{sel}-{index}",
                "title": _extract_text(el, TITLE_SELECTORS),
                "description": _extract_text(el, DESC_SELECTORS),
                "start": _extract_date(el, START_SELECTORS, default_tz),
                "end": _extract_date(el, END_SELECTORS, default_tz),
                "location": _extract_text(el, LOCATION_SELECTORS),
                "link": urllib.parse.urljoin(base_url + "/", href) if href else None,
            }
            if ev["title"]:
                events.append(ev)

        if len(elements) > 5:
            break
    return events


def _parse_table_structure(soup, default_tz):
    events = []
    for index, row in enumerate(soup.select("table tr")):
        if index == 0:
            continue  # header
        cells = row.find_all(["td", "th"])
        if len(cells) < 2:
            continue
        first = _text(cells[0])
        title = first or _text(cells[1])
        if not title:
            continue
        events.append({
            "id": f"table-event-{index}",
            "title": title,
            "description": _text(cells[2]) if len(cells) > 2 else "",
            "start": parse_date(first, default_tz),
            "end": None,
            "location": _text(cells[3]) if len(cells) > 3 else "",
            "link": None,
        })
    return events


def _parse_list_structure(soup, default_tz):
    events = []
    for index, item in enumerate(soup.select("ul li, ol li")):
        text = _text(item)
        if len(text) <= 10:
            continue
        events.append({
            "id": f"list-event-{index}",
            "title": text[:50],
            "description": text,
            "start": parse_date(text, default_tz),
            "end": None,
            "location": "",
            "link": None,
        })
    return events


def parse_schedule_html(html, base_url=None, app_id=DEFAULT_APP_ID, default_tz=DEFAULT_TZ):
    """
    Turn an event-list page into event dicts.

    Strategies run in order and the first one that yields anything wins:
      1) the site's own markup: <a onclick="showEventDetails('123')"> inside a table row
      2) common event/schedule class names
      3) any table, one row per event
      4) any list, one item per event
    """
    base_url = (base_url or default_base_url()).rstrip("/")
    soup = BeautifulSoup(html or "", "html.parser")

    LOG.debug(
        "HTML structure: elements=%d table=%s list=%s div=%s title=%r",
        len(soup.find_all(True)),
        bool(soup.find("table")),
        bool(soup.find(["ul", "ol"])),
        bool(soup.find("div")),
        _text(soup.title),
    )

    events = _parse_event_links(soup, base_url, app_id, default_tz)
    strategy = "link"
    if not events:
        LOG.debug("no event links, trying class-based parsing")
        events = _parse_class_structure(soup, base_url, default_tz)
        strategy = "class"
    if not events:
        LOG.debug("trying table-based parsing")
        events = _parse_table_structure(soup, default_tz)
        strategy = "table"
    if not events:
        LOG.debug("trying list-based parsing")
        events = _parse_list_structure(soup, default_tz)
        strategy = "list"

    LOG.info("Parsed %d events (%s)", len(events), strategy if events else "none")
    return events


def _is_date_text(txt):
    return ("年" in txt and "月" in txt and "日" in txt) or any(w in txt for w in DATE_WORDS)


def _is_location_text(txt):
    return any(w in txt for w in LOCATION_WORDS)


def _labelled_texts(soup, matches):
    """
    Texts of the innermost elements satisfying ``matches``; wrappers whose
    flattened text also matches are skipped. A bare label cell
    (<th>会場</th>, <dt>会場</dt>) is joined with the value cell after it.
    """
    out = []
    for el in soup.find_all(DETAIL_TAGS):
        txt = _text(el)
        if not txt or len(txt) > 200 or not matches(txt):
            continue
        if any(matches(_text(d)) for d in el.find_all(DETAIL_TAGS)):
            continue
        if el.name in LABEL_TAGS and len(txt) <= 8:
            value = el.find_next_sibling(["td", "dd"])
            if value is not None:
                txt = f"{txt} {_text(value)}"
        if txt not in out:
            out.append(txt)
    return out


def parse_event_details(html):
    """
    Pull loosely-labelled facts out of an event detail page. Returns a dict of
    title, date_texts, location_texts and content_texts.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    details = {"title": _text(soup.select_one("h1, h2, h3, .title, .event-title"))}
    details["date_texts"] = _labelled_texts(soup, _is_date_text)
    details["location_texts"] = _labelled_texts(soup, _is_location_text)

    content = []
    for el in soup.select("p, div, span"):
        txt = _text(el)
        if 10 < len(txt) < 500 and txt not in content:
            content.append(txt)
        if len(content) >= 5:
            break
    details["content_texts"] = content
    return details


def apply_event_details(event, details, default_tz=DEFAULT_TZ):
    """Fill gaps in a list-page event from its detail page. Mutates and returns ``event``."""
    if not details:
        return event
    if not event.get("location"):
        for txt in details.get("location_texts") or []:
            m = LOCATION_LABEL_RE.search(txt)
            loc = clean_text(m.group(1)) if m else ""
            if loc:
                event["location"] = loc
                break
    if not event.get("start"):
        parsed = parse_detail_datetime("\n".join(details.get("date_texts") or []), default_tz)
        if parsed:
            event["start"], event["end"] = parsed
    contents = details.get("content_texts") or []
    if contents and event.get("description") in ("", None, event.get("title")):
        event["description"] = "\n".join(contents)
    return event


# ---------------- HTTP client ----------------
class DoyuClient:
    """requests-based client: form login with fallbacks, then the list page."""

    def __init__(self, base_url, app_id=DEFAULT_APP_ID, group_id=DEFAULT_GROUP_ID,
                 base_date=None, default_tz=DEFAULT_TZ, debug_dir="logs", session=None):
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.group_id = group_id
        self.base_date = base_date
        self.default_tz = default_tz
        self.debug_dir = debug_dir
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.session.max_redirects = MAX_REDIRECTS
        self.is_authenticated = False
        self._credentials = None

    @property
    def list_url(self):
        return self.base_url + list_path(self.app_id)

    @property
    def calendar_url(self):
        return self.base_url + calendar_list_path(
            self.base_url, self.app_id, self.group_id, self.base_date, self.default_tz
        )

    def _request(self, method, url, **kwargs):
        url = urllib.parse.urljoin(self.base_url + "/", url)
        kwargs.setdefault("timeout", HTTP_TIMEOUT)
        resp = self.session.request(method, url, **kwargs)
        HTTP_LOG.debug("HTTP %s %s -> %d (len=%d)", method, url, resp.status_code, len(resp.text or ""))
        resp.raise_for_status()
        return resp

    def _login_form_data(self, soup, username, password):
        data = [("username", username), ("password", password)]
        form = soup.select_one(LOGIN_FORM)
        if form is None:
            return data
        for inp in form.select('input[type="hidden"]'):
            name, value = inp.get("name"), inp.get("value")
            if name and value:
                data.append((name, value))
                HTTP_LOG.debug("hidden field added: %s", name)
        return data

    def _post_form(self, url, data, referer):
        return self._request(
            "POST", url, data=data,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Referer": referer,
            },
        )

    def _log_forms(self, html):
        soup = BeautifulSoup(html, "html.parser")
        forms = soup.find_all("form")
        HTTP_LOG.debug("login page has %d forms", len(forms))
        for i, form in enumerate(forms):
            HTTP_LOG.debug("  form %d: action=%s method=%s", i, form.get("action"), form.get("method"))
            for j, inp in enumerate(form.find_all("input")):
                HTTP_LOG.debug("    input %d: name=%s type=%s", j, inp.get("name"), inp.get("type"))

    def _try_form_login(self, username, password):
        self._request("GET", "/")
        try:
            self._log_forms(self._request("GET", "/login").text)
        except requests.RequestException as ex:
            HTTP_LOG.debug("no /login page: %s", ex)

        resp = self._request("GET", self.list_url)
        soup = BeautifulSoup(resp.text, "html.parser")
        form = soup.select_one(LOGIN_FORM)
        if form is None:
            HTTP_LOG.info("No login form detected - public access or already authenticated")
            return True

        action = urllib.parse.urljoin(self.list_url, form.get("action") or "")
        HTTP_LOG.debug("login form action: %s", action)
        login_resp = self._post_form(action, self._login_form_data(soup, username, password), self.list_url)
        HTTP_LOG.debug("login response status: %d", login_resp.status_code)

        verify = self._request("GET", self.list_url)
        if "frmLogin" not in verify.text:
            HTTP_LOG.info("Login successful (form auth)")
            return True
        HTTP_LOG.warning("Login verification failed - still seeing login form")
        return False

    def _try_basic_auth(self, username, password):
        resp = self._request("GET", self.list_url, auth=(username, password))
        if "schedule" in resp.text:
            HTTP_LOG.info("Login successful (basic auth)")
            return True
        return False

    def _try_public_access(self):
        self._request("GET", self.list_url)
        HTTP_LOG.info("Access successful (no auth required)")
        return True

    def login(self, username, password):
        HTTP_LOG.info("Logging in to %s as %s", self.base_url, username)
        self._credentials = (username, password)

        attempts = [
            ("form auth", lambda: self._try_form_login(username, password)),
            ("basic auth", lambda: self._try_basic_auth(username, password)),
            ("public access", self._try_public_access),
        ]
        for name, attempt in attempts:
            try:
                if attempt():
                    self.is_authenticated = True
                    return True
            except requests.RequestException as ex:
                HTTP_LOG.warning("%s failed: %s", name, ex)

        HTTP_LOG.error("All login methods failed")
        return False

    def _login_via_endpoints(self, html, referer):
        if not self._credentials or not all(self._credentials):
            raise AuthenticationError("Username and password not configured")
        username, password = self._credentials
        data = self._login_form_data(BeautifulSoup(html, "html.parser"), username, password)

        for endpoint in LOGIN_ENDPOINTS:
            HTTP_LOG.debug("trying login endpoint %s", endpoint)
            try:
                resp = self._post_form(endpoint, data, referer)
                if resp.status_code not in (200, 302):
                    continue
                verify = self._request("GET", referer)
            except requests.RequestException as ex:
                HTTP_LOG.debug("login attempt failed for %s: %s", endpoint, ex)
                continue
            if "frmLogin" not in verify.text:
                HTTP_LOG.info("Login successful via %s", endpoint)
                return verify.text
            HTTP_LOG.debug("login verification failed for %s", endpoint)

        raise AuthenticationError("Authentication failed - no valid login endpoint found")

    def fetch_schedule_html(self):
        if not self.is_authenticated:
            raise NotAuthenticatedError("Not authenticated. Please login first.")

        url = self.calendar_url
        HTTP_LOG.info("Fetching schedule from %s", url)
        html = self._request("GET", url).text
        if looks_like_login_page(html):
            HTTP_LOG.info("Login page detected, authenticating")
            html = self._login_via_endpoints(html, url)

        save_debug_html(self.debug_dir, "debug-response.html", html)
        return html

    def fetch_schedule(self):
        return parse_schedule_html(
            self.fetch_schedule_html(), self.base_url, self.app_id, self.default_tz
        )


# ---------------- Headless browser client ----------------
class BrowserClient:
    """
    Playwright (Chromium) client. Renders the list page the way a member's
    browser would, for when the plain HTTP flow can't get past the login form.
    """

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-web-security",
        "--disable-features=VizDisplayCompositor",
    ]
    NO_CACHE_HEADERS = {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
    }

    def __init__(self, base_url, app_id=DEFAULT_APP_ID, group_id=DEFAULT_GROUP_ID,
                 base_date=None, default_tz=DEFAULT_TZ, debug_dir="logs", headless=True):
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.group_id = group_id
        self.base_date = base_date
        self.default_tz = default_tz
        self.debug_dir = debug_dir
        self.headless = headless
        self._pw = None
        self.browser = None
        self.context = None
        self.page = None
        self.is_authenticated = False
        self._credentials = None

    @property
    def calendar_url(self):
        return self.base_url + calendar_list_path(
            self.base_url, self.app_id, self.group_id, self.base_date, self.default_tz
        )

    def initialize(self):
        from playwright.sync_api import sync_playwright

        BROWSER_LOG.info("Starting Chromium (headless=%s)", self.headless)
        self._pw = sync_playwright().start()
        self.browser = self._pw.chromium.launch(headless=self.headless, args=self.LAUNCH_ARGS)
        self.context = self.browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1280, "height": 720},
            locale="ja-JP",
            timezone_id=self.default_tz,
            extra_http_headers=self.NO_CACHE_HEADERS,
        )
        self.page = self.context.new_page()

    def _page_alive(self):
        if self.page is None or self.page.is_closed():
            return False
        try:
            self.page.title()
        except Exception as ex:
            BROWSER_LOG.debug("page unusable: %s", str(ex)[:160])
            return False
        return True

    def _has_login_form(self):
        return self.page.query_selector(LOGIN_FORM) is not None

    def login(self, username, password):
        if self.page is None:
            raise ScrapeError("Browser not initialized. Call initialize() first.")
        self._credentials = (username, password)
        page = self.page

        try:
            url = self.calendar_url
            BROWSER_LOG.info("Navigating to %s", url)
            page.goto(url, wait_until="networkidle", timeout=30000)
            BROWSER_LOG.debug("page title: %r", page.title())

            if not self._has_login_form():
                BROWSER_LOG.info("No login required")
                self.is_authenticated = True
                return True

            page.wait_for_selector('input[name="username"]', timeout=5000)
            page.fill('input[name="username"]', username)
            page.wait_for_selector('input[name="password"]', timeout=5000)
            page.fill('input[name="password"]', password)
            page.wait_for_timeout(1000)

            submit = page.query_selector(
                f'{LOGIN_FORM} input[type="submit"], '
                f'{LOGIN_FORM} button[type="submit"], '
                f'{LOGIN_FORM} button'
            )
            if submit:
                submit.click()
            else:
                page.keyboard.press("Enter")

            try:
                page.wait_for_load_state("networkidle", timeout=15000)
            except Exception as ex:
                BROWSER_LOG.debug("no navigation after submit (%s), checking page", str(ex)[:120])
            page.wait_for_timeout(2000)

            if not self._has_login_form():
                self.is_authenticated = True
                BROWSER_LOG.info("Login successful")
                self.take_screenshot("login-success.png")
                return True

            BROWSER_LOG.error("Login failed - still shows login form")
            self.take_screenshot("login-failed.png")
            messages = page.eval_on_selector_all(
                ".error, .alert, .warning",
                "els => els.map(el => (el.textContent || '').trim())",
            )
            if messages:
                BROWSER_LOG.error("site messages: %s", messages)
            return False
        except Exception as ex:
            BROWSER_LOG.error("Login error: %s", str(ex)[:200])
            return False

    def _reopen_and_login(self):
        BROWSER_LOG.info("Page detached, re-authenticating")
        self.is_authenticated = False
        self.page = self.context.new_page()
        username, password = self._credentials or (None, None)
        if not (username and password and self.login(username, password)):
            raise AuthenticationError("Failed to re-authenticate after page detachment")

    def fetch_schedule_html(self):
        if not self.is_authenticated:
            raise NotAuthenticatedError("Not authenticated. Call login() first.")
        if not self._page_alive():
            self._reopen_and_login()

        # detail lookups leave the page elsewhere, so always go back to the list
        try:
            self.page.goto(self.calendar_url, wait_until="networkidle", timeout=15000)
        except Exception as ex:
            BROWSER_LOG.warning("Navigation failed, using current content: %s", str(ex)[:160])

        if self._has_login_form():
            BROWSER_LOG.info("Session expired, logging in again")
            username, password = self._credentials or (None, None)
            if not (username and password and self.login(username, password)):
                raise AuthenticationError("Failed to re-authenticate after session expiry")

        html = self.page.content()
        BROWSER_LOG.info("Retrieved HTML: %d characters", len(html))
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        save_debug_html(self.debug_dir, f"browser-response-{ts}.html", html)
        save_debug_html(self.debug_dir, "browser-response-latest.html", html)
        return html

    def fetch_event_details(self, event_id):
        if self.page is None:
            raise ScrapeError("Browser not initialized.")
        url = detail_url(self.base_url, event_id, self.app_id)
        BROWSER_LOG.debug("event details %s", url)
        try:
            self.page.goto(url, wait_until="networkidle", timeout=15000)
            html = self.page.content()
        except Exception as ex:
            BROWSER_LOG.warning("details failed for event %s: %s", event_id, str(ex)[:160])
            return None
        save_debug_html(self.debug_dir, f"event-detail-{event_id}.html", html)
        details = parse_event_details(html)
        details["event_id"] = event_id
        return details

    def fetch_all_event_details(self, event_ids, limit=5, delay=1.0):
        out = []
        ids = list(event_ids)[:limit]
        BROWSER_LOG.info("Fetching details for %d events", len(ids))
        for n, event_id in enumerate(ids):
            if n:
                time.sleep(delay)
            details = self.fetch_event_details(event_id)
            if details:
                out.append(details)
        return out

    def take_screenshot(self, filename="debug-screenshot.png"):
        if self.page is None or not self.debug_dir:
            return None
        path = pathlib.Path(self.debug_dir) / filename
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(path), full_page=True)
        except Exception as ex:
            BROWSER_LOG.warning("screenshot failed: %s", str(ex)[:160])
            return None
        BROWSER_LOG.debug("screenshot saved: %s", path)
        return path

    def close(self):
        if self.browser is not None:
            BROWSER_LOG.info("Closing browser")
            self.browser.close()
        if self._pw is not None:
            self._pw.stop()
        self._pw = self.browser = self.context = self.page = None
        self.is_authenticated = False
