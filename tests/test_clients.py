import pytest
import requests

from sources import (
    LOGIN_FORM,
    AuthenticationError,
    BrowserClient,
    DoyuClient,
    NotAuthenticatedError,
    ScrapeError,
    parse_schedule_html,
)

BASE = "https://shimane.e-doyu.jp"


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Stands in for requests.Session; ``handler(method, url, kwargs)`` returns (status, body)."""

    def __init__(self, handler):
        self.handler = handler
        self.headers = {}
        self.max_redirects = 30
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        status, body = self.handler(method, url, kwargs)
        return FakeResponse(status, body)


def make_client(handler, tmp_path):
    return DoyuClient(BASE, base_date="2026/01/01", debug_dir=str(tmp_path), session=FakeSession(handler))


# ---------------- HTTP client ----------------
def test_login_without_form_is_public_access(tmp_path):
    def handler(method, url, kwargs):
        if url == BASE + "/login":
            return 404, "not found"
        return 200, "<html>schedule list</html>"

    client = make_client(handler, tmp_path)
    assert client.login("member", "secret") is True
    assert client.is_authenticated
    assert client.session.headers["User-Agent"].startswith("Mozilla/5.0")
    assert client.session.max_redirects == 5


def test_form_login_posts_credentials_and_hidden_fields(tmp_path, login_page_html):
    state = {"logged_in": False}

    def handler(method, url, kwargs):
        if method == "POST":
            state["logged_in"] = True
            return 200, "welcome"
        if url.startswith(BASE + "/s.schedule/eventList.html"):
            return 200, "<html>events</html>" if state["logged_in"] else login_page_html
        return 200, "<html></html>"

    client = make_client(handler, tmp_path)
    assert client.login("member", "secret") is True

    posts = [c for c in client.session.calls if c[0] == "POST"]
    assert len(posts) == 1
    _, url, kwargs = posts[0]
    assert url == BASE + "/s.login/auth.html"
    assert kwargs["data"] == [("username", "member"), ("password", "secret"), ("token", "abc123")]
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert kwargs["headers"]["Referer"] == client.list_url


def test_basic_auth_is_tried_when_form_login_does_not_stick(tmp_path, login_page_html):
    def handler(method, url, kwargs):
        if method == "POST":
            return 200, "ok"
        if kwargs.get("auth") == ("member", "secret"):
            return 200, "<html>my schedule</html>"
        if url.startswith(BASE + "/s.schedule/"):
            return 200, login_page_html
        return 200, ""

    client = make_client(handler, tmp_path)
    assert client.login("member", "secret") is True
    assert any(kw.get("auth") for _, _, kw in client.session.calls)


def test_login_fails_when_every_method_errors(tmp_path):
    client = make_client(lambda method, url, kwargs: (500, "boom"), tmp_path)
    assert client.login("member", "secret") is False
    assert not client.is_authenticated


def test_fetch_requires_login(tmp_path):
    client = make_client(lambda *a: (200, ""), tmp_path)
    with pytest.raises(NotAuthenticatedError):
        client.fetch_schedule_html()


def test_fetch_logs_in_through_guessed_endpoints(tmp_path, login_page_html, event_list_html):
    state = {"logged_in": False}

    def handler(method, url, kwargs):
        if method == "POST":
            if url == BASE + "/login/check":
                return 404, "not found"
            if url == BASE + "/login":
                state["logged_in"] = True
                return 200, "ok"
            return 500, ""
        if state["logged_in"]:
            return 200, event_list_html
        return 200, login_page_html

    client = make_client(handler, tmp_path)
    client.is_authenticated = True
    client._credentials = ("member", "secret")

    events = client.fetch_schedule()
    assert [e["id"] for e in events] == ["12345", "67890"]

    posted = [url for method, url, _ in client.session.calls if method == "POST"]
    assert posted == [BASE + "/login/check", BASE + "/login"]
    assert (tmp_path / "debug-response.html").read_text(encoding="utf-8") == event_list_html


def test_fetch_without_credentials_on_login_page(tmp_path, login_page_html):
    client = make_client(lambda *a: (200, login_page_html), tmp_path)
    client.is_authenticated = True
    with pytest.raises(AuthenticationError, match="not configured"):
        client.fetch_schedule_html()


def test_fetch_gives_up_when_no_endpoint_works(tmp_path, login_page_html):
    client = make_client(lambda *a: (200, login_page_html), tmp_path)
    client.is_authenticated = True
    client._credentials = ("member", "secret")
    with pytest.raises(AuthenticationError, match="no valid login endpoint"):
        client.fetch_schedule_html()


def test_calendar_url_carries_group_and_date(tmp_path):
    client = make_client(lambda *a: (200, ""), tmp_path)
    assert client.calendar_url.startswith(BASE + "/s.schedule/eventList.html?init&vmode=view&appid=1033&vBaseURL=")
    assert "vSelGroup%3D4562" in client.calendar_url
    assert "vDateSelBase%3D2026%2F01%2F01" in client.calendar_url


# ---------------- Browser client ----------------
class FakeKeyboard:
    def __init__(self, page):
        self.page = page

    def press(self, key):
        self.page.pressed.append(key)
        self.page.logged_in = self.page.accept_login


class FakeSubmit:
    def __init__(self, page):
        self.page = page

    def click(self):
        self.page.clicked = True
        self.page.logged_in = self.page.accept_login


class FakePage:
    def __init__(self, html="", needs_login=True, accept_login=True, has_submit=True):
        self.html = html
        self.needs_login = needs_login
        self.accept_login = accept_login
        self.has_submit = has_submit
        self.logged_in = False
        self.closed = False
        self.clicked = False
        self.pressed = []
        self.filled = {}
        self.visited = []
        self.keyboard = FakeKeyboard(self)

    def goto(self, url, **kwargs):
        self.visited.append(url)

    def title(self):
        if self.closed:
            raise RuntimeError("Target page has been closed")
        return "e-doyu"

    def is_closed(self):
        return self.closed

    def query_selector(self, selector):
        if selector == LOGIN_FORM:
            return object() if self.needs_login and not self.logged_in else None
        if "submit" in selector:
            return FakeSubmit(self) if self.has_submit else None
        return None

    def wait_for_selector(self, selector, timeout=None):
        return object()

    def fill(self, selector, value):
        self.filled[selector] = value

    def wait_for_timeout(self, ms):
        pass

    def wait_for_load_state(self, state, timeout=None):
        raise TimeoutError("Timeout 15000ms exceeded")

    def screenshot(self, path, full_page=False):
        with open(path, "wb") as fh:
            fh.write(b"\x89PNG")

    def eval_on_selector_all(self, selector, script):
        return ["IDまたはパスワードが違います"]

    def content(self):
        return self.html


class FakeContext:
    def __init__(self, page):
        self.page = page

    def new_page(self):
        return self.page


def make_browser(tmp_path, page):
    client = BrowserClient(BASE, base_date="2026/01/01", debug_dir=str(tmp_path))
    client.page = page
    return client


def test_browser_login_fills_form_and_clicks_submit(tmp_path):
    page = FakePage()
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret") is True
    assert client.is_authenticated
    assert page.filled == {'input[name="username"]': "member", 'input[name="password"]': "secret"}
    assert page.clicked
    assert page.visited == [client.calendar_url]
    assert (tmp_path / "login-success.png").exists()


def test_browser_login_presses_enter_without_submit_button(tmp_path):
    page = FakePage(has_submit=False)
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret") is True
    assert page.pressed == ["Enter"]


def test_browser_login_rejected(tmp_path):
    page = FakePage(accept_login=False)
    client = make_browser(tmp_path, page)
    assert client.login("member", "wrong") is False
    assert not client.is_authenticated
    assert (tmp_path / "login-failed.png").exists()


def test_browser_login_not_needed(tmp_path):
    page = FakePage(needs_login=False)
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret") is True
    assert page.filled == {}


def test_browser_login_requires_initialize(tmp_path):
    client = BrowserClient(BASE, debug_dir=str(tmp_path))
    with pytest.raises(ScrapeError):
        client.login("member", "secret")


def test_browser_fetch_opens_the_list_and_saves_html(tmp_path, event_list_html):
    page = FakePage(html=event_list_html, needs_login=False)
    client = make_browser(tmp_path, page)
    client.is_authenticated = True

    assert client.fetch_schedule_html() == event_list_html
    assert page.visited == [client.calendar_url]
    assert (tmp_path / "browser-response-latest.html").read_text(encoding="utf-8") == event_list_html
    assert len(list(tmp_path.glob("browser-response-2*.html"))) == 1


def test_browser_fetch_requires_login(tmp_path):
    client = make_browser(tmp_path, FakePage())
    with pytest.raises(NotAuthenticatedError):
        client.fetch_schedule_html()


def test_browser_fetch_reopens_a_closed_page(tmp_path, event_list_html):
    old = FakePage()
    old.closed = True
    fresh = FakePage(html=event_list_html, needs_login=False)

    client = make_browser(tmp_path, old)
    client.context = FakeContext(fresh)
    client.is_authenticated = True
    client._credentials = ("member", "secret")

    assert client.fetch_schedule_html() == event_list_html
    assert client.page is fresh
    assert client.is_authenticated


def test_browser_event_details(tmp_path, detail_html):
    page = FakePage(html=detail_html, needs_login=False)
    client = make_browser(tmp_path, page)

    details = client.fetch_all_event_details(["12345", "67890", "3"], limit=2, delay=0)
    assert [d["event_id"] for d in details] == ["12345", "67890"]
    assert details[0]["title"] == "1月度理事会"
    assert page.visited[0].endswith("gw33105=12345")
    assert (tmp_path / "event-detail-12345.html").exists()


class RoutedPage(FakePage):
    """Serves the detail page after a goto to eventDetails, the list otherwise."""

    def __init__(self, list_html, detail_html):
        super().__init__(html=list_html, needs_login=False)
        self.list_html = list_html
        self.detail_html = detail_html

    def content(self):
        if self.visited and "eventDetails" in self.visited[-1]:
            return self.detail_html
        return self.list_html


def test_browser_fetch_after_details_scrapes_the_list_again(tmp_path, event_list_html, detail_html):
    page = RoutedPage(event_list_html, detail_html)
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret")

    first = parse_schedule_html(client.fetch_schedule_html(), BASE)
    client.fetch_all_event_details(["12345"], delay=0)
    second = parse_schedule_html(client.fetch_schedule_html(), BASE)

    assert [e["id"] for e in first] == ["12345", "67890"]
    assert [e["id"] for e in second] == ["12345", "67890"]
    assert page.visited[-1] == client.calendar_url


def test_browser_fetch_logs_in_again_when_session_expired(tmp_path, event_list_html):
    page = FakePage(html=event_list_html)
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret")

    page.logged_in = False
    page.filled = {}
    assert client.fetch_schedule_html() == event_list_html
    assert page.filled['input[name="password"]'] == "secret"
    assert client.is_authenticated


def test_browser_fetch_raises_when_relogin_fails(tmp_path):
    page = FakePage()
    client = make_browser(tmp_path, page)
    assert client.login("member", "secret")

    page.logged_in = False
    page.accept_login = False
    with pytest.raises(AuthenticationError):
        client.fetch_schedule_html()


def test_browser_close_is_idempotent(tmp_path):
    client = make_browser(tmp_path, FakePage())
    client.close()
    client.close()
    assert client.page is None
