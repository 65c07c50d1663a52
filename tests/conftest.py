import pytest

BASE_URL = "https://shimane.e-doyu.jp"

# Shape of the e-doyu event list: event name links call showEventDetails(),
# the 3rd column is 開催日/時間 and the 6th is 会場名.
EVENT_LIST_HTML = """
<html><head><title>イベント一覧</title></head><body>
<table class="list">
  <tr><th>No</th><th>イベント名</th><th>開催日/時間</th><th>主催</th><th>区分</th><th>会場名</th></tr>
  <tr>
    <td>1</td>
    <td><a href="#" onclick="showEventDetails('12345'); return false;">1月度理事会</a></td>
    <td>2026/01/06（火）<br>10:00～12:00</td>
    <td>本部</td><td>会議</td><td>松江テルサ</td>
  </tr>
  <tr>
    <td>2</td>
    <td><a href="#" onclick="showEventDetails('67890')">2026年2月度広報委員会</a></td>
    <td>未定</td>
    <td>本部</td><td>会議</td><td></td>
  </tr>
  <tr>
    <td>3</td>
    <td><a href="#" onclick="showEventDetails('11111')">   </a></td>
  </tr>
</table>
</body></html>
"""

LOGIN_PAGE_HTML = """
<html><body>
<form name="frmLogin" method="post" action="/s.login/auth.html">
  <input type="text" name="username">
  <input type="password" name="password">
  <input type="hidden" name="token" value="abc123">
  <input type="hidden" name="empty" value="">
  <input type="submit" value="ログイン">
</form>
</body></html>
"""

DETAIL_HTML = """
<html><body>
<h1>1月度理事会</h1>
<table>
  <tr><th>開催日時</th><td>2026/01/06（火）10:00～12:00</td></tr>
  <tr><th>会場</th><td>松江テルサ 4F</td></tr>
</table>
<p>理事会を開催します。ご出席ください。</p>
</body></html>
"""


@pytest.fixture
def event_list_html():
    return EVENT_LIST_HTML


@pytest.fixture
def login_page_html():
    return LOGIN_PAGE_HTML


@pytest.fixture
def detail_html():
    return DETAIL_HTML


@pytest.fixture
def settings(tmp_path):
    return {
        "site": {
            "prefecture": "shimane",
            "base_url": BASE_URL,
            "app_id": 1033,
            "group_id": 4562,
            "calendar_base_date": "2026/01/01",
        },
        "timezone": "Asia/Tokyo",
        "output": str(tmp_path / "public" / "schedule.ics"),
        "debug_dir": str(tmp_path / "logs"),
        "use_browser": True,
        "headless": True,
        "detail_limit": 0,
        "sync_cron": "0 */6 * * *",
        "calendar": {"domain": None, "name": None, "description": None},
        "ftp": {
            "enabled": False,
            "host": None,
            "user": None,
            "password": None,
            "remote_path": "/schedule.ics",
            "secure": False,
        },
        "credentials": {"username": "member", "password": "secret"},
    }
