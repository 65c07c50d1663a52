# src/main.py
import argparse
import copy
import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone

import yaml
from dotenv import load_dotenv

# ---- Add TRACE level ---------------------------------------------------------
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

def _trace(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)

logging.Logger.trace = _trace  # type: ignore[attr-defined]

def _init_logging():
    # FEEDS_LOG_LEVEL overrides; otherwise honor FEEDS_TRACE/FEEDS_DEBUG
    env_level = os.getenv("FEEDS_LOG_LEVEL", "").upper().strip()
    if not env_level:
        if os.getenv("FEEDS_TRACE"):
            env_level = "TRACE"
        elif os.getenv("FEEDS_DEBUG"):
            env_level = "DEBUG"
        else:
            env_level = "INFO"

    level_map = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
        "TRACE": TRACE,
        "NOTSET": logging.NOTSET,
    }
    level = level_map.get(env_level, logging.INFO)

    fmt = "%(asctime)s %(levelname)-5s %(name)s :: %(message)s"
    logging.basicConfig(level=level, format=fmt)

_init_logging()
log = logging.getLogger("main")

from feed import write_calendar
from sources import (
    AuthenticationError,
    BrowserClient,
    DoyuClient,
    ScrapeError,
    apply_event_details,
    default_base_url,
    parse_schedule_html,
)
from uploader import FTPUploader

CONFIG_PATH = "config.yaml"

DEFAULT_CONFIG = {
    "site": {
        "prefecture": "shimane",
        "base_url": None,
        "app_id": 1033,
        "group_id": 4562,
        "calendar_base_date": None,
    },
    "timezone": "Asia/Tokyo",
    "output": "public/schedule.ics",
    "debug_dir": "logs",
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
    "credentials": {"username": None, "password": None},
}

# env var -> (section, key); section None means top level
ENV_OVERRIDES = {
    "DOYU_USERNAME": ("credentials", "username"),
    "DOYU_PASSWORD": ("credentials", "password"),
    "DOYU_PREFECTURE": ("site", "prefecture"),
    "DOYU_BASE_URL": ("site", "base_url"),
    "ICAL_DOMAIN": ("calendar", "domain"),
    "FTP_HOST": ("ftp", "host"),
    "FTP_USER": ("ftp", "user"),
    "FTP_PASSWORD": ("ftp", "password"),
    "FTP_REMOTE_PATH": ("ftp", "remote_path"),
    "FTP_ENABLED": ("ftp", "enabled"),
    "FEEDS_PW_HEADLESS": (None, "headless"),
}
BOOL_KEYS = {"enabled", "headless", "use_browser", "secure"}


class ConfigError(Exception):
    pass


def _as_bool(val):
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def _merge(base: dict, extra: dict) -> dict:
    for k, v in (extra or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(path=CONFIG_PATH, env=None) -> dict:
    """
    Defaults <- config.yaml <- environment. Secrets only ever come from the
    environment (or a .env file loaded into it).
    """
    env = os.environ if env is None else env
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")
        _merge(cfg, data)
    elif path:
        log.debug("No config file at %s, using defaults", path)

    for var, (section, key) in ENV_OVERRIDES.items():
        val = env.get(var)
        if val is None or val == "":
            continue
        if key in BOOL_KEYS:
            val = _as_bool(val)
        target = cfg if section is None else cfg.setdefault(section, {})
        target[key] = val

    for key in ("use_browser", "headless"):
        cfg[key] = _as_bool(cfg.get(key))
    for key in ("enabled", "secure"):
        cfg["ftp"][key] = _as_bool(cfg["ftp"].get(key))

    site = cfg["site"]
    site["base_url"] = (site.get("base_url") or default_base_url(site["prefecture"])).rstrip("/")
    return cfg


class ScheduleSync:
    """Login once, then fetch -> parse -> write .ics -> upload on every sync."""

    def __init__(self, settings: dict, doyu_client=None, browser_client=None, uploader=None):
        self.settings = settings
        site = settings["site"]
        client_kwargs = dict(
            app_id=site["app_id"],
            group_id=site["group_id"],
            base_date=site.get("calendar_base_date"),
            default_tz=settings["timezone"],
            debug_dir=settings.get("debug_dir"),
        )
        self.doyu_client = doyu_client or DoyuClient(site["base_url"], **client_kwargs)
        self.browser_client = browser_client or BrowserClient(
            site["base_url"], headless=settings.get("headless", True), **client_kwargs
        )
        self.ftp_uploader = uploader or FTPUploader.from_settings(settings)
        self.output_path = settings["output"]
        self.use_browser = bool(settings.get("use_browser", True))
        self.last_sync = None
        self.last_ftp_upload = None
        self._busy = threading.Lock()

    @property
    def is_running(self):
        return self._busy.locked()

    @property
    def method(self):
        return "browser" if self.use_browser else "http-client"

    def _credentials(self):
        creds = self.settings.get("credentials") or {}
        username, password = creds.get("username"), creds.get("password")
        if not (username and password):
            raise ConfigError("DOYU_USERNAME and DOYU_PASSWORD must be set in the environment")
        return username, password

    def _browser_login(self, username, password):
        try:
            self.browser_client.initialize()
            return self.browser_client.login(username, password)
        except Exception as ex:
            log.warning("Browser start failed: %s", str(ex)[:200])
            return False

    def initialize(self):
        username, password = self._credentials()

        if self.use_browser:
            log.info("Initializing with headless browser")
            if self._browser_login(username, password):
                log.info("Scheduler initialized (browser)")
                return
            log.warning("Browser login failed, falling back to HTTP client")
            self.browser_client.close()
            self.use_browser = False

        log.info("Initializing with HTTP client")
        if not self.doyu_client.login(username, password):
            raise AuthenticationError("Failed to login with both the browser and the HTTP client")
        log.info("Scheduler initialized (http-client)")

    def _fetch_events(self):
        site = self.settings["site"]
        tzname = self.settings["timezone"]
        if not self.use_browser:
            log.info("Fetching schedule with HTTP client")
            return self.doyu_client.fetch_schedule()

        log.info("Fetching schedule with browser")
        html = self.browser_client.fetch_schedule_html()
        events = parse_schedule_html(html, site["base_url"], site["app_id"], tzname)

        limit = int(self.settings.get("detail_limit") or 0)
        if limit > 0:
            by_id = {ev["id"]: ev for ev in events}
            ids = [ev["id"] for ev in events if str(ev["id"]).isdigit()]
            for details in self.browser_client.fetch_all_event_details(ids, limit=limit):
                apply_event_details(by_id[details["event_id"]], details, tzname)
        return events

    def sync_schedule(self):
        """Run one sync. Returns the number of events written, or None when a sync is already running."""
        if not self._busy.acquire(blocking=False):
            log.info("Sync already in progress, skipping")
            return None

        log.info("Starting schedule sync (%s)", self.method)
        try:
            events = self._fetch_events()
            for ev in events:
                log.trace("event %s: %s @ %s", ev.get("id"), ev.get("title"), ev.get("start"))
            count = write_calendar(self.output_path, events, self.settings)
            self.last_sync = datetime.now(timezone.utc)
            log.info("Sync completed: %d events -> %s", count, self.output_path)

            if self.ftp_uploader.is_configured():
                result = self.ftp_uploader.upload_schedule()
                if result.get("success"):
                    self.last_ftp_upload = datetime.now(timezone.utc)
                    log.info("FTP upload successful to %s", result.get("remote_path"))
                else:
                    log.error("FTP upload failed: %s", result.get("error") or result.get("reason"))
            else:
                log.debug("FTP upload skipped - not configured")
            return count
        except Exception as ex:
            log.error("Sync failed: %s", ex)
            raise
        finally:
            self._busy.release()

    def _scheduled_sync(self):
        log.info("Running scheduled sync")
        try:
            self.sync_schedule()
        except Exception:
            log.exception("Scheduled sync failed")

    def build_scheduler(self):
        from apscheduler.executors.debug import DebugExecutor
        from apscheduler.schedulers.blocking import BlockingScheduler
        from apscheduler.triggers.cron import CronTrigger

        tzname = self.settings["timezone"]
        # Playwright's sync API is bound to the thread that started it, so jobs
        # run inline on the scheduler (main) thread.
        scheduler = BlockingScheduler(executors={"default": DebugExecutor()}, timezone=tzname)
        scheduler.add_job(
            self._scheduled_sync,
            CronTrigger.from_crontab(self.settings["sync_cron"], timezone=tzname),
            id="sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=600,
        )
        return scheduler

    def start_scheduled_sync(self):
        scheduler = self.build_scheduler()
        log.info("Scheduled sync started (%s)", self.settings["sync_cron"])
        scheduler.start()

    def get_status(self):
        client = self.browser_client if self.use_browser else self.doyu_client
        return {
            "last_sync": self.last_sync,
            "last_ftp_upload": self.last_ftp_upload,
            "is_running": self.is_running,
            "authenticated": client.is_authenticated,
            "method": self.method,
            "ftp": self.ftp_uploader.get_status(),
        }

    def cleanup(self):
        if self.use_browser:
            self.browser_client.close()


def _print_json(obj):
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def build_arg_parser():
    ap = argparse.ArgumentParser(
        prog="doyu-feed",
        description="Scrape the e-doyu event list and publish it as an iCalendar feed.",
    )
    ap.add_argument("-c", "--config", default=CONFIG_PATH, help="YAML config (default: %(default)s)")
    ap.add_argument(
        "command",
        nargs="?",
        default="sync",
        choices=["sync", "serve", "status", "ftp-test", "ftp-upload"],
        help="sync once (default), serve on a cron schedule, or run an on-demand action",
    )
    return ap


def main(argv=None):
    args = build_arg_parser().parse_args(argv)
    load_dotenv()
    cfg = load_config(args.config)
    log.info("Config: site=%s tz=%s output=%s browser=%s",
             cfg["site"]["base_url"], cfg["timezone"], cfg["output"], cfg["use_browser"])

    sync = ScheduleSync(cfg)

    if args.command == "status":
        _print_json(sync.get_status())
        return 0
    if args.command == "ftp-test":
        result = sync.ftp_uploader.test_connection()
        _print_json(result)
        return 0 if result.get("success") else 1
    if args.command == "ftp-upload":
        result = sync.ftp_uploader.upload_schedule()
        _print_json(result)
        return 0 if result.get("success") else 1

    try:
        sync.initialize()
        if args.command == "serve":
            try:
                sync.sync_schedule()
            except (ScrapeError, OSError) as ex:
                log.error("Initial sync failed: %s", ex)
            sync.start_scheduled_sync()
        else:
            sync.sync_schedule()
    except (ConfigError, ScrapeError, OSError) as ex:
        log.error("%s", ex)
        return 1
    except KeyboardInterrupt:
        log.info("Shutting down")
    finally:
        sync.cleanup()
    return 0


if __name__ == '__main__':
    sys.exit(main())
