import os
import re
from datetime import datetime
from pathlib import Path

from playwright.sync_api import sync_playwright, Error

from .config import Settings
from .errors import ResourceTeardownError
from .log import log_debug, log_err, log_info, log_warn, _truthy


def _ts_short() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]


def _slug(s: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", s or "").strip("_") or "shot"


class BrowserSession:
    """
    One Chromium, one context, one page. Owns every Playwright handle for a
    single registration run; close() releases them in reverse order.

    Construct via BrowserSession.open(settings). The bare constructor takes
    already-created handles, which is what tests hand in.
    """

    def __init__(self, page, settings: Settings, *, context=None, browser=None, playwright=None):
        self.page = page
        self.settings = settings
        self.context = context
        self.browser = browser
        self.playwright = playwright
        self.screenshots: list[str] = []
        self._tracing = False
        self._closed = False

    # ---------- lifecycle ----------

    @classmethod
    def open(cls, settings: Settings) -> "BrowserSession":
        pw = sync_playwright().start()
        browser = context = None
        try:
            args = list(settings.launch_args)
            if settings.devtools and not settings.headless:
                args.append("--auto-open-devtools-for-tabs")
            browser = pw.chromium.launch(headless=settings.headless, slow_mo=settings.slow_mo, args=args)

            ctx_kwargs = dict(
                accept_downloads=True,
                ignore_https_errors=True,
                viewport={"width": settings.viewport[0], "height": settings.viewport[1]},
            )
            if settings.video:
                settings.videos_dir.mkdir(parents=True, exist_ok=True)
                ctx_kwargs["record_video_dir"] = str(settings.videos_dir)
                ctx_kwargs["record_video_size"] = ctx_kwargs["viewport"]
            context = browser.new_context(**ctx_kwargs)

            page = context.new_page()
            page.set_default_timeout(settings.timeout_ms)
            page.set_default_navigation_timeout(settings.timeout_ms)
        except Exception:
            # Half-built session: release whatever exists before bubbling up
            for closer in (getattr(context, "close", None), getattr(browser, "close", None), pw.stop):
                if closer is None:
                    continue
                try:
                    closer()
                except Exception as e:
                    log_warn(f">>> Cleanup after failed launch: {e}")
            raise

        session = cls(page, settings, context=context, browser=browser, playwright=pw)
        if settings.tracing:
            settings.traces_dir.mkdir(parents=True, exist_ok=True)
            context.tracing.start(screenshots=True, snapshots=True, sources=True)
            session._tracing = True
        session._attach_listeners()
        log_info(f">>> Browser ready (mode={settings.mode}, headless={settings.headless})")
        return session

    def _attach_listeners(self):
        self.page.on("console", lambda msg: log_debug(f"[console:{msg.type}] {msg.text}"))
        self.page.on("pageerror", lambda exc: log_err(f"[pageerror] {exc}"))
        self.page.on("requestfailed", lambda req: log_warn(f"[requestfailed] {req.method} {req.url} ({req.failure})"))

    def close(self) -> list[ResourceTeardownError]:
        """
        Tear down in reverse order. Never raises: each failure is logged and
        returned so callers/tests can inspect it.
        """
        if self._closed:
            return []
        self._closed = True
        problems: list[ResourceTeardownError] = []

        def _attempt(resource: str, fn):
            try:
                fn()
            except Exception as e:
                err = ResourceTeardownError(resource, e)
                log_warn(f">>> {err.message}")
                problems.append(err)

        if self._tracing and self.context is not None:
            trace_file = self.settings.traces_dir / f"trace_{_ts_short()}.zip"

            def _stop_trace():
                self.context.tracing.stop(path=str(trace_file))
                log_info(f">>> Trace saved to: {trace_file}")

            _attempt("trace", _stop_trace)

        if self.page is not None:
            _attempt("page", self.page.close)
        if self.context is not None:
            _attempt("context", self.context.close)
        if self.browser is not None:
            _attempt("browser", self.browser.close)
        if self.playwright is not None:
            _attempt("playwright", self.playwright.stop)
        return problems

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ---------- page helpers ----------

    def goto(self, url: str):
        log_info(f">>> Navigating to {url}")
        self.page.goto(url, wait_until="networkidle")

    def settle(self, timeout_ms: int | None = None):
        """Wait for the network to go quiet after an interaction."""
        kw = {"timeout": timeout_ms} if timeout_ms is not None else {}
        self.page.wait_for_load_state("networkidle", **kw)

    def wait(self, ms: int):
        self.page.wait_for_timeout(ms)

    def screenshot(self, label: str, *, error: bool = False) -> str | None:
        if not (error or self.settings.screenshots):
            return None
        out_dir: Path = self.settings.screenshots_dir
        path = out_dir / f"{_slug(label)}_{_ts_short()}.png"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(path), full_page=True)
        except Exception as e:
            log_warn(f">>> Screenshot “{label}” failed: {e}")
            return None
        self.screenshots.append(str(path))
        log_info(f">>> Screenshot saved: {path}")
        return str(path)

    def pause(self, where: str = ""):
        """
        Pause in Playwright Inspector when WR_PAUSE is truthy or PWDEBUG=1 is set.
        """
        if not (os.getenv("PWDEBUG") == "1" or _truthy(os.getenv("WR_PAUSE"))):
            return
        log_info(f">>> [PAUSE] {where} — open Inspector and click Resume to continue.")
        try:
            self.page.pause()
        except Error as e:
            log_warn(f">>> Pause unavailable: {e}")
