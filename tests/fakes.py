"""
In-memory stand-ins for the bits of the Playwright sync API the bot touches.

Locators are keyed by the chain of calls that built them, so an element
registered through a Strategy is found by exactly that Strategy and nothing
else. FakeSite scripts the registration form on top of that.
"""
import re
import time
from contextlib import contextmanager
from pathlib import Path

from playwright.sync_api import Error, TimeoutError as PlaywrightTimeoutError

from warranty_bot.targets import TARGETS


def _k(v):
    if isinstance(v, re.Pattern):
        return ("re", v.pattern, v.flags)
    return v


class FakeElement:
    def __init__(self, label="", *, visible=True, enabled=True, value="", tag="input",
                 occluded=False, on_click=None, on_press=None, on_fill=None, transform=None):
        self.label = label
        self.attached = True
        self.visible = visible
        self.enabled = enabled
        self.value = value
        self.tag = tag
        self.occluded = occluded
        self.on_click = on_click
        self.on_press = on_press
        self.on_fill = on_fill
        self.transform = transform
        self.clicks = 0
        self.forced_clicks = 0
        self.writes = 0

    def show(self):
        self.attached = True
        self.visible = True

    def hide(self):
        self.visible = False


class FakeDownload:
    def __init__(self, suggested_filename: str, content: bytes = b"%PDF-1.4\n% fake certificate\n"):
        self.suggested_filename = suggested_filename
        self.content = content

    def save_as(self, path):
        Path(path).write_bytes(self.content)


class _DownloadInfo:
    value = None


class FakePopup:
    def __init__(self, url="https://survey.example.com/contractor"):
        self.url = url
        self.closed = False

    def close(self):
        self.closed = True


class FakeLocator:
    def __init__(self, page: "FakePage", key: tuple):
        self.page = page
        self.key = key

    # ---------- chaining ----------

    def _child(self, *seg):
        return FakeLocator(self.page, self.key + (seg,))

    def get_by_role(self, role, name=None, exact=None, **kw):
        return self._child("role", role, _k(name), bool(exact))

    def get_by_text(self, text, exact=None):
        return self._child("text", _k(text), bool(exact))

    def get_by_label(self, text, exact=None):
        return self._child("label", _k(text), bool(exact))

    def get_by_placeholder(self, text, exact=None):
        return self._child("placeholder", _k(text), bool(exact))

    def locator(self, selector):
        return self._child("css", selector)

    def filter(self, has_text=None):
        return self._child("filter", _k(has_text))

    @property
    def first(self):
        return self._child("nth", 0)

    def nth(self, i):
        return self._child("nth", i)

    # ---------- state ----------

    def _el(self) -> FakeElement | None:
        return self.page.elements.get(self.key)

    def _require(self, timeout=None) -> FakeElement:
        el = self._el()
        if el is None or not el.attached:
            raise PlaywrightTimeoutError(f"Timeout {timeout or 0}ms exceeded waiting for {self.key}")
        return el

    def wait_for(self, state="visible", timeout=None):
        el = self._el()
        attached = el is not None and el.attached
        visible = attached and el.visible
        ok = {
            "attached": attached,
            "visible": visible,
            "hidden": not visible,
            "detached": not attached,
        }[state]
        self.page.waits.append((self.key, state))
        if not ok:
            raise PlaywrightTimeoutError(f"Timeout {timeout or 0}ms exceeded waiting for {self.key} to be {state}")

    def is_visible(self):
        el = self._el()
        return bool(el is not None and el.attached and el.visible)

    def is_enabled(self):
        el = self._el()
        return bool(el is not None and el.enabled)

    def input_value(self):
        return self._require().value

    def evaluate(self, expression):
        return self._require().tag

    # ---------- actions ----------

    def _click(self, force, kind):
        el = self._require()
        if el.occluded and not force:
            raise Error(
                'Locator.click: Timeout 5000ms exceeded.\n'
                '  - <div class="cdk-overlay-backdrop"></div> intercepts pointer events'
            )
        el.clicks += 1
        if force:
            el.forced_clicks += 1
        self.page.log.append((kind, el.label))
        if el.on_click:
            el.on_click()

    def click(self, force=False, position=None, timeout=None):
        self._click(force, "click")

    def dblclick(self, force=False, timeout=None):
        self._click(force, "dblclick")

    def scroll_into_view_if_needed(self, timeout=None):
        self._require()

    def clear(self, force=False, timeout=None):
        self._require().value = ""

    def fill(self, value, force=False, timeout=None):
        el = self._require()
        el.writes += 1
        el.value = el.transform(value, el.writes) if el.transform else value
        self.page.log.append(("fill", el.label, value))
        if el.on_fill:
            el.on_fill(value)

    def press(self, key, timeout=None):
        el = self._require()
        self.page.log.append(("press", el.label, key))
        if el.on_press:
            el.on_press(key)

    def select_option(self, value=None, label=None, **kw):
        self._require().value = label or value


class FakePage(FakeLocator):
    def __init__(self):
        super().__init__(self, ())
        self.elements: dict[tuple, FakeElement] = {}
        self.log: list[tuple] = []
        self.waits: list[tuple] = []
        self.url = "about:blank"
        self.closed = False
        self.popups: list[FakePopup] = []
        self.pending_download: FakeDownload | None = None
        self._on: dict[str, list] = {}
        self.elements[(("css", "body"),)] = FakeElement("body", tag="body")

    # ---------- registry ----------

    def add(self, strategy, label="", **kw) -> FakeElement:
        el = FakeElement(label, **kw)
        self.elements[strategy.resolve(self).key] = el
        return el

    # ---------- page api ----------

    def goto(self, url, wait_until=None, timeout=None):
        self.url = url
        self.log.append(("goto", url))

    def wait_for_load_state(self, state="load", timeout=None):
        self.log.append(("settle", state))

    def wait_for_timeout(self, ms):
        time.sleep(ms / 1000)

    def screenshot(self, path=None, full_page=False):
        Path(path).write_bytes(b"\x89PNG fake")

    def on(self, event, handler):
        self._on.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        if handler in self._on.get(event, []):
            self._on[event].remove(handler)

    def emit_popup(self, popup: FakePopup | None = None):
        popup = popup or FakePopup()
        self.popups.append(popup)
        for handler in list(self._on.get("popup", [])):
            handler(popup)
        return popup

    @contextmanager
    def expect_download(self, timeout=None):
        info = _DownloadInfo()
        self.log.append(("expect_download",))
        yield info
        if self.pending_download is None:
            raise PlaywrightTimeoutError("Timeout exceeded while waiting for event \"download\"")
        info.value = self.pending_download
        self.pending_download = None

    def pause(self):
        pass

    def close(self):
        self.closed = True


# =========================
# --- Scripted registration form ---
# =========================

_TEXT_FIELDS = (
    "serial_number", "install_date",
    "first_name", "last_name", "phone", "email", "address1", "zip_postal", "city", "state_province",
    "dealer_zip", "dealer_name", "dealer_address", "dealer_city", "dealer_state", "dealer_phone",
)
_BUTTONS = ("registration_type", "residential", "next", "continue", "consent",
            "register", "affirm", "confirm_yes", "download_certificate")

# chained overlay name -> (logical target to show, its label)
DIALOG_TARGETS = {
    "contractor": "contractor_button",
    "ok": "ok_button",
    "cookie": "cookie_close",
}


class FakeSite:
    """
    The registration form as a bag of FakeElements wired together with
    callbacks. Every element is registered under its first-priority strategy.
    """

    def __init__(self, *, registered=(), invalid=(), address_after_register=False,
                 address_after_affirm=False, dialogs_after_confirm=(), cookie_on_load=False,
                 autofill_city="", autofill_state="", certificate_name="Warranty_Certificate.pdf"):
        self.page = FakePage()
        self.el: dict[str, FakeElement] = {}
        self.registered = set(registered)
        self.invalid = set(invalid)
        self.accepted_serials: list[str] = []

        for name in _TEXT_FIELDS:
            self._add(name)
        for name in _BUTTONS:
            self._add(name, tag="button")
        for name in ("already_registered", "invalid_serial", "address_confirm_text", "address_confirm_yes",
                     "contractor_button", "ok_button", "cookie_close"):
            self._add(name, visible=False, tag="div")

        # --- serial entry ---
        self.el["serial_number"].on_press = self._serial_entered

        # --- postal-code autofill ---
        def _autofill(_value):
            if autofill_city:
                self.el["city"].value = autofill_city
            if autofill_state:
                self.el["state_province"].value = autofill_state
        self.el["zip_postal"].on_fill = _autofill

        # --- address confirmation dialog ---
        def _address_yes():
            self.el["address_confirm_text"].hide()
            self.el["address_confirm_yes"].hide()
        self.el["address_confirm_yes"].on_click = _address_yes

        def _show_address():
            self.el["address_confirm_text"].show()
            self.el["address_confirm_yes"].show()

        if address_after_register:
            self.el["register"].on_click = _show_address
        if address_after_affirm:
            self.el["affirm"].on_click = _show_address

        # --- chained dialogs after the final Yes ---
        chain = [DIALOG_TARGETS[d] for d in dialogs_after_confirm]
        for i, target in enumerate(chain):
            nxt = chain[i + 1] if i + 1 < len(chain) else None
            self.el[target].on_click = self._dismiss_then(target, nxt)
        if chain:
            self.el["confirm_yes"].on_click = lambda: self.el[chain[0]].show()

        if cookie_on_load:
            self.el["cookie_close"].show()
            prev = self.el["cookie_close"].on_click
            self.el["cookie_close"].on_click = prev or (lambda: self.el["cookie_close"].hide())

        # --- download ---
        self.el["download_certificate"].on_click = lambda: setattr(
            self.page, "pending_download", FakeDownload(certificate_name)
        )

    def _add(self, name, **kw) -> FakeElement:
        el = self.page.add(TARGETS[name].strategies[0], name, **kw)
        self.el[name] = el
        return el

    def _dismiss_then(self, target, nxt):
        def _click():
            self.el[target].hide()
            if target == "contractor_button":
                self.page.emit_popup()
            if nxt:
                self.el[nxt].show()
        return _click

    def _serial_entered(self, key):
        if key != "Enter":
            return
        serial = self.el["serial_number"].value
        if serial in self.registered:
            self.el["already_registered"].show()
        elif serial in self.invalid:
            self.el["invalid_serial"].show()
        else:
            self.accepted_serials.append(serial)
            self.el["serial_number"].value = ""

    # ---------- assertions helpers ----------

    def clicks(self) -> list[str]:
        return [entry[1] for entry in self.page.log if entry[0] in ("click", "dblclick")]

    def fills(self) -> dict[str, str]:
        out = {}
        for entry in self.page.log:
            if entry[0] == "fill":
                out[entry[1]] = entry[2]
        return out


def factory_for(site: FakeSite):
    """session_factory for run_registration that wraps the fake page."""
    from warranty_bot.session import BrowserSession

    return lambda settings: BrowserSession(site.page, settings)
