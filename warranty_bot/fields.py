from .locator import ElementLocator
from .log import log_debug, log_warn


class FormFields:
    """Text inputs, clicks and selects on top of the locator. Each call stands alone."""

    def __init__(self, session, locator: ElementLocator):
        self.session = session
        self.locator = locator

    @property
    def page(self):
        return self.session.page

    def type(self, name: str, value: str, *, clear: bool = True, verify: bool = False,
             press: str | None = None, settle: bool = True) -> str:
        value = str(value or "")

        def _write(loc, force):
            loc.click(force=force)
            if clear:
                loc.clear(force=force)
            loc.fill(value, force=force)
            if press:
                loc.press(press)

        match, _ = self.locator.act(name, _write)
        if settle:
            self.session.settle()

        got = match.locator.input_value()
        if verify and got != value:
            # one more write, then take what the page gives us
            log_warn(f">>> “{name}” read back “{got}”, rewriting")
            match.locator.fill(value, force=True)
            got = match.locator.input_value()
            if got != value:
                log_warn(f">>> “{name}” still reads “{got}” after rewrite; continuing")
        log_debug(f">>> {name} = {got!r}")
        return got

    def click(self, name: str, *, wait_settle: bool = False, double: bool = False, timeout_ms: int | None = None):
        def _click(loc, force):
            loc.scroll_into_view_if_needed()
            if double:
                loc.dblclick(force=force)
            else:
                loc.click(force=force)

        match, _ = self.locator.act(name, _click, timeout_ms=timeout_ms)
        if wait_settle:
            self.session.settle()
        return match

    def select_option(self, name: str, value: str, strategies=None):
        """
        Native <select> goes through select_option; Angular Material selects
        are opened and the option is picked by role.
        """
        loc = self.locator.locate(name, strategies, require_enabled=True).locator
        tag = (loc.evaluate("el => el.tagName.toLowerCase()") or "").strip()
        if tag == "select":
            loc.select_option(label=value)
            return
        loc.click()
        opt = self.page.get_by_role("option", name=value, exact=True).first
        opt.wait_for(state="visible", timeout=self.locator.candidate_timeout_ms)
        opt.click()

    def value(self, name: str) -> str:
        return self.locator.locate(name).locator.input_value()

    def fill_if_blank(self, name: str, value: str) -> bool:
        current = self.value(name)
        if current.strip():
            log_debug(f">>> {name} already filled ({current!r}); leaving it")
            return False
        self.type(name, value, settle=False)
        return True

    def blur(self):
        """Click an empty corner of the page to close autocompletes and commit the field."""
        self.page.locator("body").click(position={"x": 1, "y": 1})
