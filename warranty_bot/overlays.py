import time
from dataclasses import dataclass

from playwright.sync_api import Error, TimeoutError as PlaywrightTimeoutError

from .errors import NotFound
from .locator import ElementLocator
from .log import log_info, log_warn


@dataclass(frozen=True)
class OverlayKind:
    name: str
    detect: str          # logical name whose visibility means "this overlay is up"
    action: str          # logical name to click to get rid of it
    closes_popup: bool = False


# Handling order inside one pass. Cookie banners can sit on top of anything.
OVERLAYS: dict[str, OverlayKind] = {
    k.name: k for k in (
        OverlayKind("cookie_banner", "cookie_close", "cookie_close"),
        OverlayKind("address_confirmation", "address_confirm_text", "address_confirm_yes"),
        OverlayKind("installing_contractor", "contractor_button", "contractor_button", closes_popup=True),
        OverlayKind("acknowledgement", "ok_button", "ok_button"),
        OverlayKind("final_confirmation", "confirm_yes", "confirm_yes"),
    )
}

POLL_MS = 150


class OverlayResolver:
    """
    Finds and clears the modal interruptions the site throws up at unpredictable
    points. Nothing showing is the normal case, not an error.
    """

    def __init__(self, session, locator: ElementLocator, probe_timeout_ms: int = 2000, rounds: int = 3):
        self.session = session
        self.locator = locator
        self.probe_timeout_ms = probe_timeout_ms
        self.rounds = rounds
        self.handled: list[str] = []

    @property
    def page(self):
        return self.session.page

    def _kinds(self, kinds) -> list[OverlayKind]:
        names = list(kinds) if kinds is not None else list(OVERLAYS)
        unknown = [n for n in names if n not in OVERLAYS]
        if unknown:
            raise KeyError(f"Unknown overlay kind(s): {', '.join(unknown)}")
        # keep the canonical order no matter how the caller listed them
        return [k for name, k in OVERLAYS.items() if name in names]

    def visible(self, kinds=None) -> list[str]:
        return [k.name for k in self._kinds(kinds) if self.locator.probe(k.detect)]

    def resolve_pending(self, timeout_ms: int | None = None, kinds=None) -> int:
        """
        Wait up to the probe timeout for any requested overlay, then clear every
        one that is showing. Returns how many were cleared.
        """
        wanted = self._kinds(kinds)
        timeout = self.probe_timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + timeout / 1000

        while not any(self.locator.probe(k.detect) for k in wanted):
            remaining_ms = (deadline - time.monotonic()) * 1000
            if remaining_ms <= 0:
                return 0
            self.session.wait(int(min(POLL_MS, remaining_ms)) or 1)

        count = 0
        for kind in wanted:
            if self.locator.probe(kind.detect) and self._handle(kind):
                count += 1
        return count

    def drain(self, kinds=None, max_rounds: int | None = None) -> int:
        rounds = self.rounds if max_rounds is None else max_rounds
        total = 0
        for _ in range(max(rounds, 0)):
            n = self.resolve_pending(kinds=kinds)
            total += n
            if n == 0:
                break
        return total

    def _handle(self, kind: OverlayKind) -> bool:
        log_info(f">>> Overlay: {kind.name}")
        if kind.closes_popup:
            self.page.on("popup", _close_popup)
        try:
            return self._dismiss(kind)
        finally:
            # only popups opened by this click get closed
            if kind.closes_popup:
                self.page.remove_listener("popup", _close_popup)

    def _dismiss(self, kind: OverlayKind) -> bool:
        try:
            match, _ = self.locator.act(
                kind.action,
                lambda loc, force: loc.click(force=force),
                timeout_ms=self.probe_timeout_ms,
            )
        except NotFound:
            # gone between the probe and the click
            log_warn(f">>> Overlay {kind.name} vanished before it could be handled")
            return False

        detector = self.locator.probe(kind.detect)
        if detector is not None:
            try:
                detector.locator.wait_for(state="hidden", timeout=self.probe_timeout_ms)
            except PlaywrightTimeoutError:
                log_warn(f">>> Overlay {kind.name} still visible after {match.strategy.describe()}")
        self.handled.append(kind.name)
        return True


def _close_popup(popup):
    try:
        log_info(f">>> Closing popup window: {popup.url}")
        popup.close()
    except Error as e:
        log_warn(f">>> Popup close failed: {e}")
